from sqlalchemy import Boolean, Column, Index, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP

from chatbridge.database import Base


class PlatformMapping(Base):
    __tablename__ = "platform_mappings"
    __table_args__ = (Index("ix_platform_mappings_source", "source_platform", "source_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_platform = Column(Text, nullable=False, default="telegram")
    source_id = Column(Text, nullable=False)  # telegram_bots.id
    chatwoot_account_id = Column(Integer)  # chatwoot_accounts.id
    dify_app_id = Column(Integer)  # dify_apps.id

    # NULL means derive the direction from which destinations are set
    enable_telegram_to_chatwoot = Column(Boolean)
    enable_telegram_to_dify = Column(Boolean)
    enable_chatwoot_to_telegram = Column(Boolean)
    enable_dify_to_chatwoot = Column(Boolean)
    enable_dify_to_telegram = Column(Boolean)

    auto_connect_telegram_chatwoot = Column(Boolean, nullable=False, default=False)
    auto_connect_telegram_dify = Column(Boolean, nullable=False, default=False)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True))
    deleted_at = Column(TIMESTAMP(timezone=True))
