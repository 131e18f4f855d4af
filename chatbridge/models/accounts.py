from sqlalchemy import Boolean, Column, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP

from chatbridge.database import Base


class TelegramBot(Base):
    __tablename__ = "telegram_bots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    bot_token = Column(Text, nullable=False)
    bot_username = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(TIMESTAMP(timezone=True))


class ChatwootAccount(Base):
    __tablename__ = "chatwoot_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    api_url = Column(Text, nullable=False)
    api_access_token = Column(Text, nullable=False)
    account_id = Column(Text, nullable=False)  # account id inside Chatwoot
    inbox_id = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(TIMESTAMP(timezone=True))


class DifyApp(Base):
    __tablename__ = "dify_apps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    api_url = Column(Text, nullable=False)
    api_key = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(TIMESTAMP(timezone=True))
