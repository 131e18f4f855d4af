from typing import Optional

from fastapi import FastAPI

from chatbridge.config import Settings, get_settings
from chatbridge.logging_config import get_logger, setup_logging
from chatbridge.routers import chatwoot_webhook, telegram_webhook
from chatbridge.services.bridge_factory import Bridge, build_bridge

logger = get_logger("main")


def create_app(settings: Optional[Settings] = None, bridge: Optional[Bridge] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(
        title="chatbridge",
        description="Conversation bridge between Telegram, Chatwoot and Dify",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.bridge = bridge

    app.include_router(telegram_webhook.router)
    app.include_router(chatwoot_webhook.router)

    @app.on_event("startup")
    async def start_bridge() -> None:
        if app.state.bridge is None:
            app.state.bridge = build_bridge(settings)
        logger.info("Bridge started")

    @app.on_event("shutdown")
    async def stop_bridge() -> None:
        if app.state.bridge is not None:
            await app.state.bridge.close()
            app.state.bridge = None

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
