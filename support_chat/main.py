from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi_pagination import add_pagination

from support_chat.config import get_settings
from support_chat.core.errors import SupportChatError
from support_chat.infra.logging_config import LoggingConfig, get_logger
from support_chat.routers.support_chats_router import support_chats_router
from support_chat.services.notifier import NullNotifier, build_notifier

logger = get_logger("main")


async def support_chat_error_handler(
    request: Request, exc: SupportChatError
) -> JSONResponse:
    """Render support chat errors as {"detail", "code"} with the error's status."""
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


def create_app(testing: bool = False) -> FastAPI:
    settings = get_settings()
    LoggingConfig(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.notifier = NullNotifier() if testing else build_notifier(settings)
        try:
            yield
        finally:
            app.state.notifier.close()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_exception_handler(SupportChatError, support_chat_error_handler)
    app.include_router(support_chats_router)
    add_pagination(app)
    return app
