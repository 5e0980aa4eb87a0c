from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from app.api.cors import WidgetCORSMiddleware
from app.api.routes import chat, events, health
from app.core.config import settings
from app.core.logging import configure_logging, get_logger
from app.db.session import engine
from app.dependencies import ServiceContainer

logger = get_logger(__name__)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the API. Pass a prepared container to run against fakes."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        owns_container = container is None
        app.state.container = container or ServiceContainer.from_settings()
        logger.info(f"{settings.PROJECT_NAME} is starting up ({settings.ENVIRONMENT})")
        yield
        logger.info(f"{settings.PROJECT_NAME} is shutting down...")
        if owns_container:
            await engine.dispose()

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

    allowed_origins = settings.allowed_origins
    app.add_middleware(
        WidgetCORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=allowed_origins != ["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(chat.router, tags=["Chat"])
    app.include_router(events.router, tags=["Events"])
    return app


app = create_app()
