"""
Chat Relay Application.

FastAPI application with structured logging, error handling,
and request middleware.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatrelay import __version__
from chatrelay.api import auth_router, chat_router, health_router, providers_router
from chatrelay.config import Settings, get_settings
from chatrelay.core import get_logger, setup_logging
from chatrelay.core.middleware import (
    RequestContextMiddleware,
    RequestSizeLimitMiddleware,
    setup_exception_handlers,
)
from chatrelay.providers import ProviderRegistry

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings: Settings = _app.state.settings

    # Startup
    setup_logging(
        level=settings.log_level,
        json_output=not settings.debug,
        log_file=settings.log_file or None,
    )
    logger.info(
        "Starting chat relay",
        data={
            "host": settings.host,
            "port": settings.port,
            "debug": settings.debug,
            "providers": settings.providers_enabled_list,
        },
    )

    _app.state.start_time = datetime.now(UTC)

    # Initialize provider registry unless provided (useful in tests)
    registry_created = False
    if getattr(_app.state, "provider_registry", None) is None:
        _app.state.provider_registry = ProviderRegistry(settings)
        registry_created = True

    if not settings.is_production:
        logger.warning("Running outside production - development session issuing is enabled")

    yield

    # Shutdown
    logger.info("Shutting down chat relay")
    if registry_created:
        await _app.state.provider_registry.aclose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Chat Relay",
        description="Streaming relay from chat clients to hosted LLM providers",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings

    # Setup exception handlers (must be before middleware)
    setup_exception_handlers(app)

    # Add middleware (order matters - last added = first executed)
    # 1. Request size limit (reject oversized requests early)
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.max_request_bytes)

    # 2. Request context (inject request ID, log requests)
    app.add_middleware(RequestContextMiddleware)

    # 3. CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Stream-ID"],
    )

    # Register routers
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(providers_router)
    app.include_router(chat_router)

    return app


# Create application instance
app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    settings = app.state.settings
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
