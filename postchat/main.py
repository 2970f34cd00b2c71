"""FastAPI application entrypoint.

Builds the application container from settings, configures logging, tracing
and CORS, initializes the database schema at startup and mounts the routes in
postchat.api.

Run with:
    uvicorn postchat.main:app --host 0.0.0.0 --port 8000
"""
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from postchat.api import router
from postchat.config import Settings
from postchat.container import Container, build_container
from postchat.obs import configure_tracing


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(container: Optional[Container] = None) -> FastAPI:
    """Create the API application.

    Args:
        container: Prebuilt components; built from environment settings when omitted.

    Returns:
        FastAPI: The configured application.
    """
    if container is None:
        container = build_container(Settings())
    settings = container.settings
    configure_logging(settings)
    configure_tracing(settings)

    app = FastAPI(title="Post Chat API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["*"],
        allow_credentials=True,
        allow_headers=["*"],
    )
    app.state.service = container.service
    app.state.tracer = container.tracer

    @app.on_event("startup")
    def on_startup() -> None:
        """Initialize database schema at application startup."""
        container.db.init_schema()

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        container.db.dispose()

    app.include_router(router)
    return app


app = create_app()
