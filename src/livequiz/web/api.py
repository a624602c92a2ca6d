"""FastAPI application factory.

Main entry point for the livequiz Web API.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from livequiz import __version__
from livequiz.config.app_config import AppConfig, load_app_config
from livequiz.db.database import init_db
from livequiz.web.routes import (
    events_router,
    health_router,
    materials_router,
    quiz_router,
    sessions_router,
)
from livequiz.web.services import Services

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build services on startup; close connections and drain the pool on shutdown."""
    if app.state.services is None:
        config: AppConfig = app.state.config
        init_db(Path(config.db_path))
        app.state.services = Services.build(config)

    services: Services = app.state.services
    logger.info(
        "api_startup",
        provider=services.config.generation.provider,
        max_concurrent_jobs=services.config.ingestion.max_concurrent_jobs,
    )
    yield
    await services.shutdown()


def create_app(config: AppConfig | None = None, services: Services | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Application configuration (default: loaded from YAML)
        services: Pre-built service container (for testing); the database
            must already be initialized when one is given

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="livequiz API",
        description="Material ingestion, quiz generation and live quiz push",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.config = services.config if services else (config or load_app_config())
    app.state.services = services

    # CORS middleware for web clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(sessions_router)
    app.include_router(materials_router)
    app.include_router(quiz_router)
    app.include_router(events_router)

    return app
