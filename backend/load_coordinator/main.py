"""Load Coordinator - multi-tenant load dispatch dashboard API"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from load_coordinator.core.config import Settings, get_settings
from load_coordinator.core.dependencies import ServiceContainer
from load_coordinator.core.logging import configure_logging, logger
from load_coordinator.routers import loads, profile, uploads


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build an application with its own store and coordinator graph."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup
        configure_logging(settings.log_level)
        logger.info(
            "Load Coordinator API starting",
            version="0.1.0",
            database_path=str(app.state.services.store.db_path),
            auth_enabled=settings.auth_enabled,
        )
        yield
        # Shutdown
        logger.info("Load Coordinator API shutting down")
        app.state.services.close()

    app = FastAPI(
        title=settings.app_name,
        description="Load coordination for shipping organizations and carriers",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = ServiceContainer.build(settings)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(profile.router)
    app.include_router(loads.router)
    app.include_router(uploads.router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.app_name,
            "version": "0.1.0",
            "endpoints": {
                "profile": "/profile",
                "loads": "/loads",
                "uploads": "/uploads",
            },
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
