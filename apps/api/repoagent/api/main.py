"""FastAPI application entry point.

``create_app`` builds the application for a given ``Settings``; the module
level ``app`` is what uvicorn serves. Tables are created at startup only in
development; other environments are expected to run migrations.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from repoagent.api.routes import router
from repoagent.config import Settings, configure_logging, get_settings
from repoagent.database.session import close_db, init_db


logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.app_name} v{settings.app_version} ({settings.environment})")
        if settings.environment == "development":
            await init_db()
            logger.info("Database tables ensured")

        yield

        logger.info("Shutting down, disposing database engine")
        await close_db()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Repository analysis and prioritized todo generation",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router, prefix="/api")

    @app.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "pipelines": ["/api/todos/generate", "/api/repositories/analyze", "/api/chat"],
            "docs": "/docs",
        }

    return app


configure_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "repoagent.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
