"""Main application module for the media intake service."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg
import redis.asyncio as async_redis
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from media_intake.api.chunks import router as chunks_router
from media_intake.api.errors import install_error_handlers
from media_intake.api.maintenance import router as maintenance_router
from media_intake.api.middlewares import ray_id_middleware
from media_intake.api.resumable import router as resumable_router
from media_intake.api.uploads import router as uploads_router
from media_intake.chunks.factory import build_chunk_store
from media_intake.config import get_config
from media_intake.logging_config import setup_loki_logging
from media_intake.orm import dispose_engine
from media_intake.orm import get_session_factory
from media_intake.orm import initialize_engine
from media_intake.storage import ColdStorageBridge


logger = logging.getLogger(__name__)


async def postgres_create_pool(database_url: str) -> asyncpg.Pool:
    """Create and return a Postgres connection pool.

    Args:
        database_url: Postgres connection URL

    Returns:
        Connection pool for Postgres
    """
    return await asyncpg.create_pool(
        database_url,
        min_size=2,
        max_size=20,
        max_inactive_connection_lifetime=300,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """FastAPI application lifespan handler."""
    app.state.postgres_pool = None
    app.state.session_factory = None
    try:
        app.state.config = get_config()
        config = app.state.config

        if config.database_url:
            app.state.postgres_pool = await postgres_create_pool(config.database_url)
            logger.info("Postgres connection pool created")

            initialize_engine(config.database_url)
            app.state.session_factory = get_session_factory()
            logger.info("SQLAlchemy async engine initialized")
        else:
            logger.warning("DATABASE_URL not set; upload records are unavailable")

        app.state.redis_client = async_redis.from_url(config.redis_url)
        logger.info("Redis client initialized")

        app.state.chunk_store = build_chunk_store(config, app.state.postgres_pool, app.state.redis_client)
        logger.info(f"Chunk store initialized (backend={config.chunk_store_backend})")

        app.state.bridge = ColdStorageBridge.from_config(config)
        logger.info("Cold storage client initialized")

        yield

    finally:
        try:
            if hasattr(app.state, "bridge"):
                await app.state.bridge.close()
                logger.info("Cold storage client closed")
        except Exception:
            logger.exception("Error shutting down cold storage client")

        try:
            if hasattr(app.state, "redis_client"):
                await app.state.redis_client.close()
                logger.info("Redis client closed")
        except Exception:
            logger.exception("Error shutting down Redis client")

        try:
            await dispose_engine()
        except Exception:
            logger.exception("Error disposing SQLAlchemy engine")

        try:
            if app.state.postgres_pool is not None:
                await app.state.postgres_pool.close()
                logger.info("Postgres connection pool closed")
        except Exception:
            logger.exception("Error shutting down postgres pool")


def factory() -> FastAPI:
    """Factory function to create and configure the FastAPI application."""
    load_dotenv()
    config = get_config()
    setup_loki_logging(config, "api")

    app = FastAPI(
        title="Media Intake",
        description="Chunked and resumable media uploads for gym content",
        docs_url="/docs" if config.enable_api_docs else None,
        redoc_url="/redoc" if config.enable_api_docs else None,
        lifespan=lifespan,
        debug=config.debug,
    )

    app.middleware("http")(ray_id_middleware)
    install_error_handlers(app)

    @app.get("/health", include_in_schema=False, response_class=JSONResponse)
    async def health():
        """Health check endpoint for monitoring."""
        return JSONResponse(content={"status": "healthy"})

    app.include_router(chunks_router, prefix="")
    app.include_router(resumable_router, prefix="")
    app.include_router(uploads_router, prefix="")
    app.include_router(maintenance_router, prefix="")

    return app


app = factory()
