#!/usr/bin/env python3
"""Janitor loop for abandoned chunk sessions.

Chunked uploads that never complete (browser closed, client crashed) leave
their buffered chunks behind. This loop sweeps sessions idle for longer than
the retention window so they stop consuming storage.
"""

import asyncio
import logging
import sys
from pathlib import Path

import asyncpg
import redis.asyncio as async_redis


sys.path.insert(0, str(Path(__file__).parent.parent))

from media_intake.chunks import ChunkStoreError
from media_intake.chunks import build_chunk_store
from media_intake.chunks.store import ChunkStore
from media_intake.config import get_config
from media_intake.logging_config import setup_loki_logging


config = get_config()
setup_loki_logging(config, "session-janitor")
logger = logging.getLogger(__name__)


async def sweep_once(store: ChunkStore) -> int:
    """One cleanup pass; a failed pass is logged and reported as zero removals."""
    try:
        removed = await store.cleanup_old_sessions()
    except ChunkStoreError as e:
        logger.error(f"Session sweep failed: {e}", exc_info=True)
        return 0
    logger.info(f"Session sweep removed {removed} idle sessions")
    return removed


async def run_session_janitor_loop() -> None:
    pool = None
    if config.chunk_store_backend == "postgres":
        pool = await asyncpg.create_pool(config.database_url, min_size=1, max_size=2)
    redis_client = async_redis.from_url(config.redis_url)
    store = build_chunk_store(config, pool, redis_client)

    logger.info("Starting session janitor...")
    logger.info(f"Backend: {config.chunk_store_backend}")
    logger.info(f"Retention: {config.chunk_retention_hours}h")
    logger.info(f"Interval: {config.chunk_cleanup_interval_seconds}s")

    try:
        while True:
            await sweep_once(store)
            logger.debug(f"Session janitor sleeping {config.chunk_cleanup_interval_seconds}s")
            await asyncio.sleep(config.chunk_cleanup_interval_seconds)
    finally:
        await redis_client.close()
        if pool is not None:
            await pool.close()


if __name__ == "__main__":
    asyncio.run(run_session_janitor_loop())
