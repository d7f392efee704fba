from datetime import timedelta
from typing import Any

from media_intake.chunks.postgres_store import PostgresChunkStore
from media_intake.chunks.redis_store import RedisChunkStore
from media_intake.chunks.store import ChunkStore


def build_chunk_store(config: Any, postgres_pool: Any, redis_client: Any) -> ChunkStore:
    """Pick the chunk store backend named by CHUNK_STORE_BACKEND."""
    retention = timedelta(hours=config.chunk_retention_hours)
    if config.chunk_store_backend == "redis":
        return RedisChunkStore(redis_client, retention=retention)
    if postgres_pool is None:
        raise RuntimeError("CHUNK_STORE_BACKEND=postgres requires DATABASE_URL")
    return PostgresChunkStore(postgres_pool, retention=retention)
