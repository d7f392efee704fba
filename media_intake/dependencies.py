import logging
from typing import Any
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from media_intake.chunks.store import ChunkStore
from media_intake.config import Config
from media_intake.services.reconciliation import Finalizer
from media_intake.services.upload_init import UploadInitializer
from media_intake.services.upload_orchestrator import UploadOrchestrator
from media_intake.storage.drive_client import ColdStorageBridge


logger = logging.getLogger(__name__)

# a caller may pass its own cold-storage bearer token; it is tried before the configured credentials
STORAGE_TOKEN_HEADER = "x-storage-token"


def get_config(request: Request) -> Config:
    """Extract the application Config from the request."""
    config: Config = request.app.state.config
    return config


def get_chunk_store(request: Request) -> ChunkStore:
    store: ChunkStore = request.app.state.chunk_store
    return store


def get_bridge(request: Request) -> ColdStorageBridge:
    bridge: ColdStorageBridge = request.app.state.bridge
    return bridge.with_access_token(request.headers.get(STORAGE_TOKEN_HEADER))


def get_session_factory(request: Request) -> Optional[async_sessionmaker[AsyncSession]]:
    factory: Any = getattr(request.app.state, "session_factory", None)
    return factory


def get_orchestrator(request: Request) -> UploadOrchestrator:
    config = get_config(request)
    return UploadOrchestrator(
        store=get_chunk_store(request),
        bridge=get_bridge(request),
        session_factory=get_session_factory(request),
        slot_names=config.slot_names,
        max_upload_bytes=config.max_upload_mb * 1024 * 1024,
        reconstruct_max_bytes=config.reconstruct_max_bytes,
    )


def get_finalizer(request: Request) -> Finalizer:
    return Finalizer(get_bridge(request), get_session_factory(request))


def get_upload_initializer(request: Request) -> UploadInitializer:
    config = get_config(request)
    return UploadInitializer(
        get_bridge(request),
        get_session_factory(request),
        root_folder_id=config.storage_root_folder_id,
        slot_names=config.slot_names,
    )
