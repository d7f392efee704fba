"""Operational endpoints: chunk cleanup, destination checks and status."""

import logging
from datetime import datetime
from datetime import timezone
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Query
from fastapi.responses import JSONResponse

from media_intake.api.errors import error_response
from media_intake.chunks.errors import ChunkStoreError
from media_intake.chunks.store import ChunkStore
from media_intake.dependencies import get_bridge
from media_intake.dependencies import get_chunk_store
from media_intake.services.error_mapping import missing
from media_intake.services.error_mapping import storage_error
from media_intake.storage.drive_client import ColdStorageBridge
from media_intake.storage.errors import ColdStorageError


logger = logging.getLogger(__name__)
router = APIRouter(tags=["maintenance"])


@router.post("/maintenance/cleanup")
async def cleanup(store: ChunkStore = Depends(get_chunk_store)) -> JSONResponse:
    try:
        removed = await store.cleanup_old_sessions()
    except ChunkStoreError as e:
        logger.exception(f"Chunk session cleanup failed: {e}")
        return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})
    return JSONResponse({"ok": True, "removed": removed})


@router.get("/drive/verify")
async def verify(
    parentId: Optional[str] = Query(None),
    name: Optional[str] = Query(None),
    sizeBytes: Optional[int] = Query(None),
    bridge: ColdStorageBridge = Depends(get_bridge),
) -> JSONResponse:
    if not parentId:
        return error_response(missing("parentId"))
    try:
        checked = await bridge.verify(parentId, name=name, size_bytes=sizeBytes)
    except ColdStorageError as e:
        return error_response(storage_error(e))

    if name:
        return JSONResponse(
            {"ok": True, "present": checked.present, "fileId": checked.file_id, "sizeBytes": checked.size_bytes}
        )
    return JSONResponse({"ok": True, "canList": checked.can_list, "sample": checked.sample})


@router.get("/status")
async def status(bridge: ColdStorageBridge = Depends(get_bridge)) -> JSONResponse:
    ts = datetime.now(timezone.utc).isoformat()
    try:
        about = await bridge.about()
    except ColdStorageError as e:
        logger.warning(f"Storage status check failed: {e}")
        return JSONResponse(status_code=500, content={"ok": False, "error": str(e), "ts": ts})
    return JSONResponse({"ok": True, "drive": about.get("user", {}), "ts": ts})
