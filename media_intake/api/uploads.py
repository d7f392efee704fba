"""Upload units: folder setup, direct slot uploads and finalization."""

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Header
from fastapi import Query
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from media_intake.api.errors import error_response
from media_intake.dependencies import get_finalizer
from media_intake.dependencies import get_orchestrator
from media_intake.dependencies import get_upload_initializer
from media_intake.result import Err
from media_intake.services.reconciliation import Finalizer
from media_intake.services.upload_init import UploadInitializer
from media_intake.services.upload_orchestrator import UploadOrchestrator


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/uploads", tags=["uploads"])


class InitRequest(BaseModel):
    gymName: Optional[str] = None
    slots: Optional[list[str]] = None


@router.post("/init")
async def init_upload(
    body: InitRequest,
    initializer: UploadInitializer = Depends(get_upload_initializer),
) -> JSONResponse:
    result = await initializer.init_upload(body.gymName, body.slots)
    if isinstance(result, Err):
        return error_response(result)
    return JSONResponse({**result.value.as_dict(), "message": "Upload structure created successfully"})


@router.post("/{upload_id}/slots/{slot}/upload")
async def upload_slot_file(
    upload_id: str,
    slot: str,
    request: Request,
    filename: Optional[str] = Query(None),
    mime: Optional[str] = Query(None),
    sizeBytes: Optional[int] = Query(None),
    x_slot_folder_id: Optional[str] = Header(None),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    size = sizeBytes if sizeBytes is not None else request.headers.get("content-length")
    result = await orchestrator.upload_whole_file(
        upload_id,
        slot,
        request.stream(),
        filename=filename,
        mime=mime or request.headers.get("content-type"),
        size_bytes=size,
        folder_id=x_slot_folder_id,
    )
    if isinstance(result, Err):
        return error_response(result)
    part = result.value
    return JSONResponse(
        {
            "ok": True,
            "uploadId": part.upload_id,
            "slot": part.slot,
            "fileId": part.file_id,
            "name": part.name,
            "sizeBytes": part.size_bytes,
        }
    )


@router.post("/{upload_id}/complete")
async def complete_upload(upload_id: str, finalizer: Finalizer = Depends(get_finalizer)) -> JSONResponse:
    result = await finalizer.finalize(upload_id)
    if isinstance(result, Err):
        return error_response(result)
    summary = result.value
    return JSONResponse(
        {
            "ok": True,
            "uploadId": summary.upload_id,
            "manifestFileId": summary.manifest_file_id,
            "manifestFileName": summary.manifest_file_name,
            "totalFiles": summary.total_files,
            "manifest": summary.manifest,
            "message": "Upload completed successfully with manifest",
        }
    )
