"""Protocol B: direct resumable transfer to cold storage."""

import base64
import binascii
import logging
from typing import Any
from typing import Optional
from typing import Union

from fastapi import APIRouter
from fastapi import Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from media_intake.api.errors import error_response
from media_intake.dependencies import get_orchestrator
from media_intake.result import Err
from media_intake.result import ErrorKind
from media_intake.services.upload_orchestrator import UploadOrchestrator
from media_intake.storage.transfer import PutOutcome


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/resumable", tags=["resumable"])

IntLike = Optional[Union[int, str]]


class StartRequest(BaseModel):
    filename: Optional[str] = None
    mime: Optional[str] = None
    sizeBytes: IntLike = None
    parentId: Optional[str] = None


class PutRequest(BaseModel):
    uploadUrl: Optional[str] = None
    start: IntLike = None
    end: IntLike = None
    total: IntLike = None
    chunkBase64: Optional[str] = None
    mime: Optional[str] = None


class CompleteRequest(BaseModel):
    uploadId: Optional[str] = None
    slot: Optional[str] = None
    fileId: Optional[str] = None
    name: Optional[str] = None
    sizeBytes: IntLike = None
    mime: Optional[str] = None


class StatusRequest(BaseModel):
    uploadUrl: Optional[str] = None
    total: IntLike = None


def outcome_body(outcome: PutOutcome) -> dict[str, Any]:
    if outcome.completed:
        return {"ok": True, "completed": True, "fileId": outcome.destination_file_id, "attempts": outcome.attempts}
    confirmed = outcome.bytes_confirmed
    return {
        "ok": True,
        "continued": True,
        "range": f"bytes=0-{confirmed - 1}" if confirmed else None,
        "bytesConfirmed": confirmed,
        "attempts": outcome.attempts,
    }


@router.post("/start")
async def start(body: StartRequest, orchestrator: UploadOrchestrator = Depends(get_orchestrator)) -> JSONResponse:
    result = await orchestrator.start_resumable(body.filename, body.mime, body.sizeBytes, body.parentId)
    if isinstance(result, Err):
        return error_response(result)
    started = result.value
    if started.deduped:
        return JSONResponse({"deduped": True, "fileId": started.file_id})
    return JSONResponse({"uploadUrl": started.upload_url})


@router.post("/put")
async def put(body: PutRequest, orchestrator: UploadOrchestrator = Depends(get_orchestrator)) -> JSONResponse:
    payload = None
    if body.chunkBase64:
        try:
            payload = base64.b64decode(body.chunkBase64, validate=True)
        except (binascii.Error, ValueError):
            return error_response(Err(ErrorKind.INVALID_RANGE, "chunkBase64 is not valid base64"))

    result = await orchestrator.put_range(body.uploadUrl, body.start, body.end, body.total, payload, body.mime)
    if isinstance(result, Err):
        return error_response(result)
    return JSONResponse(outcome_body(result.value))


@router.post("/status")
async def status(body: StatusRequest, orchestrator: UploadOrchestrator = Depends(get_orchestrator)) -> JSONResponse:
    result = await orchestrator.resumable_status(body.uploadUrl, body.total)
    if isinstance(result, Err):
        return error_response(result)
    return JSONResponse(outcome_body(result.value))


@router.post("/complete")
async def complete(body: CompleteRequest, orchestrator: UploadOrchestrator = Depends(get_orchestrator)) -> JSONResponse:
    result = await orchestrator.record_part(body.uploadId, body.slot, body.fileId, body.name, body.sizeBytes, body.mime)
    if isinstance(result, Err):
        return error_response(result)
    part = result.value
    return JSONResponse({"ok": True, "uploadId": part.upload_id, "slot": part.slot, "fileId": part.file_id})
