"""Protocol A: chunk buffering endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import File
from fastapi import Form
from fastapi import Query
from fastapi import UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from media_intake.api.errors import error_response
from media_intake.dependencies import get_orchestrator
from media_intake.result import Err
from media_intake.services.upload_orchestrator import UploadOrchestrator


logger = logging.getLogger(__name__)
router = APIRouter(tags=["chunks"])


class ReconstructRequest(BaseModel):
    sessionId: Optional[str] = None
    uploadId: Optional[str] = None
    slot: Optional[str] = None


@router.post("/upload-chunk")
async def upload_chunk(
    sessionId: Optional[str] = Form(None),
    chunkIndex: Optional[str] = Form(None),
    totalChunks: Optional[str] = Form(None),
    originalFileName: Optional[str] = Form(None),
    fileType: Optional[str] = Form(None),
    gymSlug: Optional[str] = Form(None),
    gymName: Optional[str] = Form(None),
    targetFolderId: Optional[str] = Form(None),
    chunk: Optional[UploadFile] = File(None),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    payload = await chunk.read() if chunk is not None else None
    result = await orchestrator.accept_chunk(
        session_id=sessionId,
        chunk_index=chunkIndex,
        total_chunks=totalChunks,
        original_file_name=originalFileName,
        file_type=fileType,
        payload=payload,
        gym_slug=gymSlug,
        gym_name=gymName,
        target_folder_id=targetFolderId,
    )
    if isinstance(result, Err):
        return error_response(result)

    accepted = result.value
    return JSONResponse(
        {
            "success": True,
            "sessionId": accepted.session_id,
            "chunkIndex": accepted.chunk_index,
            "receivedChunks": accepted.received_chunks,
            "totalChunks": accepted.total_chunks,
            "isComplete": accepted.is_complete,
            "message": f"Chunk {accepted.chunk_index + 1} uploaded successfully",
        }
    )


@router.get("/upload-chunk")
async def chunk_session_status(
    sessionId: Optional[str] = Query(None, description="Chunk session to report on"),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    result = await orchestrator.chunk_status(sessionId)
    if isinstance(result, Err):
        return error_response(result)

    view = result.value
    return JSONResponse(
        {
            "sessionId": view.session_id,
            "metadata": view.metadata,
            "receivedChunks": view.received_chunks,
            "totalChunks": view.total_chunks,
            "isComplete": view.is_complete,
            "lastActivity": view.last_activity.isoformat(),
        }
    )


@router.post("/reconstruct-file")
async def reconstruct_file(
    body: ReconstructRequest,
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    result = await orchestrator.reconstruct(body.sessionId, upload_id=body.uploadId, slot=body.slot)
    if isinstance(result, Err):
        return error_response(result)

    rebuilt = result.value
    return JSONResponse(
        {
            "success": True,
            "sessionId": rebuilt.session_id,
            "fileId": rebuilt.file_id,
            "fileName": rebuilt.name,
            "sizeBytes": rebuilt.size_bytes,
            "mime": rebuilt.mime,
            "deduped": rebuilt.deduped,
            "chunks": rebuilt.chunk_count,
            "partRecorded": rebuilt.part is not None,
        }
    )
