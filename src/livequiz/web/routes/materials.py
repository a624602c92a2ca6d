"""Material upload and ingestion status endpoints."""

import asyncio
import json
import uuid
from typing import AsyncGenerator

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import StreamingResponse

from livequiz.core.errors import PoolSaturatedError, StateConflictError
from livequiz.db.materials_repository import get_material, list_materials
from livequiz.web.schemas import MaterialListResponse, MaterialResponse
from livequiz.web.services import Services, get_services

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["materials"])

DEFAULT_MIME_TYPE = "application/octet-stream"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def _read_upload(file: UploadFile) -> bytes:
    data = await file.read()
    if not data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Uploaded file is empty",
        )
    return data


@router.post(
    "/api/sessions/{session_id}/materials",
    response_model=MaterialResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def upload_material(
    session_id: str,
    file: UploadFile = File(...),
    services: Services = Depends(get_services),
) -> MaterialResponse:
    """Upload a material; text extraction continues in the background.

    Poll GET /api/materials/{material_id} or follow its events stream.
    """
    data = await _read_upload(file)
    material_id = str(uuid.uuid4())

    try:
        record = await services.pool.accept(
            material_id=material_id,
            session_id=session_id,
            filename=file.filename or material_id,
            data=data,
            mime_type=file.content_type or DEFAULT_MIME_TYPE,
        )
    except PoolSaturatedError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    logger.info(
        "material_accepted",
        session_id=session_id,
        material_id=material_id,
        filename=record.filename,
        size=len(data),
    )
    return MaterialResponse.model_validate(record)


@router.get("/api/sessions/{session_id}/materials", response_model=MaterialListResponse)
async def list_session_materials(session_id: str) -> MaterialListResponse:
    """List the materials of a session, oldest first."""
    records = list_materials(session_id)
    return MaterialListResponse(
        materials=[MaterialResponse.model_validate(r) for r in records],
        count=len(records),
    )


@router.get("/api/materials/{material_id}", response_model=MaterialResponse)
async def read_material(material_id: str) -> MaterialResponse:
    """Get a material's status and extracted text so far."""
    record = get_material(material_id)

    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Material '{material_id}' not found",
        )

    return MaterialResponse.model_validate(record)


@router.post(
    "/api/materials/{material_id}/retry",
    response_model=MaterialResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def retry_material(
    material_id: str,
    file: UploadFile = File(...),
    services: Services = Depends(get_services),
) -> MaterialResponse:
    """Re-run ingestion of a timed-out material with the re-uploaded bytes."""
    if get_material(material_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Material '{material_id}' not found",
        )

    data = await _read_upload(file)

    try:
        record = await services.pool.retry(material_id, data)
    except StateConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PoolSaturatedError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return MaterialResponse.model_validate(record)


async def _progress_generator(
    material_id: str,
    poll_interval: float,
    heartbeat_interval: float,
) -> AsyncGenerator[str, None]:
    """Emit progress events until the material is terminal or deleted.

    Each progress event carries the status and only the text appended since
    the previous event.
    """
    sent_chars = 0
    last_status = None
    idle = 0.0

    while True:
        record = get_material(material_id)

        if record is None:
            yield f"event: deleted\ndata: {json.dumps({'material_id': material_id})}\n\n"
            return

        text = record.extracted_text or ""
        if record.status != last_status or len(text) > sent_chars:
            payload = {
                "material_id": material_id,
                "status": record.status,
                "text": text[sent_chars:],
                "error_message": record.error_message,
            }
            yield f"event: progress\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"
            sent_chars = len(text)
            last_status = record.status
            idle = 0.0

        if record.status != "processing":
            return

        await asyncio.sleep(poll_interval)
        idle += poll_interval
        if idle >= heartbeat_interval:
            yield ": keepalive\n\n"
            idle = 0.0


@router.get("/api/materials/{material_id}/events")
async def stream_material_events(
    material_id: str,
    services: Services = Depends(get_services),
) -> StreamingResponse:
    """Stream ingestion progress using Server-Sent Events.

    Events:
    - progress: status plus newly extracted text
    - deleted: ingestion failed and the material was removed
    """
    if get_material(material_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Material '{material_id}' not found",
        )

    return StreamingResponse(
        _progress_generator(
            material_id,
            poll_interval=services.config.ingestion.poll_interval,
            heartbeat_interval=services.config.broadcast.heartbeat_interval,
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
