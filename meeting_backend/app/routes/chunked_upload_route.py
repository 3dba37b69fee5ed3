from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile
from fastapi.responses import FileResponse
from pathlib import Path
import logging

import aiofiles.os

from meeting_backend.app.controllers.upload_controller import ChunkedUploadController
from meeting_backend.app.models.audio import AudioFile
from meeting_backend.app.models.messages import SuccessfulMessage
from meeting_backend.app.models.uploading import UploadInitRequest
from meeting_backend.app.repositories.audio_file_repository import AudioFileRepository
from meeting_backend.app.routes.dependencies import get_audio_file_repository, get_processing_pipeline, get_upload_controller
from meeting_backend.app.utils.audio_processing_pipeline import AudioProcessingPipeline
from meeting_backend.app.utils.CustomHTTPException import CustomHTTPException
from meeting_backend.app.utils.errors import ChunkedUploadError


route = APIRouter(prefix="/api/v1/audio-files", tags=["chunked_upload"])
logger = logging.getLogger(__name__)


def _to_http(e: ChunkedUploadError) -> CustomHTTPException:
    return CustomHTTPException(status_code=e.status_code, detail=e.message, payload=e.payload)


@route.get("/chunked/config")
async def upload_config(controller: ChunkedUploadController = Depends(get_upload_controller)):
    return SuccessfulMessage(
        detail="Successfully retrieved chunked upload configuration",
        payload=controller.upload_config()
    )

@route.post("/chunked/initialize")
async def initialize_chunked_upload(
    data: UploadInitRequest,
    controller: ChunkedUploadController = Depends(get_upload_controller),
):
    try:
        init_data = await controller.initialize(data.filename, data.file_size, data.total_chunks, data.mime_type)
    except ChunkedUploadError as e:
        raise _to_http(e) from e
    except Exception as e:
        logger.exception("Failed to initialize chunked upload")
        raise CustomHTTPException(status_code=500, detail="Failed to initialize upload session") from e

    return SuccessfulMessage(
        detail="Upload session initialized",
        payload=init_data
    )

@route.post("/chunked/upload")
async def upload_chunk(
    upload_id: str = Form(..., alias="uploadId"),
    chunk_index: int = Form(..., alias="chunkIndex", ge=0),
    total_chunks: int = Form(..., alias="totalChunks", ge=1),
    chunk: UploadFile = File(...),
    controller: ChunkedUploadController = Depends(get_upload_controller),
):
    try:
        chunk_data = await chunk.read()
        chunk_res = await controller.receive_chunk(upload_id, chunk_index, chunk_data, total_chunks)
    except ChunkedUploadError as e:
        raise _to_http(e) from e
    except Exception as e:
        logger.exception(f"Failed to upload chunk {chunk_index} of {upload_id}")
        raise CustomHTTPException(
            status_code=500,
            detail="Failed to upload chunk",
            payload={"chunkIndex": chunk_index}
        ) from e

    return SuccessfulMessage(
        detail=f"Chunk {chunk_index} stored",
        payload=chunk_res
    )

@route.post("/chunked/finalize/{upload_id}", status_code=201)
async def finalize_chunked_upload(
    upload_id: str,
    background_tasks: BackgroundTasks,
    controller: ChunkedUploadController = Depends(get_upload_controller),
    pipeline: AudioProcessingPipeline = Depends(get_processing_pipeline),
):
    try:
        audio_file = await controller.finalize(upload_id)
    except ChunkedUploadError as e:
        raise _to_http(e) from e
    except Exception as e:
        logger.exception(f"Failed to finalize chunked upload {upload_id}")
        raise CustomHTTPException(status_code=500, detail="Failed to finalize upload") from e

    background_tasks.add_task(pipeline.process, audio_file.id)

    return SuccessfulMessage(
        status_code=201,
        detail="File uploaded successfully and processing started",
        payload={
            "id": audio_file.id,
            "filename": audio_file.original_filename,
            "status": audio_file.status.value,
            "file_size": audio_file.file_size,
            "upload_time": audio_file.created_at.isoformat(),
        }
    )

@route.delete("/chunked/cancel/{upload_id}")
async def cancel_chunked_upload(upload_id: str, controller: ChunkedUploadController = Depends(get_upload_controller)):
    try:
        cancel_res = await controller.cancel(upload_id)
    except ChunkedUploadError as e:
        raise _to_http(e) from e
    except Exception as e:
        logger.exception(f"Failed to cancel chunked upload {upload_id}")
        raise CustomHTTPException(status_code=500, detail="Failed to cancel upload session") from e

    return SuccessfulMessage(
        detail="Upload session cancelled",
        payload=cancel_res
    )

@route.get("/chunked/status/{upload_id}")
async def chunked_upload_status(upload_id: str, controller: ChunkedUploadController = Depends(get_upload_controller)):
    try:
        status_res = await controller.status(upload_id)
    except ChunkedUploadError as e:
        raise _to_http(e) from e
    except Exception as e:
        logger.exception(f"Failed to get chunked upload status {upload_id}")
        raise CustomHTTPException(status_code=500, detail="Failed to get upload status") from e

    return SuccessfulMessage(
        detail="Upload status retrieved",
        payload=status_res
    )

@route.get("/{audio_file_id}")
async def get_audio_file(audio_file_id: int, audio_files: AudioFileRepository = Depends(get_audio_file_repository)):
    audio_file = await audio_files.get(audio_file_id)
    if audio_file is None:
        raise CustomHTTPException(status_code=404, detail="Audio file not found", payload={"id": audio_file_id})

    transcript = await audio_files.get_transcript(audio_file_id)
    return SuccessfulMessage(
        detail="Audio file retrieved",
        payload={
            "id": audio_file.id,
            "filename": audio_file.original_filename,
            "status": audio_file.status.value,
            "file_size": audio_file.file_size,
            "mime_type": audio_file.mime_type,
            "upload_time": audio_file.created_at.isoformat(),
            "processing_metadata": audio_file.processing_metadata,
            "transcript": transcript.model_dump() if transcript else None,
        }
    )

@route.get("")
async def list_audio_files(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    audio_files: AudioFileRepository = Depends(get_audio_file_repository),
):
    records, total = await audio_files.list_recent(page, per_page)

    items = []
    for audio_file in records:
        items.append({
            "id": audio_file.id,
            "filename": audio_file.original_filename,
            "status": audio_file.status.value,
            "duration": audio_file.processing_metadata.get("duration"),
            "file_size": audio_file.file_size,
            "mime_type": audio_file.mime_type,
            "has_transcript": await audio_files.has_transcript(audio_file.id),
            "created_at": audio_file.created_at.isoformat(),
            "updated_at": audio_file.updated_at.isoformat(),
        })

    return SuccessfulMessage(
        detail="Audio files retrieved",
        payload={"items": items, "page": page, "per_page": per_page, "total": total}
    )

async def _stored_audio_file(audio_file_id: int, audio_files: AudioFileRepository) -> AudioFile:
    audio_file = await audio_files.get(audio_file_id)
    if audio_file is None:
        raise CustomHTTPException(status_code=404, detail="Audio file not found", payload={"id": audio_file_id})
    if not await aiofiles.os.path.isfile(audio_file.file_path):
        logger.error(f"Audio file {audio_file_id} has no file on disk")
        raise CustomHTTPException(status_code=404, detail="Audio file not found on disk", payload={"id": audio_file_id})
    return audio_file

@route.get("/{audio_file_id}/download")
async def download_audio_file(audio_file_id: int, audio_files: AudioFileRepository = Depends(get_audio_file_repository)):
    audio_file = await _stored_audio_file(audio_file_id, audio_files)
    return FileResponse(
        audio_file.file_path,
        media_type=audio_file.mime_type or "application/octet-stream",
        filename=Path(audio_file.original_filename).name,
    )

@route.get("/{audio_file_id}/stream")
async def stream_audio_file(audio_file_id: int, audio_files: AudioFileRepository = Depends(get_audio_file_repository)):
    audio_file = await _stored_audio_file(audio_file_id, audio_files)
    return FileResponse(
        audio_file.file_path,
        media_type=audio_file.mime_type or "application/octet-stream",
        filename=Path(audio_file.original_filename).name,
        content_disposition_type="inline",
        headers={"Accept-Ranges": "bytes"},
    )
