from functools import lru_cache

from meeting_backend.app.clients.redis_client import RedisClient
from meeting_backend.app.controllers.upload_controller import ChunkedUploadController
from meeting_backend.app.repositories.audio_file_repository import AudioFileRepository
from meeting_backend.app.repositories.session_registry import UploadSessionRegistry
from meeting_backend.app.utils.audio_processing_pipeline import AudioProcessingPipeline
from meeting_backend.app.utils.chunk_store import ChunkStore


@lru_cache
def get_redis_client():
    return RedisClient().client


@lru_cache
def get_audio_file_repository() -> AudioFileRepository:
    return AudioFileRepository(get_redis_client())


@lru_cache
def get_upload_controller() -> ChunkedUploadController:
    return ChunkedUploadController(
        registry=UploadSessionRegistry(get_redis_client()),
        chunk_store=ChunkStore(),
        audio_files=get_audio_file_repository(),
    )


@lru_cache
def get_processing_pipeline() -> AudioProcessingPipeline:
    return AudioProcessingPipeline(get_audio_file_repository())
