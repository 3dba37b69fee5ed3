from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
from fastapi.testclient import TestClient

from meeting_backend.app.controllers.upload_controller import ChunkedUploadController
from meeting_backend.app.jobs.cleanup_expired_uploads import SessionReaper
from meeting_backend.app.repositories.audio_file_repository import AudioFileRepository
from meeting_backend.app.repositories.session_registry import UploadSessionRegistry
from meeting_backend.app.routes.dependencies import (
    get_audio_file_repository,
    get_processing_pipeline,
    get_redis_client,
    get_upload_controller,
)
from meeting_backend.app.server import create_app
from meeting_backend.app.utils.audio_processing_pipeline import AudioProcessingPipeline
from meeting_backend.app.utils.chunk_store import ChunkStore
from meeting_backend.app.utils.clock import Clock

MB = 1024 * 1024


class FrozenClock(Clock):
    def __init__(self, start: datetime) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class StubTranscriber:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = []

    def transcribe(self, file_path: str) -> dict:
        self.calls.append(file_path)
        if self.fail:
            raise RuntimeError("transcription service unavailable")
        return {
            "text": "Welcome everyone to the weekly sync.",
            "segments": [
                {"start": 0.0, "end": 2.5, "text": " Welcome everyone", "speaker": "Speaker 1"},
                {"start": 2.5, "end": 4.0, "text": " to the weekly sync."},
            ],
        }


class StubProber:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = []

    def probe(self, file_path: str) -> dict:
        self.calls.append(file_path)
        if self.fail:
            raise RuntimeError("ffprobe failed for standup.mp3: Invalid data found when processing input")
        return {"duration": 4.0, "bit_rate": 128000, "format": "mp3", "audio_codec": "mp3"}


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 1, 30, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def redis_client():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def registry(redis_client, clock):
    return UploadSessionRegistry(redis_client, clock=clock)


@pytest.fixture
def chunk_store(tmp_path):
    return ChunkStore(tmp_path / "chunks")


@pytest.fixture
def storage_dir(tmp_path):
    return tmp_path / "audio-files"


@pytest.fixture
def audio_files(redis_client, clock):
    return AudioFileRepository(redis_client, clock=clock)


@pytest.fixture
def controller(registry, chunk_store, audio_files, storage_dir):
    return ChunkedUploadController(
        registry=registry,
        chunk_store=chunk_store,
        audio_files=audio_files,
        storage_dir=storage_dir,
        chunk_ttl=24 * 3600,
        max_file_size=100 * MB,
        allowed_mime_types=["audio/mpeg", "audio/wav"],
        merging_block_size=64 * 1024,
    )


@pytest.fixture
def reaper(registry, chunk_store):
    return SessionReaper(registry, chunk_store)


@pytest.fixture
def transcriber():
    return StubTranscriber()


@pytest.fixture
def prober():
    return StubProber()


@pytest.fixture
def pipeline(audio_files, transcriber, prober):
    return AudioProcessingPipeline(audio_files, transcriber, prober)


@pytest.fixture
def api_client(controller, pipeline, audio_files, redis_client):
    app = create_app()
    app.dependency_overrides[get_upload_controller] = lambda: controller
    app.dependency_overrides[get_processing_pipeline] = lambda: pipeline
    app.dependency_overrides[get_audio_file_repository] = lambda: audio_files
    app.dependency_overrides[get_redis_client] = lambda: redis_client

    with TestClient(app) as client:
        yield client
