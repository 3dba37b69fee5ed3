import os

import pytest
import requests

from meeting_backend.client import (
    ChunkedUploader,
    ChunkUploadError,
    ChunkUploadProgress,
    UploadCancelled,
    calculate_chunk_size,
)

MB = 1024 * 1024
API_URL = "http://testserver/api/v1/audio-files"


class FlakySession:
    """Wraps a client and drops the first ``failures`` chunk uploads on the floor."""

    def __init__(self, client, failures: int) -> None:
        self.client = client
        self.failures = failures
        self.chunk_attempts = 0

    def request(self, method, url, **kwargs):
        if url.endswith("/chunked/upload"):
            self.chunk_attempts += 1
            if self.failures > 0:
                self.failures -= 1
                raise requests.ConnectionError("connection reset by peer")
        return self.client.request(method, url, **kwargs)


def _payload(size: int) -> bytes:
    return bytes(i % 251 for i in range(size))


@pytest.mark.parametrize("file_size, expected", [
    (1, 1 * MB),
    (10 * MB, 1 * MB),
    (100 * MB, 2 * MB),
    (1024 * MB, 21 * MB),
    (5 * 1024 * MB, 50 * MB),
])
def test_calculate_chunk_size(file_size, expected):
    assert calculate_chunk_size(file_size) == expected


def test_calculate_chunk_size_rejects_empty_file():
    with pytest.raises(ValueError):
        calculate_chunk_size(0)


def test_upload_file(api_client, storage_dir):
    data = _payload(2 * MB + 512)
    progress: list[ChunkUploadProgress] = []
    completed = []
    uploader = ChunkedUploader(API_URL, session=api_client, on_progress=progress.append, on_complete=completed.append)

    result = uploader.upload_file(data, filename="standup.mp3")

    assert result["file_size"] == len(data)
    assert completed == [result]
    assert [p.chunk_index for p in progress] == [0, 1, 2]
    assert [p.percentage for p in progress] == sorted(p.percentage for p in progress)
    assert progress[-1].percentage == 100
    assert progress[-1].is_complete is True

    stored = os.listdir(storage_dir)
    assert len(stored) == 1
    assert (storage_dir / stored[0]).read_bytes() == data


def test_upload_file_from_path(api_client, storage_dir, tmp_path):
    source = tmp_path / "retro.mp3"
    source.write_bytes(_payload(300_000))

    result = ChunkedUploader(API_URL, session=api_client).upload_file(source)

    assert result["filename"] == "retro.mp3"
    assert (storage_dir / os.listdir(storage_dir)[0]).read_bytes() == source.read_bytes()


def test_upload_file_missing_path(api_client, tmp_path):
    with pytest.raises(FileNotFoundError):
        ChunkedUploader(API_URL, session=api_client).upload_file(tmp_path / "nope.mp3")


def test_transient_failures_are_retried(api_client, storage_dir):
    sleeps = []
    session = FlakySession(api_client, failures=2)
    uploader = ChunkedUploader(API_URL, session=session, retry_delay=0.5, sleep=sleeps.append)

    uploader.upload_file(_payload(1000), filename="standup.mp3")

    assert sleeps == [0.5, 1.0]
    assert session.chunk_attempts == 3
    assert len(os.listdir(storage_dir)) == 1


def test_retries_give_up(api_client):
    sleeps = []
    session = FlakySession(api_client, failures=10)
    uploader = ChunkedUploader(API_URL, session=session, max_retries=3, retry_delay=1.0, sleep=sleeps.append)

    with pytest.raises(ChunkUploadError, match="failed after 3 retries"):
        uploader.upload_file(_payload(1000), filename="standup.mp3")

    assert sleeps == [1.0, 2.0, 4.0]
    assert session.chunk_attempts == 4


def test_client_errors_are_not_retried(api_client):
    sleeps = []
    uploader = ChunkedUploader(API_URL, session=api_client, sleep=sleeps.append)

    with pytest.raises(ChunkUploadError) as exc_info:
        uploader.upload_chunk_with_retry("no-such-upload", 0, b"x", 1)

    assert exc_info.value.status_code == 404
    assert exc_info.value.retryable is False
    assert sleeps == []


def test_server_rejects_unsupported_type(api_client):
    uploader = ChunkedUploader(API_URL, session=api_client)

    with pytest.raises(ChunkUploadError) as exc_info:
        uploader.upload_file(b"%PDF-1.7", filename="agenda.pdf")

    assert exc_info.value.status_code == 400
    assert "Unsupported file type" in str(exc_info.value)


def test_cancel_between_chunks(api_client, storage_dir):
    uploader = ChunkedUploader(API_URL, session=api_client)
    uploader.on_progress = lambda progress: uploader.cancel()

    with pytest.raises(UploadCancelled) as exc_info:
        uploader.upload_file(_payload(3 * MB), filename="standup.mp3")

    upload_id = exc_info.value.upload_id
    status = uploader.get_session_status(upload_id)
    assert status["status"] == "cancelled"
    assert status["uploadedChunks"] == 1
    assert not storage_dir.exists()


def test_resume_sends_only_missing_chunks(api_client, storage_dir):
    data = _payload(3 * MB - 100)
    session = FlakySession(api_client, failures=0)
    uploader = ChunkedUploader(API_URL, session=session)

    init = uploader.init_upload("standup.mp3", len(data), 3, "audio/mpeg")
    upload_id = init["uploadId"]
    uploader.upload_chunk(upload_id, 1, data[MB:2 * MB], 3)
    session.chunk_attempts = 0

    result = uploader.resume(upload_id, data)

    assert session.chunk_attempts == 2
    assert result["file_size"] == len(data)
    assert (storage_dir / os.listdir(storage_dir)[0]).read_bytes() == data


def test_resume_with_different_chunk_layout(api_client):
    uploader = ChunkedUploader(API_URL, session=api_client)
    upload_id = uploader.init_upload("standup.mp3", 3 * MB, 2, "audio/mpeg")["uploadId"]

    with pytest.raises(ValueError, match="expected 2 chunks"):
        uploader.resume(upload_id, _payload(3 * MB))
