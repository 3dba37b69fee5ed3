"""Client for the resumable chunked upload API.

Splits a file into chunks sized by ``calculate_chunk_size``, uploads them one
after another with retry and exponential backoff, then asks the server to
finalize. ``cancel()`` may be called from another thread; it takes effect
between chunks.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional
import logging
import math
import mimetypes
import os
import threading
import time

import requests

from meeting_backend.config.config import settings

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000/api/v1/audio-files")
MB = 1024 * 1024
RETRYABLE_STATUS_CODES = {408, 429}

logger = logging.getLogger(__name__)


class ChunkUploadError(Exception):
    def __init__(self, message: str, status_code: int | None = None, payload: dict | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code >= 500 or self.status_code in RETRYABLE_STATUS_CODES


class UploadCancelled(Exception):
    def __init__(self, upload_id: str | None) -> None:
        super().__init__("Upload cancelled by user")
        self.upload_id = upload_id


@dataclass
class ChunkUploadProgress:
    uploaded_bytes: int
    total_bytes: int
    percentage: int
    chunk_index: int
    total_chunks: int
    is_complete: bool
    chunk_size: int
    estimated_time_remaining: Optional[float] = None


def calculate_chunk_size(
    file_size: int,
    max_chunks: int = settings.MAX_CHUNKS,
    min_chunk_size: int = settings.MIN_CHUNK_SIZE,
    max_chunk_size: int = settings.MAX_CHUNK_SIZE,
) -> int:
    """Chunk size keeping the chunk count near ``max_chunks``, clamped and rounded up to a whole MB."""
    if file_size < 1:
        raise ValueError("file_size must be at least 1 byte")

    chunk_size = math.ceil(file_size / max_chunks)
    chunk_size = max(min_chunk_size, min(max_chunk_size, chunk_size))
    return math.ceil(chunk_size / MB) * MB


def chunk_bounds(chunk_index: int, chunk_size: int, file_size: int) -> tuple[int, int]:
    start = chunk_index * chunk_size
    return start, min(start + chunk_size, file_size)


class ChunkedUploader:
    def __init__(
        self,
        api_url: str = API_BASE_URL,
        session: Any = None,
        chunk_size: int | None = None,
        max_chunks: int = settings.MAX_CHUNKS,
        min_chunk_size: int = settings.MIN_CHUNK_SIZE,
        max_chunk_size: int = settings.MAX_CHUNK_SIZE,
        max_retries: int = settings.MAX_RETRIES,
        retry_delay: float = settings.RETRY_DELAY,
        on_progress: Callable[[ChunkUploadProgress], None] | None = None,
        on_complete: Callable[[dict], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.fixed_chunk_size = chunk_size
        self.max_chunks = max_chunks
        self.min_chunk_size = min_chunk_size
        self.max_chunk_size = max_chunk_size
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.on_progress = on_progress
        self.on_complete = on_complete
        self._sleep = sleep
        self._cancel_event = threading.Event()
        self.upload_id: str | None = None

    def chunk_size_for(self, file_size: int) -> int:
        if self.fixed_chunk_size:
            return self.fixed_chunk_size
        return calculate_chunk_size(file_size, self.max_chunks, self.min_chunk_size, self.max_chunk_size)

    def _request(self, method: str, path: str, **kwargs) -> dict:
        response = self.session.request(method, f"{self.api_url}{path}", **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            raise ChunkUploadError(
                body.get("detail") or f"HTTP {response.status_code}",
                status_code=response.status_code,
                payload=body.get("payload"),
            )
        return body.get("payload") or {}

    def init_upload(self, filename: str, file_size: int, total_chunks: int, mime_type: str) -> dict:
        return self._request("POST", "/chunked/initialize", json={
            "filename": filename,
            "fileSize": file_size,
            "totalChunks": total_chunks,
            "mimeType": mime_type,
        })

    def upload_chunk(self, upload_id: str, chunk_index: int, chunk_data: bytes, total_chunks: int) -> dict:
        return self._request(
            "POST",
            "/chunked/upload",
            data={"uploadId": upload_id, "chunkIndex": str(chunk_index), "totalChunks": str(total_chunks)},
            files={"chunk": (f"chunk_{chunk_index}", chunk_data, "application/octet-stream")},
        )

    def upload_chunk_with_retry(self, upload_id: str, chunk_index: int, chunk_data: bytes, total_chunks: int) -> dict:
        attempt = 0
        while True:
            try:
                return self.upload_chunk(upload_id, chunk_index, chunk_data, total_chunks)
            except (ChunkUploadError, requests.RequestException) as e:
                if isinstance(e, ChunkUploadError) and not e.retryable:
                    raise
                if attempt >= self.max_retries:
                    raise ChunkUploadError(
                        f"Chunk {chunk_index} failed after {self.max_retries} retries: {e}",
                        status_code=getattr(e, "status_code", None),
                    ) from e

                delay = self.retry_delay * (2 ** attempt)
                logger.warning(f"Chunk {chunk_index} failed, retrying in {delay}s... ({attempt + 1}/{self.max_retries})")
                self._sleep(delay)
                attempt += 1

    def finalize_upload(self, upload_id: str) -> dict:
        return self._request("POST", f"/chunked/finalize/{upload_id}")

    def cancel_upload(self, upload_id: str) -> dict:
        return self._request("DELETE", f"/chunked/cancel/{upload_id}")

    def get_session_status(self, upload_id: str) -> dict:
        return self._request("GET", f"/chunked/status/{upload_id}")

    def cancel(self) -> None:
        """Ask the running upload to stop before its next chunk."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _read_slice(self, source: bytes | Path, start: int, end: int) -> bytes:
        if isinstance(source, (bytes, bytearray, memoryview)):
            return bytes(source[start:end])
        with open(source, "rb") as f:
            f.seek(start)
            return f.read(end - start)

    def _abort(self, upload_id: str) -> None:
        try:
            self.cancel_upload(upload_id)
        except (ChunkUploadError, requests.RequestException) as e:
            logger.error(f"Failed to cancel upload {upload_id} on the server: {e}")
        raise UploadCancelled(upload_id)

    def _upload_chunks(
        self,
        upload_id: str,
        source: bytes | Path,
        file_size: int,
        chunk_size: int,
        total_chunks: int,
        chunk_indexes: list[int],
    ) -> None:
        start_time = time.monotonic()
        uploaded_bytes = 0
        target_bytes = sum(
            end - start for start, end in (chunk_bounds(i, chunk_size, file_size) for i in chunk_indexes)
        )

        for chunk_index in chunk_indexes:
            if self.cancelled:
                self._abort(upload_id)

            start, end = chunk_bounds(chunk_index, chunk_size, file_size)
            chunk_data = self._read_slice(source, start, end)
            logger.info(f"Uploading chunk {chunk_index + 1}/{total_chunks} ({len(chunk_data)} bytes)")

            chunk_res = self.upload_chunk_with_retry(upload_id, chunk_index, chunk_data, total_chunks)

            uploaded_bytes += len(chunk_data)
            elapsed = time.monotonic() - start_time
            eta = None
            if elapsed > 0 and uploaded_bytes:
                eta = (target_bytes - uploaded_bytes) / (uploaded_bytes / elapsed)

            if self.on_progress:
                self.on_progress(ChunkUploadProgress(
                    uploaded_bytes=uploaded_bytes,
                    total_bytes=target_bytes,
                    percentage=round(uploaded_bytes / target_bytes * 100) if target_bytes else 100,
                    chunk_index=chunk_index,
                    total_chunks=total_chunks,
                    is_complete=bool(chunk_res.get("isComplete", False)),
                    chunk_size=chunk_size,
                    estimated_time_remaining=eta,
                ))

        if self.cancelled:
            self._abort(upload_id)

    def _finish(self, upload_id: str) -> dict:
        result = self.finalize_upload(upload_id)
        logger.info(f"Upload {upload_id} finalized as audio file {result.get('id')}")
        if self.on_complete:
            self.on_complete(result)
        return result

    def upload_file(self, source: str | Path | bytes, filename: str | None = None, mime_type: str | None = None) -> dict:
        """Upload ``source`` (a path or raw bytes) and return the finalized audio file record."""
        self._cancel_event.clear()
        self.upload_id = None

        if isinstance(source, (bytes, bytearray, memoryview)):
            if filename is None:
                raise ValueError("filename is required when uploading raw bytes")
            file_size = len(source)
        else:
            source = Path(source)
            if not source.exists():
                raise FileNotFoundError(f"File not found: {source}")
            file_size = source.stat().st_size
            filename = filename or source.name

        mime_type = mime_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        chunk_size = self.chunk_size_for(file_size)
        total_chunks = math.ceil(file_size / chunk_size)
        logger.info(f"Uploading {filename} ({file_size} bytes) in {total_chunks} chunks of {chunk_size} bytes")

        init_res = self.init_upload(filename, file_size, total_chunks, mime_type)
        upload_id = init_res["uploadId"]
        self.upload_id = upload_id

        self._upload_chunks(upload_id, source, file_size, chunk_size, total_chunks, list(range(total_chunks)))
        return self._finish(upload_id)

    def resume(self, upload_id: str, source: str | Path | bytes) -> dict:
        """Re-send only the chunks the server has not recorded, then finalize."""
        self._cancel_event.clear()
        self.upload_id = upload_id

        if not isinstance(source, (bytes, bytearray, memoryview)):
            source = Path(source)

        status = self.get_session_status(upload_id)
        file_size = status["fileSize"]
        total_chunks = status["totalChunks"]
        chunk_size = self.chunk_size_for(file_size)
        if math.ceil(file_size / chunk_size) != total_chunks:
            raise ValueError(
                f"Chunk layout does not match session {upload_id}: expected {total_chunks} chunks"
            )

        missing = status.get("missingChunks", [])
        logger.info(f"Resuming upload {upload_id}: {len(missing)}/{total_chunks} chunks missing")
        self._upload_chunks(upload_id, source, file_size, chunk_size, total_chunks, missing)
        return self._finish(upload_id)
