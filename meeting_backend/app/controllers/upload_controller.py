from pathlib import Path
import asyncio
import logging

import aiofiles
import aiofiles.os

from meeting_backend.config.config import settings
from meeting_backend.app.models.audio import AudioFile, AudioFileStatus
from meeting_backend.app.models.uploading import SessionStatus, UploadSession
from meeting_backend.app.repositories.audio_file_repository import AudioFileRepository
from meeting_backend.app.repositories.session_registry import UploadSessionRegistry
from meeting_backend.app.utils.chunk_store import ChunkStore
from meeting_backend.app.utils.errors import (
    ChunkedUploadError,
    ChunkMissing,
    IncompleteUpload,
    InvalidChunkIndex,
    SessionNotFound,
    SessionTerminal,
    SizeMismatch,
    StorageError,
    ValidationError,
    WriteFailed,
)


class ChunkedUploadController:
    def __init__(
        self,
        registry: UploadSessionRegistry | None = None,
        chunk_store: ChunkStore | None = None,
        audio_files: AudioFileRepository | None = None,
        storage_dir: str | Path = settings.AUDIO_STORAGE_DIR,
        chunk_ttl: int = settings.CHUNK_TTL,
        max_file_size: int = settings.MAX_FILESIZE,
        allowed_mime_types: list[str] | None = None,
        merging_block_size: int = settings.MERGING_CHUNK_SIZE,
    ) -> None:
        self.__registry = registry or UploadSessionRegistry()
        self.__chunk_store = chunk_store or ChunkStore()
        self.__audio_files = audio_files or AudioFileRepository()
        self.__storage_dir = Path(storage_dir)
        self.__chunk_ttl = chunk_ttl
        self.__max_file_size = max_file_size
        self.__allowed_mime_types = allowed_mime_types if allowed_mime_types is not None else settings.ALLOWED_MIME_TYPES
        self.__merging_block_size = merging_block_size
        self.__finalize_locks: dict[str, tuple[asyncio.Lock, int]] = {}
        self.__finalize_locks_lock = asyncio.Lock()
        self.__logger = logging.getLogger(__name__)

    @property
    def registry(self) -> UploadSessionRegistry:
        return self.__registry

    async def _get_finalize_lock(self, upload_id: str) -> asyncio.Lock:
        async with self.__finalize_locks_lock:
            if upload_id not in self.__finalize_locks:
                self.__finalize_locks[upload_id] = (asyncio.Lock(), 0)
            lock, users = self.__finalize_locks[upload_id]
            self.__finalize_locks[upload_id] = (lock, users + 1)
            return lock

    async def _release_finalize_lock(self, upload_id: str) -> None:
        # the entry lives until every caller that fetched it, waiters included, is done
        async with self.__finalize_locks_lock:
            lock, users = self.__finalize_locks[upload_id]
            if users <= 1:
                del self.__finalize_locks[upload_id]
            else:
                self.__finalize_locks[upload_id] = (lock, users - 1)

    def _progress_payload(self, session: UploadSession) -> dict:
        return {
            "uploadedChunks": session.uploaded_chunks,
            "totalChunks": session.total_chunks,
            "progress": self.__registry.progress_percentage(session),
            "isComplete": self.__registry.is_complete(session),
        }

    def upload_config(self) -> dict:
        return {
            "max_file_size": self.__max_file_size,
            "default_chunk_size": settings.DEFAULT_CHUNK_SIZE,
            "min_chunk_size": settings.MIN_CHUNK_SIZE,
            "max_chunk_size": settings.MAX_CHUNK_SIZE,
            "max_chunks": settings.MAX_CHUNKS,
            "chunk_ttl": self.__chunk_ttl,
            "allowed_mime_types": list(self.__allowed_mime_types),
        }

    async def initialize(self, filename: str, file_size: int, total_chunks: int, mime_type: str) -> dict:
        if mime_type not in self.__allowed_mime_types:
            raise ValidationError(
                f"Unsupported file type '{mime_type}'. Supported types: {', '.join(self.__allowed_mime_types)}"
            )

        if file_size > self.__max_file_size:
            max_size_mb = round(self.__max_file_size / 1024 / 1024, 1)
            raise ValidationError(f"File size exceeds the maximum allowed size of {max_size_mb}MB.")

        safe_name = Path(filename).name
        if not safe_name or safe_name in (".", ".."):
            raise ValidationError("Filename is invalid")

        session = await self.__registry.create(
            filename=safe_name,
            original_filename=filename,
            file_size=file_size,
            mime_type=mime_type,
            total_chunks=total_chunks,
            ttl=self.__chunk_ttl,
        )

        self.__logger.info(
            f"Chunked upload session initialized: {session.upload_id} "
            f"({filename}, {file_size} bytes, {total_chunks} chunks)"
        )

        return {
            "uploadId": session.upload_id,
            "chunkSize": settings.DEFAULT_CHUNK_SIZE,
            "expiresAt": session.expires_at.isoformat(),
            "session": {
                "id": session.upload_id,
                "status": session.status.value,
                "progress": self.__registry.progress_percentage(session),
            },
        }

    async def receive_chunk(self, upload_id: str, chunk_index: int, chunk_data: bytes, total_chunks: int | None = None) -> dict:
        session = await self.__registry.find_active(upload_id)
        if session is None:
            raise SessionNotFound(upload_id)

        if session.status.is_terminal:
            raise SessionTerminal(upload_id, session.status.value)

        if session.is_chunk_completed(chunk_index):
            self.__logger.info(f"Chunk {chunk_index} of {upload_id} already uploaded, skipping write")
            return {"chunkIndex": chunk_index, "message": "Chunk already uploaded", **self._progress_payload(session)}

        if total_chunks is not None and total_chunks != session.total_chunks:
            self.__logger.warning(
                f"Chunk {chunk_index} of {upload_id} declares {total_chunks} chunks, session has {session.total_chunks}"
            )

        # range errors surface before anything is written
        if chunk_index < 0 or chunk_index >= session.total_chunks:
            raise InvalidChunkIndex(chunk_index, session.total_chunks)

        await self.__chunk_store.write_chunk(upload_id, chunk_index, chunk_data)

        try:
            await self.__registry.mark_chunk_complete(upload_id, chunk_index)
        except SessionTerminal:
            # cancelled or finalized while the chunk was being written; the write may have recreated the directory
            await self.__chunk_store.delete_chunks(upload_id)
            raise

        session = await self.__registry.find(upload_id)
        if session is None:
            raise SessionNotFound(upload_id)

        payload = {"chunkIndex": chunk_index, **self._progress_payload(session)}
        self.__logger.info(
            f"Chunk {chunk_index} of {upload_id} stored "
            f"({payload['uploadedChunks']}/{payload['totalChunks']}, {payload['progress']}%)"
        )
        return payload

    async def status(self, upload_id: str) -> dict:
        session = await self.__registry.find(upload_id)
        if session is None:
            raise SessionNotFound(upload_id, "Upload session not found")

        return {
            "uploadId": session.upload_id,
            "status": session.status.value,
            "progress": self.__registry.progress_percentage(session),
            "uploadedChunks": session.uploaded_chunks,
            "totalChunks": session.total_chunks,
            "missingChunks": self.__registry.missing_chunks(session),
            "fileSize": session.file_size,
            "filename": session.original_filename,
            "mimeType": session.mime_type,
            "expiresAt": session.expires_at.isoformat(),
            "isExpired": session.is_expired(self.__registry.clock.now()),
            "isComplete": self.__registry.is_complete(session),
        }

    async def cancel(self, upload_id: str) -> dict:
        session = await self.__registry.find(upload_id)
        if session is None:
            raise SessionNotFound(upload_id, "Upload session not found")

        if session.status is SessionStatus.COMPLETED:
            raise SessionTerminal(upload_id, session.status.value)

        if not session.status.is_terminal:
            await self.__registry.transition(upload_id, SessionStatus.CANCELLED)

        try:
            await self.__chunk_store.delete_chunks(upload_id)
        except OSError as e:
            # the reaper sweeps this directory again once the session expires
            self.__logger.error(f"Failed to remove chunks of cancelled upload {upload_id}: {e}")

        self.__logger.info(f"Chunked upload cancelled: {upload_id} ({session.original_filename})")
        return {"message": "Upload session cancelled successfully"}

    def _build_destination(self, session: UploadSession) -> Path:
        timestamp = int(self.__registry.clock.now().timestamp())
        return self.__storage_dir / f"{timestamp}_{session.upload_id[:8]}_{session.filename}"

    async def _discard(self, destination: Path) -> None:
        try:
            await aiofiles.os.remove(destination)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.__logger.error(f"Could not remove partial file {destination.name}: {e}")

    async def _assemble(self, session: UploadSession, destination: Path) -> int:
        """Concatenate chunks 0..n-1 into ``destination`` and return bytes written."""
        try:
            await aiofiles.os.makedirs(destination.parent, exist_ok=True)
        except OSError as e:
            raise StorageError("Could not create storage directory") from e

        total_bytes = 0
        try:
            async with aiofiles.open(destination, "xb") as final_file:
                for chunk_index in range(session.total_chunks):
                    async with self.__chunk_store.iter_chunk(session.upload_id, chunk_index, self.__merging_block_size) as blocks:
                        async for block in blocks:
                            try:
                                await final_file.write(block)
                            except OSError as e:
                                raise WriteFailed(chunk_index) from e
                            total_bytes += len(block)
        except FileExistsError as e:
            raise StorageError("Could not create final file") from e
        except ChunkedUploadError:
            await self._discard(destination)
            raise
        except OSError as e:
            await self._discard(destination)
            raise StorageError("Could not write final file") from e

        return total_bytes

    async def finalize(self, upload_id: str) -> AudioFile:
        lock = await self._get_finalize_lock(upload_id)
        try:
            async with lock:
                return await self._finalize(upload_id)
        finally:
            await self._release_finalize_lock(upload_id)

    async def _finalize(self, upload_id: str) -> AudioFile:
        session = await self.__registry.find_active(upload_id)
        if session is None:
            raise SessionNotFound(upload_id)

        if session.status.is_terminal:
            raise SessionTerminal(upload_id, session.status.value)

        if not self.__registry.is_complete(session):
            raise IncompleteUpload(session.uploaded_chunks, session.total_chunks)

        destination = self._build_destination(session)
        try:
            total_bytes = await self._assemble(session, destination)
        except ChunkMissing as e:
            await self.__registry.unmark_chunk(upload_id, e.chunk_index)
            raise

        if total_bytes != session.file_size:
            await self._discard(destination)
            raise SizeMismatch(session.file_size, total_bytes)

        audio_file = await self.__audio_files.create(
            filename=destination.name,
            original_filename=session.original_filename,
            file_path=str(destination),
            file_size=session.file_size,
            mime_type=session.mime_type,
            status=AudioFileStatus.UPLOADED,
        )

        try:
            await self.__registry.transition(upload_id, SessionStatus.COMPLETED)
        except Exception:
            # lost the race against cancel or the reaper, or the registry is unreachable;
            # chunks stay in place so the session can be finalized again
            self.__logger.exception(f"Could not mark {upload_id} completed, rolling back audio file {audio_file.id}")
            await self.__audio_files.delete(audio_file.id)
            await self._discard(destination)
            raise

        try:
            await self.__chunk_store.delete_chunks(upload_id)
        except OSError as e:
            self.__logger.warning(f"Could not clean up chunks of {upload_id} after finalize: {e}")

        self.__logger.info(
            f"Chunked upload finalized: {upload_id} -> audio file {audio_file.id} "
            f"({session.original_filename}, {session.file_size} bytes)"
        )
        return audio_file
