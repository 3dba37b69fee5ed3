"""Errors raised by the chunked upload pipeline.

Every error carries the HTTP status the routes answer with and an optional
``payload`` with retry detail (chunk index, received/total counts). Messages
never include filesystem paths.
"""


class ChunkedUploadError(Exception):
    status_code = 500

    def __init__(self, message: str, payload: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.payload = payload


class ValidationError(ChunkedUploadError):
    status_code = 400


class SessionNotFound(ChunkedUploadError):
    status_code = 404

    def __init__(self, upload_id: str, message: str = "Upload session not found or expired") -> None:
        super().__init__(message, {"uploadId": upload_id})
        self.upload_id = upload_id


class Conflict(ChunkedUploadError):
    status_code = 400


class InvalidChunkIndex(Conflict):
    def __init__(self, chunk_index: int, total_chunks: int) -> None:
        super().__init__(
            f"Invalid chunk index {chunk_index}. Must be between 0 and {total_chunks - 1}",
            {"chunkIndex": chunk_index, "totalChunks": total_chunks},
        )
        self.chunk_index = chunk_index
        self.total_chunks = total_chunks


class SessionTerminal(Conflict):
    def __init__(self, upload_id: str, status: str) -> None:
        super().__init__(f"Upload session is {status}", {"uploadId": upload_id, "status": status})
        self.upload_id = upload_id
        self.status = status


class IncompleteUpload(ChunkedUploadError):
    status_code = 400

    def __init__(self, uploaded: int, total: int) -> None:
        super().__init__(
            f"Not all chunks uploaded. {uploaded}/{total} completed.",
            {"uploadedChunks": uploaded, "totalChunks": total},
        )
        self.uploaded = uploaded
        self.total = total


class IntegrityError(ChunkedUploadError):
    status_code = 500


class ChunkMissing(IntegrityError):
    def __init__(self, chunk_index: int) -> None:
        super().__init__(f"Chunk {chunk_index} not found", {"chunkIndex": chunk_index})
        self.chunk_index = chunk_index


class SizeMismatch(IntegrityError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Final file size mismatch. Expected: {expected}, Got: {actual}",
            {"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class StorageError(ChunkedUploadError):
    status_code = 500


class WriteFailed(StorageError):
    def __init__(self, chunk_index: int) -> None:
        super().__init__(f"Could not write chunk {chunk_index}", {"chunkIndex": chunk_index})
        self.chunk_index = chunk_index
