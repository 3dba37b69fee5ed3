from meeting_backend.client.uploader import (
    ChunkedUploader,
    ChunkUploadError,
    ChunkUploadProgress,
    UploadCancelled,
    calculate_chunk_size,
)

__all__ = [
    "ChunkedUploader",
    "ChunkUploadError",
    "ChunkUploadProgress",
    "UploadCancelled",
    "calculate_chunk_size",
]
