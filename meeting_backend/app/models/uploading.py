from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from enum import Enum


class SessionStatus(str, Enum):
    INITIALIZED = "initialized"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.CANCELLED, SessionStatus.EXPIRED}
)


class UploadSession(BaseModel):
    """A chunked upload in flight, as stored in the session registry.

    ``uploaded_chunks`` is always derived from ``completed_chunks``; the
    registry never stores a separate counter.
    """
    upload_id: str
    filename: str
    original_filename: str
    file_size: int
    mime_type: str
    total_chunks: int
    completed_chunks: set[int] = Field(default_factory=set)
    status: SessionStatus = SessionStatus.INITIALIZED
    expires_at: datetime
    created_at: datetime
    updated_at: datetime

    @property
    def uploaded_chunks(self) -> int:
        return len(self.completed_chunks)

    def is_chunk_completed(self, chunk_index: int) -> bool:
        return chunk_index in self.completed_chunks

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class UploadInitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str = Field(min_length=1, max_length=255)
    file_size: int = Field(alias="fileSize", ge=1)
    total_chunks: int = Field(alias="totalChunks", ge=1)
    mime_type: str = Field(alias="mimeType", min_length=1)
