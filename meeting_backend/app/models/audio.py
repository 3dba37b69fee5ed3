from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


class AudioFileStatus(str, Enum):
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    PROCESSED = "processed"
    TRANSCRIBING = "transcribing"
    TRANSCRIBED = "transcribed"
    FAILED = "failed"
    COMPLETED = "completed"


class AudioFile(BaseModel):
    """Reassembled upload handed off to downstream processing."""
    id: int
    filename: str
    original_filename: str
    file_path: str
    file_size: int
    mime_type: str
    status: AudioFileStatus = AudioFileStatus.UPLOADED
    created_at: datetime
    updated_at: datetime
    processing_metadata: dict = Field(default_factory=dict)


class TranscriptSegment(BaseModel):
    start: float = 0.0
    end: float = 0.0
    text: str = ""
    speaker: str | None = None


class Transcript(BaseModel):
    audio_file_id: int
    text: str
    segments: list[TranscriptSegment] = Field(default_factory=list)
