from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    MAX_FILESIZE: int = 1073741824  # 1GB
    DEFAULT_CHUNK_SIZE: int = 5 * 1024 * 1024
    MIN_CHUNK_SIZE: int = 1 * 1024 * 1024
    MAX_CHUNK_SIZE: int = 50 * 1024 * 1024
    MAX_CHUNKS: int = 50
    CHUNK_TTL: int = 86400
    SESSION_RETENTION: int = 7 * 86400
    MAX_RETRIES: int = 3
    RETRY_DELAY: float = 1.0
    MERGING_CHUNK_SIZE: int = 5 * 1024 * 1024

    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    CHUNKS_DIR: str = "/tmp/upload/chunks"
    AUDIO_STORAGE_DIR: str = "storage/audio-files"

    ALLOWED_MIME_TYPES: List[str] = [
        "audio/mpeg",
        "audio/wav",
        "audio/mp4",
        "audio/x-m4a",
        "audio/flac",
        "audio/aac",
        "video/mp4",
    ]

    TRANSCRIPTION_URL: str = "https://api.openai.com/v1/audio/transcriptions"
    TRANSCRIPTION_API_KEY: str | None = None
    TRANSCRIPTION_MODEL: str = "whisper-1"
    TRANSCRIPTION_TIMEOUT: int = 3600

    FFPROBE_BIN: str = "ffprobe"
    FFPROBE_TIMEOUT: int = 60

    ALLOW_ORIGINS: List[str] = ["http://localhost:5173"]
    MAX_CONTENT_LENGTH: int = 60 * 1024 * 1024

    LOG_LEVEL: str = "INFO"


settings = Settings()
