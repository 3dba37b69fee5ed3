from pathlib import Path
import logging

import requests

from meeting_backend.config.config import settings

logger = logging.getLogger(__name__)


class TranscriptionClient:
    """Speech-to-text over HTTP. Returns ``{"text": ..., "segments": [...]}``."""

    def __init__(
        self,
        url: str = settings.TRANSCRIPTION_URL,
        api_key: str | None = settings.TRANSCRIPTION_API_KEY,
        model: str = settings.TRANSCRIPTION_MODEL,
        timeout: int = settings.TRANSCRIPTION_TIMEOUT,
    ) -> None:
        self.__url = url
        self.__model = model
        self.__timeout = timeout
        self.__session = requests.Session()
        if api_key:
            self.__session.headers["Authorization"] = f"Bearer {api_key}"

    def transcribe(self, file_path: str) -> dict:
        logger.info(f"Sending {Path(file_path).name} for transcription")
        with open(file_path, "rb") as audio:
            response = self.__session.post(
                self.__url,
                files={"file": (Path(file_path).name, audio)},
                data={"model": self.__model, "response_format": "verbose_json"},
                timeout=self.__timeout,
            )
        response.raise_for_status()

        body = response.json()
        return {
            "text": body.get("text", ""),
            "segments": body.get("segments") or [],
        }
