from typing import Any
import json
import logging

import redis.asyncio as redis_async

from meeting_backend.app.clients.redis_client import RedisClient
from meeting_backend.app.models.audio import AudioFile, AudioFileStatus, Transcript
from meeting_backend.app.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)

AUDIO_FILE_ID_KEY = "audio_file:next_id"
AUDIO_FILE_INDEX_KEY = "audio_file:index"


def audio_file_key(audio_file_id: int) -> str:
    return f"audio_file:{audio_file_id}"


def transcript_key(audio_file_id: int) -> str:
    return f"audio_file:{audio_file_id}:transcript"


class AudioFileRepository:
    """Stores the audio file records created by finalized uploads."""

    def __init__(self, redis_client: redis_async.Redis | None = None, clock: Clock = system_clock) -> None:
        self.__redis = redis_client if redis_client is not None else RedisClient().client
        self.__clock = clock

    async def create(
        self,
        filename: str,
        original_filename: str,
        file_path: str,
        file_size: int,
        mime_type: str,
        status: AudioFileStatus = AudioFileStatus.UPLOADED,
    ) -> AudioFile:
        audio_file_id = await self.__redis.incr(AUDIO_FILE_ID_KEY)
        now = self.__clock.now()
        audio_file = AudioFile(
            id=audio_file_id,
            filename=filename,
            original_filename=original_filename,
            file_path=file_path,
            file_size=file_size,
            mime_type=mime_type,
            status=status,
            created_at=now,
            updated_at=now,
        )
        async with self.__redis.pipeline(transaction=True) as pipe:
            pipe.hset(audio_file_key(audio_file_id), mapping=self._serialize(audio_file))
            pipe.zadd(AUDIO_FILE_INDEX_KEY, {str(audio_file_id): audio_file_id})
            await pipe.execute()
        return audio_file

    async def get(self, audio_file_id: int) -> AudioFile | None:
        raw = await self.__redis.hgetall(audio_file_key(audio_file_id))
        if not raw:
            return None
        raw["processing_metadata"] = json.loads(raw.get("processing_metadata") or "{}")
        return AudioFile.model_validate(raw)

    async def update_status(self, audio_file_id: int, status: AudioFileStatus) -> None:
        await self.__redis.hset(audio_file_key(audio_file_id), mapping={
            "status": status.value,
            "updated_at": self.__clock.now().isoformat(),
        })
        logger.info(f"Audio file {audio_file_id} is now {status.value}")

    async def update_processing_metadata(self, audio_file_id: int, metadata: dict[str, Any]) -> None:
        audio_file = await self.get(audio_file_id)
        if audio_file is None:
            return
        merged = {**audio_file.processing_metadata, **metadata}
        await self.__redis.hset(audio_file_key(audio_file_id), "processing_metadata", json.dumps(merged))

    async def list_recent(self, page: int = 1, per_page: int = 20) -> tuple[list[AudioFile], int]:
        """Newest first. Returns the page and the total number of records."""
        start = (page - 1) * per_page
        async with self.__redis.pipeline(transaction=True) as pipe:
            pipe.zrevrange(AUDIO_FILE_INDEX_KEY, start, start + per_page - 1)
            pipe.zcard(AUDIO_FILE_INDEX_KEY)
            ids, total = await pipe.execute()

        audio_files = []
        for audio_file_id in ids:
            audio_file = await self.get(int(audio_file_id))
            if audio_file is not None:
                audio_files.append(audio_file)
        return audio_files, total

    async def has_transcript(self, audio_file_id: int) -> bool:
        return bool(await self.__redis.exists(transcript_key(audio_file_id)))

    async def delete(self, audio_file_id: int) -> None:
        async with self.__redis.pipeline(transaction=True) as pipe:
            pipe.delete(audio_file_key(audio_file_id), transcript_key(audio_file_id))
            pipe.zrem(AUDIO_FILE_INDEX_KEY, str(audio_file_id))
            await pipe.execute()

    async def save_transcript(self, transcript: Transcript) -> None:
        await self.__redis.set(transcript_key(transcript.audio_file_id), transcript.model_dump_json())

    async def get_transcript(self, audio_file_id: int) -> Transcript | None:
        raw = await self.__redis.get(transcript_key(audio_file_id))
        if raw is None:
            return None
        return Transcript.model_validate_json(raw)

    def _serialize(self, audio_file: AudioFile) -> dict[str, str]:
        data = audio_file.model_dump(mode="json")
        data["processing_metadata"] = json.dumps(data["processing_metadata"])
        return {k: str(v) for k, v in data.items()}
