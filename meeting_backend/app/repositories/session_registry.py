"""Redis-backed registry of chunked upload sessions.

Layout per session::

    chunked_upload:<upload_id>          hash, session attributes
    chunked_upload:<upload_id>:chunks   set, indices of received chunks
    chunked_upload:expiry               sorted set, upload_id scored by expires_at

Every mutation of a session row goes through a WATCH/MULTI transaction so
status checks and writes form one compare-and-set. The received chunk count
is the cardinality of the chunk set and is never stored on its own.
"""
from datetime import datetime, timedelta
from typing import Iterable
import logging
import uuid

import redis.asyncio as redis_async
from redis.exceptions import WatchError

from meeting_backend.config.config import settings
from meeting_backend.app.clients.redis_client import RedisClient
from meeting_backend.app.models.uploading import SessionStatus, TERMINAL_STATUSES, UploadSession
from meeting_backend.app.utils.clock import Clock, system_clock
from meeting_backend.app.utils.errors import InvalidChunkIndex, SessionNotFound, SessionTerminal, ValidationError

logger = logging.getLogger(__name__)

NON_TERMINAL_STATUSES = frozenset(set(SessionStatus) - TERMINAL_STATUSES)
EXPIRY_INDEX_KEY = "chunked_upload:expiry"


def session_key(upload_id: str) -> str:
    return f"chunked_upload:{upload_id}"


def chunks_key(upload_id: str) -> str:
    return f"chunked_upload:{upload_id}:chunks"


class UploadSessionRegistry:
    def __init__(
        self,
        redis_client: redis_async.Redis | None = None,
        clock: Clock = system_clock,
        retention: int = settings.SESSION_RETENTION,
    ) -> None:
        self.__redis = redis_client if redis_client is not None else RedisClient().client
        self.__clock = clock
        self.__retention = retention

    @property
    def clock(self) -> Clock:
        return self.__clock

    def _serialize(self, session: UploadSession) -> dict[str, str]:
        data = session.model_dump(mode="json", exclude={"completed_chunks"})
        return {k: str(v) for k, v in data.items()}

    def _deserialize(self, raw: dict, completed: Iterable) -> UploadSession:
        return UploadSession.model_validate({**raw, "completed_chunks": {int(i) for i in completed}})

    async def create(
        self,
        filename: str,
        original_filename: str,
        file_size: int,
        mime_type: str,
        total_chunks: int,
        ttl: int = settings.CHUNK_TTL,
    ) -> UploadSession:
        if file_size < 1:
            raise ValidationError("File size must be at least 1 byte")
        if total_chunks < 1:
            raise ValidationError("Total chunks must be at least 1")

        now = self.__clock.now()
        session = UploadSession(
            upload_id=str(uuid.uuid4()),
            filename=filename,
            original_filename=original_filename,
            file_size=file_size,
            mime_type=mime_type,
            total_chunks=total_chunks,
            status=SessionStatus.INITIALIZED,
            expires_at=now + timedelta(seconds=ttl),
            created_at=now,
            updated_at=now,
        )

        async with self.__redis.pipeline(transaction=True) as pipe:
            pipe.hset(session_key(session.upload_id), mapping=self._serialize(session))
            pipe.zadd(EXPIRY_INDEX_KEY, {session.upload_id: session.expires_at.timestamp()})
            await pipe.execute()

        logger.debug(f"Registered upload session {session.upload_id} ({total_chunks} chunks)")
        return session

    async def find(self, upload_id: str) -> UploadSession | None:
        async with self.__redis.pipeline(transaction=True) as pipe:
            pipe.hgetall(session_key(upload_id))
            pipe.smembers(chunks_key(upload_id))
            raw, completed = await pipe.execute()

        if not raw:
            return None
        return self._deserialize(raw, completed)

    async def find_active(self, upload_id: str) -> UploadSession | None:
        session = await self.find(upload_id)
        if session is None or session.is_expired(self.__clock.now()):
            return None
        return session

    async def mark_chunk_complete(self, upload_id: str, chunk_index: int) -> None:
        key = session_key(upload_id)

        async with self.__redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.hgetall(key)
                    if not raw:
                        raise SessionNotFound(upload_id)

                    status = SessionStatus(raw["status"])
                    if status.is_terminal:
                        raise SessionTerminal(upload_id, status.value)

                    total_chunks = int(raw["total_chunks"])
                    if chunk_index < 0 or chunk_index >= total_chunks:
                        raise InvalidChunkIndex(chunk_index, total_chunks)

                    pipe.multi()
                    pipe.sadd(chunks_key(upload_id), chunk_index)
                    pipe.hset(key, mapping={
                        "status": SessionStatus.UPLOADING.value,
                        "updated_at": self.__clock.now().isoformat(),
                    })
                    await pipe.execute()
                    return
                except WatchError:
                    logger.debug(f"Concurrent update on {upload_id}, retrying chunk {chunk_index}")
                    continue

    async def transition(
        self,
        upload_id: str,
        to_status: SessionStatus,
        allowed_from: Iterable[SessionStatus] = NON_TERMINAL_STATUSES,
    ) -> UploadSession:
        """Compare-and-set the session status.

        Raises SessionTerminal when the current status is not in
        ``allowed_from``. Terminal rows get a retention TTL so Redis drops
        them eventually.
        """
        allowed_from = frozenset(allowed_from)
        key = session_key(upload_id)

        async with self.__redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.hgetall(key)
                    if not raw:
                        raise SessionNotFound(upload_id)

                    current = SessionStatus(raw["status"])
                    if current not in allowed_from:
                        raise SessionTerminal(upload_id, current.value)

                    now = self.__clock.now()
                    pipe.multi()
                    pipe.hset(key, mapping={"status": to_status.value, "updated_at": now.isoformat()})
                    if to_status.is_terminal:
                        pipe.expire(key, self.__retention)
                        pipe.expire(chunks_key(upload_id), self.__retention)
                    if to_status is SessionStatus.COMPLETED:
                        pipe.zrem(EXPIRY_INDEX_KEY, upload_id)
                    await pipe.execute()
                    break
                except WatchError:
                    continue

        session = await self.find(upload_id)
        if session is None:
            raise SessionNotFound(upload_id)
        return session

    async def unmark_chunk(self, upload_id: str, chunk_index: int) -> None:
        """Forget a received chunk whose blob turned out to be unusable, so it can be sent again."""
        await self.__redis.srem(chunks_key(upload_id), chunk_index)

    async def expired_upload_ids(self, now: datetime | None = None) -> list[str]:
        now = now or self.__clock.now()
        return list(await self.__redis.zrangebyscore(EXPIRY_INDEX_KEY, "-inf", now.timestamp()))

    async def forget_expiry(self, upload_id: str) -> None:
        await self.__redis.zrem(EXPIRY_INDEX_KEY, upload_id)

    @staticmethod
    def is_complete(session: UploadSession) -> bool:
        return all(session.is_chunk_completed(i) for i in range(session.total_chunks))

    @staticmethod
    def missing_chunks(session: UploadSession) -> list[int]:
        return [i for i in range(session.total_chunks) if not session.is_chunk_completed(i)]

    @staticmethod
    def progress_percentage(session: UploadSession) -> float:
        if session.total_chunks == 0:
            return 0
        return round(session.uploaded_chunks / session.total_chunks * 100, 2)
