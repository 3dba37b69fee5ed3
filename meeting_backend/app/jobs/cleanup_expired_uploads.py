"""Sweep expired chunked upload sessions.

Meant to be triggered periodically (cron, a scheduler) through the
``meeting-backend-cleanup`` console script, not run as a resident loop.
"""
import argparse
import asyncio
import logging

from meeting_backend.app.models.uploading import SessionStatus
from meeting_backend.app.repositories.session_registry import UploadSessionRegistry
from meeting_backend.app.utils.chunk_store import ChunkStore
from meeting_backend.app.utils.errors import SessionNotFound, SessionTerminal

logger = logging.getLogger(__name__)


class SessionReaper:
    def __init__(self, registry: UploadSessionRegistry | None = None, chunk_store: ChunkStore | None = None) -> None:
        self.__registry = registry or UploadSessionRegistry()
        self.__chunk_store = chunk_store or ChunkStore()

    async def reap(self) -> int:
        """Clean every expired, not completed session. Returns how many were cleaned.

        Never raises: failures are logged per session and the sweep moves on.
        """
        try:
            upload_ids = await self.__registry.expired_upload_ids()
        except Exception:
            logger.exception("Chunked upload cleanup job failed")
            return 0

        cleaned = 0
        for upload_id in upload_ids:
            try:
                if await self._reap_session(upload_id):
                    cleaned += 1
            except Exception:
                logger.exception(f"Failed to cleanup expired chunked upload session {upload_id}")

        if cleaned:
            logger.info(f"Chunked upload cleanup completed: {cleaned}/{len(upload_ids)} expired sessions cleaned")
        return cleaned

    async def _reap_session(self, upload_id: str) -> bool:
        session = await self.__registry.find(upload_id)
        if session is None:
            # row already dropped by its retention TTL
            await self.__chunk_store.delete_chunks(upload_id)
            await self.__registry.forget_expiry(upload_id)
            return False

        if session.status is SessionStatus.COMPLETED:
            await self.__chunk_store.delete_chunks(upload_id)
            await self.__registry.forget_expiry(upload_id)
            return False

        await self.__chunk_store.delete_chunks(upload_id)

        if not session.status.is_terminal:
            try:
                await self.__registry.transition(upload_id, SessionStatus.EXPIRED)
            except (SessionTerminal, SessionNotFound) as e:
                logger.info(f"Session {upload_id} changed during cleanup: {e}")

        await self.__registry.forget_expiry(upload_id)

        logger.info(
            f"Cleaned up expired chunked upload session {upload_id} "
            f"({session.original_filename}, {session.uploaded_chunks}/{session.total_chunks} chunks, "
            f"expired at {session.expires_at.isoformat()})"
        )
        return True


def main(argv: list[str] | None = None) -> int:
    from meeting_backend.config.logging_config import setup_logging

    parser = argparse.ArgumentParser(
        prog="meeting-backend-cleanup",
        description="Clean up expired chunked upload sessions and their chunk files",
    )
    parser.add_argument("--log-level", default=None, help="override LOG_LEVEL for this run")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    logger.info("Starting chunked upload cleanup...")

    cleaned = asyncio.run(SessionReaper().reap())
    print(f"Cleaned {cleaned} expired upload session(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
