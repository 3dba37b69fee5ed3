from contextlib import aclosing
from pathlib import Path
from typing import AsyncIterator
import asyncio
import logging
import shutil
import uuid

import aiofiles
import aiofiles.os

from meeting_backend.config.config import settings
from meeting_backend.app.utils.errors import ChunkMissing, ValidationError, WriteFailed

logger = logging.getLogger(__name__)


class ChunkStore:
    """Blob store for uploaded chunks, addressed by (upload_id, chunk_index).

    Holds content only. Whether a chunk counts as received is decided by the
    session registry, never by the presence of a file here.
    """

    def __init__(self, chunks_location: str | Path = settings.CHUNKS_DIR) -> None:
        self.__chunks_location = Path(chunks_location)

    def chunk_dir(self, upload_id: str) -> Path:
        if not upload_id or Path(upload_id).name != upload_id or upload_id in (".", ".."):
            raise ValidationError("Invalid upload id")
        return self.__chunks_location / upload_id

    def chunk_path(self, upload_id: str, chunk_index: int) -> Path:
        return self.chunk_dir(upload_id) / f"chunk_{chunk_index}"

    async def write_chunk(self, upload_id: str, chunk_index: int, chunk_data: bytes) -> int:
        chunk_path = self.chunk_path(upload_id, chunk_index)
        # unique temp name so duplicate receives of one index never share a file
        tmp_path = chunk_path.with_name(f"{chunk_path.name}.{uuid.uuid4().hex}.part")

        try:
            await aiofiles.os.makedirs(chunk_path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(chunk_data)
            await aiofiles.os.replace(tmp_path, chunk_path)
        except OSError as e:
            logger.error(f"Error saving chunk {chunk_index} of {upload_id}: {e}")
            await self._remove_quietly(tmp_path)
            raise WriteFailed(chunk_index) from e

        return len(chunk_data)

    async def read_chunk(self, upload_id: str, chunk_index: int, block_size: int = settings.MERGING_CHUNK_SIZE) -> AsyncIterator[bytes]:
        chunk_path = self.chunk_path(upload_id, chunk_index)
        try:
            async with aiofiles.open(chunk_path, "rb") as f:
                while True:
                    block = await f.read(block_size)
                    if not block:
                        break
                    yield block
        except OSError as e:
            logger.error(f"Could not read chunk {chunk_index} of {upload_id}: {e}")
            raise ChunkMissing(chunk_index) from e

    def iter_chunk(self, upload_id: str, chunk_index: int, block_size: int = settings.MERGING_CHUNK_SIZE):
        """``read_chunk`` wrapped so the file is closed even if the consumer stops early."""
        return aclosing(self.read_chunk(upload_id, chunk_index, block_size))

    async def delete_chunks(self, upload_id: str) -> None:
        """Remove the session's chunk directory. A missing directory is not an error."""
        chunks_dir = self.chunk_dir(upload_id)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, shutil.rmtree, chunks_dir)
        except FileNotFoundError:
            return
        logger.debug(f"Removed chunk directory for {upload_id}")

    async def chunk_dir_exists(self, upload_id: str) -> bool:
        return await aiofiles.os.path.isdir(self.chunk_dir(upload_id))

    async def _remove_quietly(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove {path.name}: {e}")
