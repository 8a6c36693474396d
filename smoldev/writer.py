"""
Streaming file persistence

Chunks are appended and flushed as they arrive so partial output is on
disk even if the stream dies. In atomic mode the chunks go to a sibling
``<name>.partial`` file that replaces the destination only once the
stream has finished; a failed stream leaves the ``.partial`` file behind
and the destination absent, so the next run regenerates it.
"""

from pathlib import Path
from typing import AsyncIterator, Callable, Optional

import aiofiles
import aiofiles.os

from smoldev.exceptions import FileWriteError
from smoldev.logging_config import logger


PARTIAL_SUFFIX = ".partial"


def partial_path(destination: Path) -> Path:
    return destination.with_name(destination.name + PARTIAL_SUFFIX)


def is_generated(destination: Path) -> bool:
    """A destination counts as generated when it exists and is non-empty"""
    try:
        return destination.is_file() and destination.stat().st_size > 0
    except OSError:
        return False


async def ensure_directory(directory: Path) -> None:
    """Create directory and parents; an existing directory is fine"""
    try:
        await aiofiles.os.makedirs(directory, exist_ok=True)
    except OSError as e:
        raise FileWriteError(str(directory), e) from e


class StreamingFileWriter:
    """Persists a chunk stream to one destination file"""

    def __init__(self, atomic: bool = True):
        self.atomic = atomic

    async def write_stream(
        self,
        destination: Path,
        chunks: AsyncIterator[str],
        on_chunk: Optional[Callable[[int], None]] = None,
    ) -> int:
        """
        Write every chunk to disk as it arrives.

        Args:
            destination: Absolute output path
            chunks: Text chunks from the content generator
            on_chunk: Called with the byte size of each persisted chunk

        Returns:
            Number of bytes written

        Raises:
            FileWriteError: on directory creation, open, write or rename failure.
            Errors raised by the chunk stream propagate unchanged.
        """
        await ensure_directory(destination.parent)

        target = partial_path(destination) if self.atomic else destination
        # A stale .partial from an earlier failed run is overwritten
        mode = "w" if self.atomic else "a"

        written = 0
        try:
            f = await aiofiles.open(target, mode, encoding="utf-8")
        except OSError as e:
            raise FileWriteError(str(target), e) from e

        try:
            async for chunk in chunks:
                if not chunk:
                    continue
                try:
                    await f.write(chunk)
                    await f.flush()
                except OSError as e:
                    raise FileWriteError(str(target), e) from e
                size = len(chunk.encode("utf-8"))
                written += size
                if on_chunk is not None:
                    on_chunk(size)
        finally:
            await f.close()
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

        if self.atomic:
            try:
                await aiofiles.os.replace(target, destination)
            except OSError as e:
                raise FileWriteError(str(destination), e) from e

        logger.debug(f"Wrote {written} bytes to {destination}")
        return written
