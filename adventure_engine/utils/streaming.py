"""
File handles and chunked byte-stream reading for adventure imports.

Reads run in worker threads so the event loop stays responsive while large
files come off disk.
"""

import asyncio
import inspect
import io
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Awaitable, Callable, Dict, Optional, Union

from adventure_engine.utils.logger import get_logger

logger = get_logger(__name__)

ChunkProcessor = Callable[[bytes, Dict[str, Any]], Union[None, Awaitable[None]]]


@dataclass
class AdventureFile:
    """
    An adventure document to be loaded, backed by a path or in-memory bytes.

    name, size and last_modified together form the file identity used to
    detect duplicate concurrent loads.
    """

    name: str
    size: int
    last_modified: float
    path: Optional[Path] = None
    data: Optional[bytes] = None

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "AdventureFile":
        path = Path(path)
        stat = path.stat()
        return cls(
            name=path.name, size=stat.st_size, last_modified=stat.st_mtime, path=path
        )

    @classmethod
    def from_bytes(
        cls, name: str, data: bytes, last_modified: Optional[float] = None
    ) -> "AdventureFile":
        return cls(
            name=name,
            size=len(data),
            last_modified=last_modified if last_modified is not None else time.time(),
            data=data,
        )

    @property
    def identity(self) -> str:
        return f"{self.name}_{self.size}_{self.last_modified}"

    def open(self) -> IO[bytes]:
        if self.data is not None:
            return io.BytesIO(self.data)
        if self.path is not None:
            return self.path.open("rb")
        raise ValueError(f"File {self.name} has neither a path nor data")

    async def read_bytes(self, timeout: Optional[float] = None) -> bytes:
        """Read the whole file"""
        if self.data is not None:
            return self.data
        if self.path is None:
            raise ValueError(f"File {self.name} has neither a path nor data")
        return await asyncio.wait_for(
            asyncio.to_thread(self.path.read_bytes), timeout
        )


async def stream_file(
    file: AdventureFile,
    processor: ChunkProcessor,
    chunk_size: int = 64 * 1024,
    timeout: Optional[float] = None,
) -> int:
    """
    Read a file in chunks, handing each chunk to processor.

    processor receives the chunk and a dict with ``offset`` (byte offset of
    the chunk), ``size`` and ``is_last_chunk``. It may be a coroutine
    function. Each read is bounded by timeout seconds; asyncio.TimeoutError
    propagates to the caller.

    Returns:
        Total number of bytes read
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    offset = 0
    handle = file.open()
    try:
        while True:
            chunk = await asyncio.wait_for(
                asyncio.to_thread(handle.read, chunk_size), timeout
            )
            if not chunk:
                break

            result = processor(
                chunk,
                {
                    "offset": offset,
                    "size": len(chunk),
                    "is_last_chunk": offset + len(chunk) >= file.size,
                },
            )
            if inspect.isawaitable(result):
                await result

            offset += len(chunk)

            # Yield control between chunks
            await asyncio.sleep(0)
    finally:
        handle.close()

    logger.debug(f"Streamed {offset} bytes from {file.name}")
    return offset


async def write_file(filename: Union[str, Path], data: bytes) -> None:
    """Write bytes to disk in a worker thread"""
    path = Path(filename)
    await asyncio.to_thread(path.write_bytes, data)
    logger.debug(f"Wrote {len(data)} bytes to {path}")
