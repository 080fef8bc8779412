"""
Shard Readers

Turn one shard of a raw event source into a stream of decoded text lines.

SHARD KINDS:
============
- HttpShard: streamed GET via httpx, counted against Content-Length
- FileShard: local file, read in blocks off the event loop
- BytesShard: in-memory payload (fixtures, replays)

Any shard may be gzip-compressed; decompression is incremental so a shard
never has to fit in memory.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, Optional, Union
import asyncio
import logging
import zlib

import httpx

from ..contracts.base import Error, ErrorCode, IngestionError
from .progress import ProgressTracker

logger = logging.getLogger(__name__)

READ_BLOCK = 64 * 1024


class _Gunzip:
    """Incremental gzip decoder that follows concatenated members."""

    def __init__(self):
        self._decoder = zlib.decompressobj(16 + zlib.MAX_WBITS)

    def feed(self, data: bytes) -> bytes:
        out = []
        while data:
            if self._decoder.eof:
                self._decoder = zlib.decompressobj(16 + zlib.MAX_WBITS)
            out.append(self._decoder.decompress(data))
            data = self._decoder.unused_data if self._decoder.eof else b""
        return b"".join(out)

    def finish(self) -> bytes:
        if not self._decoder.eof:
            raise zlib.error("truncated gzip stream")
        return self._decoder.flush()


class Shard(ABC):
    """
    Abstract shard interface.

    Subclasses provide ``read_blocks``; ``lines`` handles decompression
    and line splitting for all of them.
    """

    gzipped: bool = False

    @abstractmethod
    def describe(self) -> str:
        """Human-readable shard name for logs and errors."""

    @abstractmethod
    def read_blocks(
        self,
        client: httpx.AsyncClient,
        progress: ProgressTracker
    ) -> AsyncIterator[bytes]:
        """Yield the raw (possibly compressed) bytes of the shard."""

    async def lines(
        self,
        client: httpx.AsyncClient,
        progress: ProgressTracker
    ) -> AsyncIterator[str]:
        """Yield lines without their terminators."""
        gunzip = _Gunzip() if self.gzipped else None
        pending = b""
        try:
            async for block in self.read_blocks(client, progress):
                if gunzip is not None:
                    block = gunzip.feed(block)
                pending += block
                *complete, pending = pending.split(b"\n")
                for raw in complete:
                    yield self._decode(raw)
            if gunzip is not None:
                pending += gunzip.finish()
                *complete, pending = pending.split(b"\n")
                for raw in complete:
                    yield self._decode(raw)
        except zlib.error as e:
            raise IngestionError(Error.now(
                ErrorCode.DECOMPRESSION_FAILED,
                f"decompressing {self.describe()}: {e}",
            )) from e
        if pending:
            yield self._decode(pending)

    @staticmethod
    def _decode(raw: bytes) -> str:
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise IngestionError(Error.now(
                ErrorCode.MALFORMED_LINE,
                f"line is not valid UTF-8: {e}",
            )) from e


class HttpShard(Shard):
    """Shard streamed from a URL."""

    def __init__(self, url: str, gzipped: bool = False):
        self.url = url
        self.gzipped = gzipped

    def describe(self) -> str:
        return self.url

    async def read_blocks(
        self,
        client: httpx.AsyncClient,
        progress: ProgressTracker
    ) -> AsyncIterator[bytes]:
        async with client.stream("GET", self.url) as response:
            if response.status_code != 200:
                raise IngestionError(Error.now(
                    ErrorCode.SOURCE_UNREACHABLE,
                    f"GET {self.url!r} returned {response.status_code} {response.reason_phrase}",
                    url=self.url,
                ))
            length = response.headers.get("content-length")
            if length is not None and length.isdigit():
                progress.add_total(int(length))
            logger.debug("Starting download of %s", self.url)

            seen = 0
            async for block in response.aiter_bytes():
                downloaded = response.num_bytes_downloaded
                progress.add_progress(downloaded - seen)
                seen = downloaded
                yield block


class FileShard(Shard):
    """Shard read from the local filesystem."""

    def __init__(self, path: Union[str, Path], gzipped: Optional[bool] = None):
        self.path = Path(path)
        self.gzipped = self.path.suffix in (".gz", ".gzip") if gzipped is None else gzipped

    def describe(self) -> str:
        return str(self.path)

    async def read_blocks(
        self,
        client: httpx.AsyncClient,
        progress: ProgressTracker
    ) -> AsyncIterator[bytes]:
        progress.add_total(self.path.stat().st_size)
        with self.path.open("rb") as f:
            while True:
                block = await asyncio.to_thread(f.read, READ_BLOCK)
                if not block:
                    break
                progress.add_progress(len(block))
                yield block


class BytesShard(Shard):
    """Shard held in memory."""

    def __init__(self, data: bytes, gzipped: bool = False, name: str = "<bytes>"):
        self.data = data
        self.gzipped = gzipped
        self.name = name

    def describe(self) -> str:
        return self.name

    async def read_blocks(
        self,
        client: httpx.AsyncClient,
        progress: ProgressTracker
    ) -> AsyncIterator[bytes]:
        progress.add_total(len(self.data))
        for i in range(0, len(self.data), READ_BLOCK):
            block = self.data[i:i + READ_BLOCK]
            progress.add_progress(len(block))
            yield block
            await asyncio.sleep(0)
