"""
Ingestion Service

Coordinates concurrent shard downloads and builds a CanvasIndex.

DESIGN:
=======
1. One task per shard streams line batches into a single bounded queue
2. The coordinator consumes batches strictly in sequence, so the
   IndexBuilder is mutated from exactly one logical thread
3. The first failure from any shard aborts the run: siblings are
   cancelled and no index is produced
4. Finalize runs once, after every shard completed successfully
"""

from __future__ import annotations
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence, Union
import asyncio
import logging
import time

import httpx

from ..contracts.base import Error, ErrorCode, HeaderMismatchError, IngestionError
from ..dataset.builder import IndexBuilder
from ..dataset.index import CanvasIndex
from .fetcher import Shard
from .progress import ProgressTracker
from .sources import EventSource, LineParser

logger = logging.getLogger(__name__)


@dataclass
class IngestionConfig:
    """Tuning knobs for one ingestion run."""
    batch_lines: int = 1000
    progress_interval: float = 5.0
    stagger_seconds: float = 0.05  # spreads out shard starts and their logs
    http_timeout: float = 60.0
    user_agent: str = "placemap/0.1"


# =============================================================================
# QUEUE MESSAGES
# =============================================================================

@dataclass(frozen=True)
class _Batch:
    shard: int
    first_line: int  # 1-based line number of lines[0] within the shard
    lines: List[str]


@dataclass(frozen=True)
class _ShardDone:
    shard: int
    line_count: int
    seconds: float


@dataclass(frozen=True)
class _ShardFailed:
    shard: int
    error: IngestionError


_Message = Union[_Batch, _ShardDone, _ShardFailed]


def _locate(
    error: IngestionError,
    shard: int,
    line_number: Optional[int],
    line: Optional[str] = None
) -> IngestionError:
    """Attach shard/line context to an error raised without it."""
    if error.shard is not None:
        return error
    located = type(error)(
        error.error,
        shard=shard,
        line_number=error.line_number if error.line_number is not None else line_number,
        line=error.line if error.line is not None else line,
    )
    located.__cause__ = error.__cause__ or error
    return located


class IngestionCoordinator:
    """
    Fetches shards concurrently and builds the index.

    GUARANTEES:
    ===========
    1. Each shard's first line must equal the source header (fail-closed)
    2. Errors name the shard index, line number and line text
    3. No partial index is ever returned
    """

    def __init__(
        self,
        config: Optional[IngestionConfig] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self._config = config or IngestionConfig()
        self._client = client
        self.lines_processed = 0

    async def ingest(
        self,
        source: EventSource,
        shards: Optional[Sequence[Shard]] = None
    ) -> CanvasIndex:
        """Ingest every shard of ``source`` (or the given shards) into an index."""
        shards = list(shards) if shards is not None else source.shards()
        builder = IndexBuilder(source.width, source.height, source.epoch)
        progress = ProgressTracker()
        queue: asyncio.Queue[_Message] = asyncio.Queue(maxsize=max(2 * len(shards), 1))
        started = time.monotonic()

        logger.info("Ingesting %d shard(s) of the %d canvas", len(shards), source.year)

        async with self._http_client() as client:
            tasks = [
                asyncio.create_task(
                    self._pump(i, shard, source.header, client, progress, queue),
                    name=f"shard-{i}",
                )
                for i, shard in enumerate(shards)
            ]
            reporter = asyncio.create_task(self._report(progress), name="ingest-progress")
            try:
                await self._consume(len(tasks), queue, source.parse_line, builder)
            finally:
                reporter.cancel()
                for task in tasks:
                    task.cancel()
                await asyncio.gather(reporter, *tasks, return_exceptions=True)

        logger.info("Progress: %s", progress)
        logger.info(
            "Download complete after %.1fs (%d lines, %d events)",
            time.monotonic() - started, self.lines_processed, builder.event_count,
        )
        return builder.finalize()

    @asynccontextmanager
    async def _http_client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(
            timeout=self._config.http_timeout,
            headers={'User-Agent': self._config.user_agent},
            follow_redirects=True
        ) as client:
            yield client

    # =========================================================================
    # PRODUCERS (one per shard)
    # =========================================================================

    async def _pump(
        self,
        shard_no: int,
        shard: Shard,
        header: str,
        client: httpx.AsyncClient,
        progress: ProgressTracker,
        queue: asyncio.Queue
    ) -> None:
        started = time.monotonic()
        line_number = 0
        try:
            await asyncio.sleep(shard_no * self._config.stagger_seconds)

            batch: List[str] = []
            async with aclosing(shard.lines(client, progress)) as lines:
                async for line in lines:
                    line_number += 1
                    if line_number == 1:
                        if line != header:
                            raise HeaderMismatchError(
                                Error.now(
                                    ErrorCode.HEADER_MISMATCH,
                                    f"header = {line!r}, want {header!r}",
                                ),
                                shard=shard_no,
                                line_number=1,
                                line=line,
                            )
                        logger.debug("[%02d] Header: %r", shard_no, line)
                        continue

                    batch.append(line)
                    if len(batch) >= self._config.batch_lines:
                        await queue.put(_Batch(shard_no, line_number - len(batch) + 1, batch))
                        batch = []

            if line_number == 0:
                raise HeaderMismatchError(
                    Error.now(ErrorCode.HEADER_MISMATCH, f"shard is empty, want header {header!r}"),
                    shard=shard_no,
                )
            if batch:
                await queue.put(_Batch(shard_no, line_number - len(batch) + 1, batch))
            await queue.put(_ShardDone(shard_no, line_number, time.monotonic() - started))

        except IngestionError as e:
            await queue.put(_ShardFailed(shard_no, _locate(e, shard_no, line_number + 1)))
        except Exception as e:
            # Every shard failure reaches the consumer
            failure = IngestionError(
                Error.now(ErrorCode.SOURCE_UNREACHABLE, f"reading {shard.describe()}: {e}"),
                shard=shard_no,
                line_number=line_number + 1,
            )
            failure.__cause__ = e
            await queue.put(_ShardFailed(shard_no, failure))

    async def _report(self, progress: ProgressTracker) -> None:
        while True:
            await asyncio.sleep(self._config.progress_interval)
            logger.info("Progress: %s", progress)

    # =========================================================================
    # CONSUMER (single, sequential)
    # =========================================================================

    async def _consume(
        self,
        pending: int,
        queue: asyncio.Queue,
        parse_line: LineParser,
        builder: IndexBuilder
    ) -> None:
        while pending:
            message = await queue.get()

            if isinstance(message, _ShardFailed):
                logger.error("Ingestion aborted: %s", message.error)
                raise message.error

            if isinstance(message, _ShardDone):
                pending -= 1
                logger.info(
                    "[%02d] Shard complete (%d lines, took %.1fs)",
                    message.shard, message.line_count, message.seconds,
                )
                continue

            for offset, line in enumerate(message.lines):
                line_number = message.first_line + offset
                try:
                    events = parse_line(line)
                except ValueError as e:
                    raise IngestionError(
                        Error.now(ErrorCode.MALFORMED_LINE, str(e)),
                        shard=message.shard,
                        line_number=line_number,
                        line=line,
                    ) from e
                try:
                    for event in events:
                        builder.add(event)
                except IngestionError as e:
                    raise _locate(e, message.shard, line_number, line) from e
            self.lines_processed += len(message.lines)

            # Let shard tasks refill the queue between batches
            await asyncio.sleep(0)
