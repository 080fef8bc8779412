"""
Dataset Loader

Produces the one CanvasIndex a server process works with: from the cache
file when a usable one exists, otherwise by ingesting the raw source.

After a fresh ingestion the cache is written by a side task; a failed
write is logged and never affects the index already being served.
"""

from __future__ import annotations
from pathlib import Path
from typing import List, Optional, Sequence
import asyncio
import logging
import os

from ..config import ServerConfig
from ..contracts.base import IndexLoadError, PlacemapError
from ..dataset.codec import load_index, save_index
from ..dataset.index import CanvasIndex
from ..ingestion.fetcher import Shard
from ..ingestion.service import IngestionCoordinator
from ..ingestion.sources import EventSource, source_for_year

logger = logging.getLogger(__name__)


class DatasetLoader:
    """Cache-hit load or fresh ingestion of one canvas year."""

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        source: Optional[EventSource] = None,
        shards: Optional[Sequence[Shard]] = None,
        coordinator: Optional[IngestionCoordinator] = None
    ):
        self._config = config or ServerConfig()
        self._source = source
        self._shards = shards
        self._coordinator = coordinator or IngestionCoordinator(self._config.ingestion)
        self.cache_writes: List[asyncio.Task] = []

    @property
    def cache_file(self) -> Path:
        return Path(self._config.cache_file)

    async def load(self) -> CanvasIndex:
        source = self._source or source_for_year(self._config.year)
        os.makedirs(self._config.cache_dir, exist_ok=True)

        path = self.cache_file
        if path.exists() and not self._config.force_download:
            logger.info("Loading cached dataset (set PLACEMAP_FORCE_DOWNLOAD to re-download)...")
            logger.info("  File: %s", path)
            try:
                return await asyncio.to_thread(load_index, path)
            except IndexLoadError as e:
                logger.warning("Cached dataset unusable, re-ingesting: %s", e)
        else:
            logger.info("No dataset found, downloading...")

        index = await self._coordinator.ingest(source, self._shards)
        self.cache_writes.append(
            asyncio.create_task(self._write_cache(index, path), name="cache-write")
        )
        return index

    async def _write_cache(self, index: CanvasIndex, path: Path) -> None:
        try:
            await asyncio.to_thread(save_index, index, path)
        except (PlacemapError, OSError, ValueError) as e:
            logger.warning("Failed to cache dataset to file: %s", e)
