"""
Base Contracts and Shared Types

Foundational types shared by ingestion, the index, the renderers and the API.
All types here are IMMUTABLE and represent pure data.

BOUNDARY ENFORCEMENT:
=====================
- Layers may import types from here but never the other way around
- Error records are frozen dataclasses; exceptions carry them as data
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple
from enum import Enum, auto


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for every failure the pipeline can surface.
    """
    # Ingestion errors
    SOURCE_UNREACHABLE = auto()
    DECOMPRESSION_FAILED = auto()
    HEADER_MISMATCH = auto()
    MALFORMED_LINE = auto()
    COORDINATE_OUT_OF_BOUNDS = auto()
    TIMESTAMP_OUT_OF_RANGE = auto()
    PALETTE_OVERFLOW = auto()

    # Persisted store errors
    STORE_BAD_SUFFIX = auto()
    STORE_DECODE_FAILED = auto()
    STORE_VERSION_MISMATCH = auto()

    # Completion graph errors
    ALREADY_SETTLED = auto()
    WAIT_TIMEOUT = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data: they can be logged, compared and returned in responses.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def with_context(self, key: str, value: str) -> Error:
        """Return new Error with additional context (immutable)."""
        return Error(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            context=self.context + ((key, value),)
        )

    def get(self, key: str) -> Optional[str]:
        for k, v in self.context:
            if k == key:
                return v
        return None

    @staticmethod
    def now(code: ErrorCode, message: str, **context: object) -> Error:
        return Error(
            code=code,
            message=message,
            timestamp=datetime.now(timezone.utc),
            context=tuple((k, str(v)) for k, v in context.items())
        )


# =============================================================================
# EXCEPTIONS (carry an Error record)
# =============================================================================

class PlacemapError(Exception):
    """Base class for every failure raised by placemap."""

    def __init__(self, error: Error):
        super().__init__(error.message)
        self.error = error

    @property
    def code(self) -> ErrorCode:
        return self.error.code


class IngestionError(PlacemapError):
    """
    Fatal ingestion failure.

    Names the originating shard, the 1-based line number within that shard
    and the offending line text whenever they are known.
    """

    def __init__(
        self,
        error: Error,
        shard: Optional[int] = None,
        line_number: Optional[int] = None,
        line: Optional[str] = None
    ):
        if shard is not None:
            error = error.with_context("shard", str(shard))
        if line_number is not None:
            error = error.with_context("line_number", str(line_number))
        if line is not None:
            error = error.with_context("line", line)
        super().__init__(error)
        self.shard = shard
        self.line_number = line_number
        self.line = line

    def __str__(self) -> str:
        where = []
        if self.shard is not None:
            where.append(f"shard[{self.shard}]")
        if self.line_number is not None:
            where.append(f"line {self.line_number}")
        if self.line is not None:
            where.append(f"({self.line!r})")
        if not where:
            return self.error.message
        return f"{' '.join(where)}: {self.error.message}"


class HeaderMismatchError(IngestionError):
    """First line of a shard did not match the expected header."""


class PaletteOverflowError(IngestionError):
    """More distinct colors than a one-byte color index can address."""


class IndexLoadError(PlacemapError):
    """Persisted index could not be used; callers re-ingest."""


class PromiseTimeout(PlacemapError):
    """A wait on a pending promise hit its deadline."""
