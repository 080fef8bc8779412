"""
Server Configuration

One dataclass for the whole process. Defaults suit a local run; every
field can be overridden from a ``PLACEMAP_*`` environment variable.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Mapping, Optional
import os

from .dataset.codec import FILE_SUFFIX
from .ingestion.service import IngestionConfig


def default_cache_dir() -> str:
    base = os.environ.get("XDG_CACHE_HOME") or os.path.join(os.path.expanduser("~"), ".cache")
    return os.path.join(base, "placemap")


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerConfig:
    """Unified configuration for the map server."""
    year: int = 2022
    cache_dir: Optional[str] = None
    force_download: bool = False

    host: str = "localhost"
    port: int = 8000

    bucket_minutes: int = 10
    trailer_frames: int = 100
    frame_delay_ms: int = 33

    status_timeout: float = 1.0    # seconds /status waits for the index
    request_timeout: float = 30.0  # seconds render endpoints wait

    log_level: str = "INFO"
    ingestion: IngestionConfig = None

    def __post_init__(self):
        self.cache_dir = self.cache_dir or default_cache_dir()
        self.ingestion = self.ingestion or IngestionConfig()
        if self.bucket_minutes <= 0:
            raise ValueError(f"bucket_minutes {self.bucket_minutes} must be positive")
        if self.trailer_frames < 0:
            raise ValueError(f"trailer_frames {self.trailer_frames} must not be negative")

    @property
    def bucket_millis(self) -> int:
        return self.bucket_minutes * 60 * 1000

    @property
    def cache_file(self) -> str:
        return os.path.join(self.cache_dir, f"place_data_{self.year}{FILE_SUFFIX}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> ServerConfig:
        """Build a config from ``PLACEMAP_*`` variables, falling back to defaults."""
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(f"PLACEMAP_{name}")
            return value if value else None

        kwargs = {}
        for name, field_name, convert in (
            ("YEAR", "year", int),
            ("CACHE_DIR", "cache_dir", str),
            ("FORCE_DOWNLOAD", "force_download", _flag),
            ("HOST", "host", str),
            ("PORT", "port", int),
            ("BUCKET_MINUTES", "bucket_minutes", int),
            ("TRAILER_FRAMES", "trailer_frames", int),
            ("FRAME_DELAY_MS", "frame_delay_ms", int),
            ("STATUS_TIMEOUT", "status_timeout", float),
            ("REQUEST_TIMEOUT", "request_timeout", float),
            ("LOG_LEVEL", "log_level", str),
        ):
            value = get(name)
            if value is not None:
                try:
                    kwargs[field_name] = convert(value)
                except ValueError:
                    raise ValueError(f"PLACEMAP_{name}={value!r} is not a valid {field_name}") from None
        return cls(**kwargs)
