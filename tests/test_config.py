"""
Server Configuration Tests
"""

import pytest

from placemap.config import ServerConfig, default_cache_dir
from placemap.ingestion.service import IngestionConfig


def test_defaults():
    config = ServerConfig.from_env({})

    assert config.year == 2022
    assert config.cache_dir == default_cache_dir()
    assert config.status_timeout == 1.0
    assert config.trailer_frames == 100
    assert config.frame_delay_ms == 33
    assert config.bucket_millis == 10 * 60 * 1000
    assert isinstance(config.ingestion, IngestionConfig)


def test_environment_overrides(tmp_path):
    config = ServerConfig.from_env({
        "PLACEMAP_YEAR": "2017",
        "PLACEMAP_CACHE_DIR": str(tmp_path),
        "PLACEMAP_FORCE_DOWNLOAD": "true",
        "PLACEMAP_PORT": "9090",
        "PLACEMAP_BUCKET_MINUTES": "5",
        "PLACEMAP_STATUS_TIMEOUT": "2.5",
        "PLACEMAP_LOG_LEVEL": "debug",
    })

    assert config.year == 2017
    assert config.force_download
    assert config.port == 9090
    assert config.bucket_millis == 5 * 60 * 1000
    assert config.status_timeout == 2.5
    assert config.log_level == "debug"
    assert config.cache_file == str(tmp_path / "place_data_2017.npz")


def test_empty_values_keep_defaults():
    assert ServerConfig.from_env({"PLACEMAP_PORT": ""}).port == 8000


@pytest.mark.parametrize("env", [
    {"PLACEMAP_PORT": "eighty"},
    {"PLACEMAP_BUCKET_MINUTES": "0"},
    {"PLACEMAP_TRAILER_FRAMES": "-1"},
])
def test_invalid_values(env):
    with pytest.raises(ValueError):
        ServerConfig.from_env(env)
