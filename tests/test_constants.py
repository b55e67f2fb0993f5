from pathlib import Path

import pytest

from madison.cache import DEFAULT_TTL
from madison.constants import MadisonSettings
from madison.errors import UnknownCoordinate


def test_defaults():
    settings = MadisonSettings.from_env({})
    assert settings.family == "ubuntu"
    assert settings.mirror_url is None
    assert settings.sources_file is None
    assert settings.cache_ttl == DEFAULT_TTL
    assert settings.suites == []


def test_values_from_environment():
    settings = MadisonSettings.from_env(
        {
            "MADISON_FAMILY": "debian",
            "MADISON_MIRROR_URL": " http://mirror.test/debian/ ",
            "MADISON_SOURCES_FILE": "/etc/apt/sources.list.d/debian.sources",
            "MADISON_SUITES": "bookworm, trixie sid",
            "MADISON_ARCHITECTURES": "amd64,arm64",
            "MADISON_CACHE_TTL": "0",
            "MADISON_FETCH_TIMEOUT": "2.5",
            "MADISON_MAX_INDEX_BYTES": "1048576",
            "MADISON_PORT": "8080",
            "UNRELATED": "x",
        }
    )
    assert settings.family == "debian"
    assert settings.mirror_url == "http://mirror.test/debian/"
    assert settings.sources_file == Path("/etc/apt/sources.list.d/debian.sources")
    assert settings.suites == ["bookworm", "trixie", "sid"]
    assert settings.architectures == ["amd64", "arm64"]
    assert settings.cache_ttl == 0
    assert settings.fetch_timeout == 2.5
    assert settings.max_index_bytes == 1048576


def test_blank_values_are_ignored():
    assert MadisonSettings.from_env({"MADISON_CACHE_TTL": "  "}).cache_ttl == DEFAULT_TTL


@pytest.mark.parametrize(
    "name, value",
    [
        ("MADISON_CACHE_TTL", "-1"),
        ("MADISON_CACHE_TTL", "soon"),
        ("MADISON_FETCH_TIMEOUT", "0"),
        ("MADISON_MAX_DOWNLOAD_BYTES", "lots"),
    ],
)
def test_invalid_values(name, value):
    with pytest.raises(UnknownCoordinate, match="MADISON_"):
        MadisonSettings.from_env({name: value})
