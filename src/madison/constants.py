import os
from collections.abc import Mapping
from functools import cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from madison.cache import DEFAULT_TTL
from madison.errors import UnknownCoordinate
from madison.fetcher import DEFAULT_MAX_DOWNLOAD_BYTES, DEFAULT_MAX_INDEX_BYTES, DEFAULT_TIMEOUT
from madison.utils import split_words

ENV_PREFIX = "MADISON_"


class MadisonSettings(BaseModel):
    """Process-wide settings, read once at startup."""

    model_config = ConfigDict(frozen=True)

    family: str = "ubuntu"
    mirror_url: str | None = None
    sources_file: Path | None = None
    suites: list[str] = Field(default_factory=list)
    architectures: list[str] = Field(default_factory=list)
    compression: str = "gz"
    cache_ttl: float = Field(default=DEFAULT_TTL, ge=0)
    fetch_timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    max_download_bytes: int = Field(default=DEFAULT_MAX_DOWNLOAD_BYTES, gt=0)
    max_index_bytes: int = Field(default=DEFAULT_MAX_INDEX_BYTES, gt=0)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "MadisonSettings":
        """Build settings from ``MADISON_*`` environment variables.

        Raises:
            UnknownCoordinate: a variable holds an unusable value.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None or raw.strip() == "":
                continue
            values[name] = split_words(raw) if name in ("suites", "architectures") else raw.strip()
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise UnknownCoordinate(f"Invalid {ENV_PREFIX}* setting: {e}") from e


@cache
def get_settings() -> MadisonSettings:
    """Settings from the process environment, parsed on first use."""
    return MadisonSettings.from_env()
