"""Configuration model using Pydantic.

A ``CacheConfig`` is built once (defaults, a config file, command line
overrides) and then handed to the sync engine unchanged.
"""

import datetime as dt
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

NVD_FEED_BASE_URL = "https://nvd.nist.gov/feeds/json/cve/1.1/"
FIRST_FEED_YEAR = 2002
CACHE_NAMESPACE = "nvd"
DB_NAME = "nvd.sqlite3"


def default_feeds() -> list[str]:
    """Every yearly partition up to the current year, then the rolling ones.

    ``recent`` and ``modified`` come last so that their newer copies of a
    record are not overwritten by an older yearly partition in the same run.
    """
    years = [str(y) for y in range(FIRST_FEED_YEAR, dt.datetime.now().year + 1)]
    return years + ["recent", "modified"]


def default_db_path() -> str:
    """Pick a database location following the XDG base directory convention.

    Uses ``$XDG_CACHE_HOME`` when set and non-empty, otherwise
    ``~/.cache``, otherwise the OS temporary directory.

    Returns:
        Path string ending in ``nvd/nvd.sqlite3``.
    """
    xdg_cache_home = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache_home:
        base = Path(xdg_cache_home)
    else:
        try:
            base = Path.home() / ".cache"
        except RuntimeError:
            base = Path(tempfile.gettempdir())
    return str(base / CACHE_NAMESPACE / DB_NAME)


class CacheConfig(BaseModel):
    """Validated, immutable sync configuration.

    Example YAML::

        url: https://nvd.nist.gov/feeds/json/cve/1.1/
        feeds:
          - "2021"
          - recent
          - modified
        db: /var/cache/nvd/nvd.sqlite3
        show_progress: false

    Attributes:
        url: Base URL the feed files live under.
        feeds: Partition names, synced in this order.
        db: Path of the SQLite database.
        show_progress: Report progress while syncing.
        force_update: Fetch every partition even if the stored copy is current.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = NVD_FEED_BASE_URL
    feeds: list[str] = Field(default_factory=default_feeds)
    db: str = Field(default_factory=default_db_path)
    show_progress: bool = True
    force_update: bool = False

    @field_validator("url")
    @classmethod
    def _trailing_slash(cls, v: str) -> str:
        """Make sure feed file names join beneath the base URL."""
        v = v.strip()
        return v if v.endswith("/") else v + "/"

    @field_validator("feeds", mode="before")
    @classmethod
    def _split_feeds(cls, v: Any) -> Any:
        """Accept ``"2021,recent"`` as well as a list; drop blanks."""
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, (list, tuple)):
            v = [str(item).strip() for item in v if str(item).strip()]
            if not v:
                raise ValueError("at least one feed is required")
        return v

    def describe(self) -> str:
        """Human-readable summary, one setting per line."""
        return (
            f"Url: {self.url}\n"
            f"Feeds: {','.join(self.feeds)}\n"
            f"DB Path: {self.db}\n"
            f"Progress Bar: {self.show_progress}\n"
        )


def load_config(path: Path, **overrides: Any) -> CacheConfig:
    """Load a configuration from a YAML or JSON file.

    Args:
        path: Path to the configuration file.
        **overrides: Values that replace the file's (``None`` is ignored).

    Returns:
        Validated ``CacheConfig`` instance.

    Raises:
        FileNotFoundError: if the file doesn't exist.
        pydantic.ValidationError: if content fails validation.
    """
    suffix = path.suffix.lower()
    content = path.read_text(encoding="utf-8")

    if suffix == ".json":
        raw = json.loads(content)
    else:
        try:
            raw = yaml.safe_load(content) or {}
        except yaml.YAMLError:
            raw = json.loads(content)

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a mapping, got {type(raw).__name__}")
    raw.update({k: v for k, v in overrides.items() if v is not None})
    return CacheConfig.model_validate(raw)
