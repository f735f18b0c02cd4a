"""Shared fixtures: fixture files, a temporary store, and a fake feed source."""

import datetime as dt
from pathlib import Path

import pytest

from cvecache.errors import FetchError
from cvecache.records import BatchEntry, RecordBatch
from cvecache.source import FeedSource
from cvecache.store import LocalStore

FILES = Path(__file__).parent / "files"


def make_meta(last_modified: str, size: int = 1744779, gz_size: int = 116031) -> str:
    return f"lastModifiedDate:{last_modified}\nsize:{size}\nzipSize:116171\ngzSize:{gz_size}\nsha256:ABC123\n"


def make_entry(
    cve_id: str,
    description: str | None = "A vulnerability.",
    last_modified: dt.datetime | None = None,
) -> BatchEntry:
    descriptions = [] if description is None else [{"lang": "en", "value": description}]
    return BatchEntry(
        id=cve_id,
        descriptions=descriptions,
        payload={"CVE_data_meta": {"ID": cve_id}, "description": {"description_data": descriptions}},
        last_modified=last_modified,
    )


class FakeFeedSource(FeedSource):
    """Deterministic in-memory feed source that records every call."""

    def __init__(self):
        self.metadata: dict[str, str] = {}
        self.batches: dict[str, RecordBatch] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []

    def add(self, name: str, last_modified: str, entries: list[BatchEntry]) -> None:
        self.metadata[name] = make_meta(last_modified)
        self.batches[name] = RecordBatch(entries=list(entries))

    def fetch_partition_metadata(self, name: str) -> str:
        self.calls.append(("metadata", name))
        if ("metadata", name) in self.failures:
            raise self.failures[("metadata", name)]
        if name not in self.metadata:
            raise FetchError(f"no such feed: {name}")
        return self.metadata[name]

    def fetch_partition_batch(self, name: str) -> RecordBatch:
        self.calls.append(("batch", name))
        if ("batch", name) in self.failures:
            raise self.failures[("batch", name)]
        return self.batches[name]

    def batch_calls(self) -> list[str]:
        return [name for kind, name in self.calls if kind == "batch"]


@pytest.fixture
def store(tmp_path: Path) -> LocalStore:
    s = LocalStore(tmp_path / "cache" / "nvd.sqlite3")
    s.ensure_schema()
    return s


@pytest.fixture
def source() -> FakeFeedSource:
    return FakeFeedSource()
