"""Incremental sync of feed partitions into the local store.

For every configured partition, in order:

1. read the stored fingerprint (if any),
2. fetch and parse the current fingerprint,
3. stop here if the stored copy is at least as new (unless forced),
4. otherwise fetch the whole batch, upsert its records, then store the
   new fingerprint.

Any error aborts the run; partitions finished before it stay committed.
Rolling partitions (``recent``, ``modified``) must be listed after the
yearly ones, otherwise a yearly replay can overwrite their newer records.
"""

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Callable

from .config import CacheConfig
from .metafile import PartitionMetadata, parse_metadata
from .source import FeedSource
from .store import LocalStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]

# metadata fetched, decision made, batch fetched, batch committed
CHECKPOINTS_PER_PARTITION = 4


@dataclass
class PartitionOutcome:
    """What happened to one partition during a run.

    Attributes:
        name: Partition name.
        fetched: Whether the record batch was fetched and written.
        written: Records written.
        skipped: Records left out because they were newer than the cutoff.
        last_modified: Fingerprint timestamp reported by the source.
    """

    name: str
    fetched: bool
    written: int = 0
    skipped: int = 0
    last_modified: dt.datetime | None = None


@dataclass
class SyncReport:
    """Result of a completed sync run."""

    partitions: list[PartitionOutcome] = field(default_factory=list)

    @property
    def fetched(self) -> list[str]:
        return [p.name for p in self.partitions if p.fetched]

    @property
    def current(self) -> list[str]:
        return [p.name for p in self.partitions if not p.fetched]

    @property
    def records_written(self) -> int:
        return sum(p.written for p in self.partitions)

    @property
    def records_skipped(self) -> int:
        return sum(p.skipped for p in self.partitions)


def format_size(num_bytes: int) -> str:
    """Format a byte count with a binary unit, e.g. ``113.3 KiB``."""
    size = float(num_bytes)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if size < 1024 or unit == "GiB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GiB"


class _Progress:
    """Completion counter over ``4 × partition count`` checkpoints."""

    def __init__(self, total: int, callback: ProgressCallback | None):
        self.total = total
        self.done = 0
        self.callback = callback

    def advance(self, steps: int, message: str) -> None:
        self.done += steps
        self.report(message)

    def report(self, message: str) -> None:
        if self.callback is None:
            return
        fraction = 1.0 if self.total == 0 else min(1.0, self.done / self.total)
        self.callback(fraction, message)


class SyncEngine:
    """Brings the local store up to date with a feed source.

    Attributes:
        config: Immutable run configuration (feeds, force flag, ...).
        store: Destination store.
        source: Where partitions are fetched from.
        progress: Optional ``(fraction, message)`` callback.
    """

    def __init__(
        self,
        config: CacheConfig,
        source: FeedSource,
        store: LocalStore | None = None,
        progress: ProgressCallback | None = None,
    ):
        self.config = config
        self.source = source
        self.store = store if store is not None else LocalStore(config.db)
        self.progress = progress

    def run(self) -> SyncReport:
        """Sync every configured partition, in configured order.

        Returns:
            A ``SyncReport`` with one outcome per partition.

        Raises:
            CacheError: the first failure; later partitions are not processed.
        """
        feeds = list(self.config.feeds)
        callback = self.progress if self.config.show_progress else None
        progress = _Progress(len(feeds) * CHECKPOINTS_PER_PARTITION, callback)
        progress.report("Syncing CVE Data")

        self.store.ensure_schema()
        report = SyncReport()
        for name, stored in self.store.get_partition_metadata(feeds):
            report.partitions.append(self._sync_partition(name, stored, progress))
        return report

    def _sync_partition(
        self,
        name: str,
        stored: PartitionMetadata | None,
        progress: _Progress,
    ) -> PartitionOutcome:
        metadata = parse_metadata(self.source.fetch_partition_metadata(name))
        progress.advance(1, f"[Feed: {name}] Fetched metadata")

        if stored is not None and stored.last_modified > metadata.last_modified:
            logger.warning(
                "Feed %s went back in time: stored %s, fetched %s",
                name,
                stored.format_last_modified(),
                metadata.format_last_modified(),
            )

        if self._is_current(stored, metadata):
            logger.info("Cached feed %s is the latest (%s)", name, metadata.format_last_modified())
            progress.advance(CHECKPOINTS_PER_PARTITION - 1, f"[Feed: {name}] Up to date")
            return PartitionOutcome(name=name, fetched=False, last_modified=metadata.last_modified)

        progress.advance(
            1, f"[Feed: {name}] Fetching feed ({format_size(metadata.archive_size_variant_b)})"
        )
        batch = self.source.fetch_partition_batch(name)
        progress.advance(1, f"[Feed: {name}] Syncing {len(batch)} CVEs")

        cutoff = stored.last_modified if stored is not None else None
        skipped = self.store.upsert_records(batch, cutoff)
        self.store.upsert_partition_metadata(name, metadata)
        progress.advance(1, f"[Feed: {name}] Done")

        logger.info("Synced feed %s: %d written, %d skipped", name, len(batch) - skipped, skipped)
        return PartitionOutcome(
            name=name,
            fetched=True,
            written=len(batch) - skipped,
            skipped=skipped,
            last_modified=metadata.last_modified,
        )

    def _is_current(self, stored: PartitionMetadata | None, fetched: PartitionMetadata) -> bool:
        if stored is None or self.config.force_update:
            return False
        return stored.last_modified >= fetched.last_modified


def sync(config: CacheConfig, source: FeedSource, progress: ProgressCallback | None = None) -> SyncReport:
    """Run one sync of ``config.feeds`` from ``source`` into ``config.db``."""
    return SyncEngine(config, source, progress=progress).run()
