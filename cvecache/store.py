"""SQLite storage for mirrored records and partition metadata.

A connection is opened and closed for every operation.  The record
upsert of one partition runs in a single exclusive transaction, so a
reader sees either none or all of a partition's new records.
"""

import datetime as dt
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, NamedTuple, Sequence

from .errors import NotFound, StorageError
from .metafile import PartitionMetadata, format_datetime, parse_datetime
from .records import BatchEntry, Record, RecordBatch

logger = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS records (
        id VARCHAR PRIMARY KEY NOT NULL,
        description TEXT,
        payload TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS partition_metadata (
        name VARCHAR PRIMARY KEY NOT NULL,
        last_modified VARCHAR NOT NULL,
        uncompressed_size INTEGER NOT NULL,
        archive_size_variant_a INTEGER NOT NULL,
        archive_size_variant_b INTEGER NOT NULL,
        content_hash VARCHAR NOT NULL
    )
    """,
)

UPSERT_RECORD_SQL = """
    INSERT INTO records (id, description, payload)
    VALUES (?, ?, ?)
    ON CONFLICT(id) DO UPDATE SET
        description = excluded.description,
        payload = excluded.payload
"""

UPSERT_METADATA_SQL = """
    INSERT INTO partition_metadata (
        name,
        last_modified,
        uncompressed_size,
        archive_size_variant_a,
        archive_size_variant_b,
        content_hash
    )
    VALUES (?, ?, ?, ?, ?, ?)
    ON CONFLICT(name) DO UPDATE SET
        last_modified = excluded.last_modified,
        uncompressed_size = excluded.uncompressed_size,
        archive_size_variant_a = excluded.archive_size_variant_a,
        archive_size_variant_b = excluded.archive_size_variant_b,
        content_hash = excluded.content_hash
"""


class Partition(NamedTuple):
    """A partition name with its stored fingerprint (``None`` if never synced)."""

    name: str
    metadata: PartitionMetadata | None


class LocalStore:
    """Persistent record and partition-metadata store backed by SQLite.

    Attributes:
        path: Path of the SQLite database file.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection in autocommit mode and close it afterwards."""
        try:
            conn = sqlite3.connect(self.path, isolation_level=None)
        except sqlite3.Error as e:
            raise StorageError(f"cannot open {self.path}: {e}", cause=e) from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            raise StorageError(str(e), cause=e) from e
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        """Create the database file and both tables if they do not exist."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"cannot create {self.path.parent}: {e}", cause=e) from e
        with self._connect() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
        logger.debug("Schema ready at %s", self.path)

    # ── Partition metadata ──────────────────────────────────────────────────

    def get_partition_metadata(self, names: Sequence[str]) -> list[Partition]:
        """Look up the stored fingerprint of each partition.

        Args:
            names: Partition names, in the order results are wanted.

        Returns:
            One ``Partition`` per name, in the same order.  Partitions
            never synced carry ``metadata=None``.
        """
        out: list[Partition] = []
        with self._connect() as conn:
            for name in names:
                row = conn.execute(
                    "SELECT * FROM partition_metadata WHERE name = ?", (name,)
                ).fetchone()
                out.append(Partition(name, _metadata_from_row(row) if row is not None else None))
        return out

    def upsert_partition_metadata(self, name: str, metadata: PartitionMetadata) -> None:
        """Insert or replace the fingerprint stored for ``name``."""
        with self._connect() as conn:
            conn.execute(
                UPSERT_METADATA_SQL,
                (
                    name,
                    format_datetime(metadata.last_modified),
                    metadata.uncompressed_size,
                    metadata.archive_size_variant_a,
                    metadata.archive_size_variant_b,
                    metadata.content_hash,
                ),
            )

    # ── Records ─────────────────────────────────────────────────────────────

    def upsert_records(self, batch: RecordBatch, cutoff: dt.datetime | None = None) -> int:
        """Write a batch of records in one all-or-nothing transaction.

        Records whose own ``last_modified`` is strictly after ``cutoff``
        are not written.  Everything else is inserted or replaced by id.

        Args:
            batch: Records to write.
            cutoff: Optional upper bound for record modification times.

        Returns:
            Number of records skipped because of ``cutoff``.

        Raises:
            StorageError: on any database failure; nothing is written.
            SerializationError: if a payload cannot be encoded; nothing is written.
        """
        skipped = 0
        with self._connect() as conn:
            conn.execute("BEGIN EXCLUSIVE")
            try:
                for entry in batch:
                    if cutoff is not None and entry.last_modified is not None and entry.last_modified > cutoff:
                        skipped += 1
                        continue
                    self._write_record(conn, entry)
                conn.execute("COMMIT")
            except BaseException:
                # sqlite may already have rolled back on its own
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        logger.debug("Skipped %d unnecessary inserts", skipped)
        return skipped

    def _write_record(self, conn: sqlite3.Connection, entry: BatchEntry) -> None:
        conn.execute(
            UPSERT_RECORD_SQL,
            (entry.id, entry.english_description(), entry.serialize_payload()),
        )

    def get_record(self, record_id: str) -> Record:
        """Fetch one record by id.

        Raises:
            NotFound: if no record has this id.
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, description, payload FROM records WHERE id = ?", (record_id,)
            ).fetchone()
        if row is None:
            raise NotFound(record_id)
        return Record(id=row["id"], description=row["description"], payload=row["payload"])

    def list_all_records(self) -> list[Record]:
        """Return every stored record, in insertion order."""
        with self._connect() as conn:
            rows = conn.execute("SELECT id, description, payload FROM records ORDER BY rowid").fetchall()
        return [Record(id=r["id"], description=r["description"], payload=r["payload"]) for r in rows]

    def search_description(self, text: str) -> set[str]:
        """Return ids of records whose description matches ``%text%``.

        ``%`` and ``_`` in ``text`` act as SQL ``LIKE`` wildcards.
        """
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id FROM records WHERE description LIKE '%' || ? || '%'", (text,)
            ).fetchall()
        return {r["id"] for r in rows}


def _metadata_from_row(row: sqlite3.Row) -> PartitionMetadata:
    return PartitionMetadata(
        last_modified=parse_datetime(row["last_modified"]),
        uncompressed_size=row["uncompressed_size"],
        archive_size_variant_a=row["archive_size_variant_a"],
        archive_size_variant_b=row["archive_size_variant_b"],
        content_hash=row["content_hash"],
    )
