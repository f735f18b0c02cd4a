"""Partition metadata ("meta" files).

Every NVD feed partition is published together with a small text file
describing it::

    lastModifiedDate:2021-12-18T19:00:00-05:00
    size:1744779
    zipSize:116171
    gzSize:116031
    sha256:0EA38A9771747DD51A3E009FB8738732144266C4EF4EDC548B70F33555CC1586

Only the part after the first colon of each line matters.  The
timestamp is what decides whether a partition must be fetched again.
"""

import datetime as dt
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from .errors import LineError, MetadataFileError, ParseIntError, SplitError

logger = logging.getLogger(__name__)

STORED_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"
EPOCH = dt.datetime(1970, 1, 1)

_UNSIGNED = re.compile(r"^[0-9]+$")
# largest value an SQLite INTEGER column can hold
MAX_SIZE = 2**63 - 1


@dataclass(frozen=True)
class PartitionMetadata:
    """Freshness fingerprint of one feed partition.

    Attributes:
        last_modified: Naive UTC timestamp of the partition.
        uncompressed_size: Size of the uncompressed JSON in bytes.
        archive_size_variant_a: Size of the zip archive in bytes.
        archive_size_variant_b: Size of the gzip archive in bytes.
        content_hash: SHA-256 hex digest of the uncompressed JSON, as published.
    """

    last_modified: dt.datetime
    uncompressed_size: int
    archive_size_variant_a: int
    archive_size_variant_b: int
    content_hash: str

    def format_last_modified(self) -> str:
        """Format ``last_modified`` the way it is stored locally."""
        return format_datetime(self.last_modified)


def parse_datetime(value: str) -> dt.datetime:
    """Parse a timestamp from a metadata file or from the local store.

    RFC 3339 input (with offset) is converted to naive UTC.  Input
    without an offset must match ``YYYY-MM-DDTHH:MM:SS``.  Anything else
    logs a warning and yields the Unix epoch.

    Args:
        value: Timestamp text.

    Returns:
        Naive UTC datetime.
    """
    text = (value or "").strip()
    try:
        parsed = dt.datetime.fromisoformat(text.replace("Z", "+00:00"))
        if parsed.tzinfo is not None:
            return parsed.astimezone(dt.timezone.utc).replace(tzinfo=None)
    except ValueError:
        pass
    try:
        return dt.datetime.strptime(text, STORED_DATETIME_FORMAT)
    except ValueError:
        logger.warning("Failed parsing datetime: %r", value)
        return EPOCH


def format_datetime(value: dt.datetime) -> str:
    """Format a naive UTC datetime for storage."""
    return value.strftime(STORED_DATETIME_FORMAT)


def _field(lines: list[str], index: int) -> str:
    if index >= len(lines):
        raise LineError(f"expected 5 metadata lines, got {len(lines)}")
    _, sep, value = lines[index].partition(":")
    if not sep:
        raise SplitError(f"metadata line {index + 1} has no ':' separator: {lines[index]!r}")
    return value


def _size(lines: list[str], index: int) -> int:
    value = _field(lines, index)
    if not _UNSIGNED.match(value):
        raise ParseIntError(f"metadata line {index + 1} is not an unsigned integer: {value!r}")
    size = int(value)
    if size > MAX_SIZE:
        raise ParseIntError(f"metadata line {index + 1} is out of range: {value!r}")
    return size


def parse_metadata(text: str) -> PartitionMetadata:
    """Parse the text of a partition metadata file.

    Args:
        text: Raw metadata text.

    Returns:
        Parsed ``PartitionMetadata``.

    Raises:
        LineError: fewer than five lines.
        SplitError: a line without a colon.
        ParseIntError: a size field that is not an unsigned integer.
    """
    lines = text.splitlines()
    return PartitionMetadata(
        last_modified=parse_datetime(_field(lines, 0)),
        uncompressed_size=_size(lines, 1),
        archive_size_variant_a=_size(lines, 2),
        archive_size_variant_b=_size(lines, 3),
        content_hash=_field(lines, 4),
    )


def read_metadata_file(path: Path) -> PartitionMetadata:
    """Parse a metadata file from disk.

    Raises:
        MetadataFileError: if the file cannot be read.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise MetadataFileError(f"cannot read metadata file {path}: {e}", cause=e) from e
    return parse_metadata(text)
