"""Record types and NVD JSON 1.1 feed parsing.

Pure functions: no I/O.  A feed document becomes a ``RecordBatch`` that
the store writes record by record.
"""

import datetime as dt
import json
from dataclasses import dataclass, field
from typing import Any, Iterator

from .errors import SerializationError

ENGLISH = "en"

_RECORD_DATETIME_FORMATS = (
    "%Y-%m-%dT%H:%MZ",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S",
)


@dataclass(frozen=True)
class Record:
    """A record as stored locally.

    Attributes:
        id: Globally unique record identifier (e.g. ``CVE-2021-43437``).
        description: English description, or ``None`` if the record has none.
        payload: The full record serialized as JSON text.
    """

    id: str
    description: str | None
    payload: str

    def data(self) -> Any:
        """Decode the JSON payload.

        Raises:
            SerializationError: if the payload is not valid JSON.
        """
        try:
            return json.loads(self.payload)
        except ValueError as e:
            raise SerializationError(f"invalid payload for {self.id}: {e}", cause=e) from e


@dataclass
class BatchEntry:
    """One incoming record, before it is written.

    Attributes:
        id: Record identifier.
        descriptions: Localized descriptions as ``{"lang": ..., "value": ...}`` dicts.
        payload: Structured record; serialized by the store, never inspected.
        last_modified: The record's own modification time (naive UTC), if known.
    """

    id: str
    descriptions: list[dict[str, Any]] = field(default_factory=list)
    payload: Any = None
    last_modified: dt.datetime | None = None

    def english_description(self) -> str | None:
        """Return the first description tagged English, or ``None``."""
        for d in self.descriptions:
            if isinstance(d, dict) and d.get("lang") == ENGLISH:
                value = d.get("value")
                return None if value is None else str(value)
        return None

    def serialize_payload(self) -> str:
        """Serialize ``payload`` to JSON text.

        Raises:
            SerializationError: if the payload is not JSON serializable.
        """
        try:
            return json.dumps(self.payload, separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"cannot serialize payload for {self.id}: {e}", cause=e) from e


@dataclass
class RecordBatch:
    """All records of one fetched partition."""

    entries: list[BatchEntry] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[BatchEntry]:
        return iter(self.entries)


def parse_record_datetime(value: Any) -> dt.datetime | None:
    """Parse a record ``lastModifiedDate`` leniently.

    NVD 1.1 feeds use ``2021-12-18T19:15Z``; RFC 3339 and the local
    storage format are accepted too.

    Returns:
        Naive UTC datetime, or ``None`` if ``value`` is missing or unparseable.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    for fmt in _RECORD_DATETIME_FORMATS:
        try:
            return dt.datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        parsed = dt.datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(dt.timezone.utc).replace(tzinfo=None)
    return parsed


def _object(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise SerializationError(f"feed item {where} is not an object: {type(value).__name__}")
    return value


def entry_from_item(item: dict[str, Any]) -> BatchEntry:
    """Build a ``BatchEntry`` from one ``CVE_Items`` element.

    Args:
        item: A feed item with ``cve``, ``lastModifiedDate`` and friends.

    Returns:
        The batch entry; its payload is the item's ``cve`` object.

    Raises:
        SerializationError: if the item has no record identifier or a
            nested field is not of the expected type.
    """
    if not isinstance(item, dict):
        raise SerializationError(f"feed item is not an object: {type(item).__name__}")
    cve = _object(item.get("cve"), "cve")
    meta = _object(cve.get("CVE_data_meta"), "cve.CVE_data_meta")
    cve_id = meta.get("ID")
    if not isinstance(cve_id, str) or not cve_id:
        raise SerializationError("feed item is missing CVE_data_meta.ID")
    descriptions = _object(cve.get("description"), "cve.description").get("description_data") or []
    if not isinstance(descriptions, list):
        raise SerializationError(f"{cve_id}: cve.description.description_data is not a list")
    return BatchEntry(
        id=cve_id,
        descriptions=[d for d in descriptions if isinstance(d, dict)],
        payload=cve,
        last_modified=parse_record_datetime(item.get("lastModifiedDate")),
    )


def batch_from_feed(doc: dict[str, Any]) -> RecordBatch:
    """Convert a decoded NVD JSON 1.1 feed into a ``RecordBatch``.

    Args:
        doc: Decoded feed document.

    Returns:
        Batch with one entry per ``CVE_Items`` element, in feed order.

    Raises:
        SerializationError: if the document is not a feed.
    """
    if not isinstance(doc, dict):
        raise SerializationError(f"feed document is not an object: {type(doc).__name__}")
    items = doc.get("CVE_Items")
    if items is None:
        items = []
    if not isinstance(items, list):
        raise SerializationError("feed CVE_Items is not a list")
    return RecordBatch(entries=[entry_from_item(item) for item in items])
