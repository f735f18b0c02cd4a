"""Feed sources.

A ``FeedSource`` hands the sync engine two things per partition: the
raw metadata text and the parsed record batch.  All network I/O lives
here; the rest of the package works with in-memory data structures.
"""

import gzip
import json
import logging
import zlib
from abc import ABC, abstractmethod
from pathlib import Path

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from . import __version__
from .errors import FetchError
from .records import RecordBatch, batch_from_feed

logger = logging.getLogger(__name__)

FEED_FILE_PREFIX = "nvdcve-1.1-"
DEFAULT_HTTP_TIMEOUT = (10, 300)  # (connect, read)


def metadata_filename(name: str) -> str:
    return f"{FEED_FILE_PREFIX}{name}.meta"


def feed_filename(name: str, compressed: bool = True) -> str:
    return f"{FEED_FILE_PREFIX}{name}.json{'.gz' if compressed else ''}"


def decode_feed(raw: bytes, compressed: bool = True) -> RecordBatch:
    """Decompress and parse a feed file into a ``RecordBatch``.

    Args:
        raw: File contents; gzip (possibly multi-member) when ``compressed``.
        compressed: Whether ``raw`` is gzipped.

    Raises:
        FetchError: if the bytes are not gzip or not JSON.
        SerializationError: if the JSON is not a feed document.
    """
    try:
        data = gzip.decompress(raw) if compressed else raw
        doc = json.loads(data.decode("utf-8"))
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, ValueError) as e:
        raise FetchError(f"cannot decode feed: {e}", cause=e) from e
    return batch_from_feed(doc)


def _metadata_text(name: str, raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FetchError(f"metadata for {name} is not UTF-8", cause=e) from e


class FeedSource(ABC):
    """Base class for anything that can supply feed partitions.

    Implementations raise ``FetchError`` for every transport or decode
    failure; retries, if any, happen inside the implementation.
    """

    @abstractmethod
    def fetch_partition_metadata(self, name: str) -> str:
        """Return the raw metadata text of partition ``name``."""
        ...

    @abstractmethod
    def fetch_partition_batch(self, name: str) -> RecordBatch:
        """Return all records of partition ``name``."""
        ...


# ─────────────────────────────────────────────────────────────────────────────
# HTTP
# ─────────────────────────────────────────────────────────────────────────────


def requests_session() -> requests.Session:
    """Create a requests session with the cvecache User-Agent.

    Returns:
        Configured ``requests.Session``.
    """
    s = requests.Session()
    s.headers.update({"User-Agent": f"cvecache/{__version__}"})
    return s


@retry(
    retry=retry_if_exception_type(requests.RequestException),
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    reraise=True,
)
def download_bytes(session: requests.Session, url: str, timeout=DEFAULT_HTTP_TIMEOUT) -> bytes:
    """Download raw bytes from a URL with retry logic.

    Args:
        session: Requests session.
        url: URL to fetch.
        timeout: ``(connect, read)`` timeout in seconds.

    Returns:
        Raw bytes of the response body.
    """
    logger.debug("GET %s", url)
    r = session.get(url, timeout=timeout)
    r.raise_for_status()
    return r.content


class HttpFeedSource(FeedSource):
    """Fetches ``nvdcve-1.1-<name>.meta`` and ``.json.gz`` files over HTTP.

    Attributes:
        base_url: URL the feed files live under (ends with ``/``).
        session: Requests session used for every download.
    """

    def __init__(
        self,
        base_url: str,
        session: requests.Session | None = None,
        timeout: tuple[float, float] = DEFAULT_HTTP_TIMEOUT,
    ):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.session = session or requests_session()
        self.timeout = timeout

    def _get(self, filename: str) -> bytes:
        url = self.base_url + filename
        try:
            return download_bytes(self.session, url, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"failed fetching {url}: {e}", cause=e) from e

    def fetch_partition_metadata(self, name: str) -> str:
        return _metadata_text(name, self._get(metadata_filename(name)))

    def fetch_partition_batch(self, name: str) -> RecordBatch:
        return decode_feed(self._get(feed_filename(name)))


# ─────────────────────────────────────────────────────────────────────────────
# Local directory
# ─────────────────────────────────────────────────────────────────────────────


class DirectoryFeedSource(FeedSource):
    """Reads feed files from a local directory, e.g. an offline mirror.

    The batch is read from ``.json.gz`` if present, else from plain ``.json``.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _read(self, filename: str) -> bytes:
        path = self.root / filename
        try:
            return path.read_bytes()
        except OSError as e:
            raise FetchError(f"cannot read {path}: {e}", cause=e) from e

    def fetch_partition_metadata(self, name: str) -> str:
        return _metadata_text(name, self._read(metadata_filename(name)))

    def fetch_partition_batch(self, name: str) -> RecordBatch:
        compressed = (self.root / feed_filename(name)).exists()
        return decode_feed(self._read(feed_filename(name, compressed)), compressed)
