"""Unit tests for cvecache.source: HTTP and directory feed sources."""

import gzip
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from cvecache.errors import FetchError, SerializationError
from cvecache.metafile import parse_metadata
from cvecache.source import DirectoryFeedSource, HttpFeedSource, decode_feed, download_bytes, requests_session

FILES = Path(__file__).parent / "files"
FEED_JSON = (FILES / "nvdcve-1.1-recent.json").read_bytes()
META = (FILES / "nvdcve-1.1-recent.meta").read_bytes()


def _session(content: bytes) -> MagicMock:
    session = MagicMock()
    session.get.return_value.content = content
    session.get.return_value.raise_for_status = MagicMock()
    return session


# ── requests_session ─────────────────────────────────────────────────────────


class TestRequestsSession:
    def test_user_agent(self):
        assert requests_session().headers["User-Agent"].startswith("cvecache/")


# ── decode_feed ──────────────────────────────────────────────────────────────


class TestDecodeFeed:
    def test_gzip(self):
        assert len(decode_feed(gzip.compress(FEED_JSON))) == 3

    def test_multi_member_gzip(self):
        half = len(FEED_JSON) // 2
        raw = gzip.compress(FEED_JSON[:half]) + gzip.compress(FEED_JSON[half:])
        assert len(decode_feed(raw)) == 3

    def test_plain(self):
        assert len(decode_feed(FEED_JSON, compressed=False)) == 3

    def test_not_gzip(self):
        with pytest.raises(FetchError):
            decode_feed(b"not gzip")

    def test_not_json(self):
        with pytest.raises(FetchError):
            decode_feed(gzip.compress(b"{nope"))

    def test_corrupt_stream(self):
        raw = bytearray(gzip.compress(b'{"CVE_Items": []}' * 50))
        for i in range(10, len(raw) - 8):
            raw[i] ^= 0xFF
        with pytest.raises(FetchError):
            decode_feed(bytes(raw))

    def test_not_a_feed(self):
        with pytest.raises(SerializationError):
            decode_feed(b"[1, 2]", compressed=False)


# ── HttpFeedSource ───────────────────────────────────────────────────────────


class TestHttpFeedSource:
    def test_metadata_url(self):
        session = _session(META)
        src = HttpFeedSource("https://nvd.example/feeds/json/cve/1.1", session=session)
        text = src.fetch_partition_metadata("recent")
        assert parse_metadata(text).archive_size_variant_b == 116031
        url = session.get.call_args[0][0]
        assert url == "https://nvd.example/feeds/json/cve/1.1/nvdcve-1.1-recent.meta"

    def test_batch(self):
        session = _session(gzip.compress(FEED_JSON))
        src = HttpFeedSource("https://nvd.example/", session=session)
        batch = src.fetch_partition_batch("2019")
        assert session.get.call_args[0][0] == "https://nvd.example/nvdcve-1.1-2019.json.gz"
        assert [e.id for e in batch][0] == "CVE-2021-43437"

    def test_transport_error_wrapped(self):
        with patch("cvecache.source.download_bytes", side_effect=requests.ConnectionError("refused")):
            src = HttpFeedSource("https://nvd.example/", session=MagicMock())
            with pytest.raises(FetchError) as excinfo:
                src.fetch_partition_metadata("recent")
        assert isinstance(excinfo.value.cause, requests.ConnectionError)

    def test_non_utf8_metadata(self):
        src = HttpFeedSource("https://nvd.example/", session=_session(b"\xff\xfe"))
        with pytest.raises(FetchError):
            src.fetch_partition_metadata("recent")


class TestDownloadBytesRetry:
    def test_retries_then_succeeds(self):
        session = MagicMock()
        ok = MagicMock(content=b"data")
        session.get.side_effect = [requests.ConnectionError("reset"), ok]
        fast = download_bytes.retry_with(wait=lambda *_: 0)
        assert fast(session, "https://nvd.example/x") == b"data"
        assert session.get.call_count == 2

    def test_gives_up_with_last_error(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("down")
        fast = download_bytes.retry_with(wait=lambda *_: 0)
        with pytest.raises(requests.ConnectionError):
            fast(session, "https://nvd.example/x")
        assert session.get.call_count == 5


# ── DirectoryFeedSource ──────────────────────────────────────────────────────


class TestDirectoryFeedSource:
    def test_plain_json(self):
        src = DirectoryFeedSource(FILES)
        assert parse_metadata(src.fetch_partition_metadata("recent")).uncompressed_size == 1744779
        assert len(src.fetch_partition_batch("recent")) == 3

    def test_prefers_gzip(self, tmp_path: Path):
        (tmp_path / "nvdcve-1.1-2019.json.gz").write_bytes(gzip.compress(FEED_JSON))
        (tmp_path / "nvdcve-1.1-2019.json").write_bytes(b"not read")
        assert len(DirectoryFeedSource(tmp_path).fetch_partition_batch("2019")) == 3

    def test_missing_partition(self, tmp_path: Path):
        src = DirectoryFeedSource(tmp_path)
        with pytest.raises(FetchError):
            src.fetch_partition_metadata("recent")
        with pytest.raises(FetchError):
            src.fetch_partition_batch("recent")
