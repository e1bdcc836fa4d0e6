"""Unit tests for the fetch cache."""

import os
import time
from email.utils import formatdate
from pathlib import Path

import httpx
import pytest
import respx

from rssmix.core.fetcher import FetchOutcome, FetchResult, FetchStats, SourceFetcher, needs_download
from rssmix.models import CompilationCreate
from rssmix.storage.repositories import CatalogueRepository, WatermarkRepository

FEED_URL = "https://example.com/feed.xml"
FEED_BODY = b"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>Example</title>
<item><title>Hello</title><description>World</description></item>
</channel></rss>"""


def http_date(offset_seconds: float) -> str:
    return formatdate(time.time() + offset_seconds, usegmt=True)


@pytest.fixture
def source_id(db_manager, config):
    """Create one source through a compilation."""
    with db_manager.session() as session:
        compilation = CatalogueRepository(session, config.public).create_compilation(
            CompilationCreate(urls=[FEED_URL])
        )
        return compilation.sources[0].id


@pytest.fixture
def fetcher(context):
    """Create a source fetcher."""
    return SourceFetcher(context)


def source_status(db_manager, source_id):
    with db_manager.session() as session:
        return WatermarkRepository(session).get_source_status(source_id)


class TestFetchResult:
    """Tests for FetchResult dataclass."""

    def test_failed_result_gets_default_error(self):
        """A failure without an error message gets a generic one."""
        result = FetchResult(
            success=False, source_id=1, source_url=FEED_URL, outcome=FetchOutcome.ERROR
        )
        assert result.error == "Unknown error"

    def test_result_validation(self):
        """A success cannot carry an error."""
        with pytest.raises(ValueError):
            FetchResult(
                success=True,
                source_id=1,
                source_url=FEED_URL,
                outcome=FetchOutcome.DOWNLOADED,
                error="Should not have error",
            )

    def test_stats_add_result(self):
        """Outcomes are counted per kind."""
        stats = FetchStats()
        stats.add_result(FetchResult(
            success=True, source_id=1, source_url=FEED_URL,
            outcome=FetchOutcome.DOWNLOADED, bytes_written=10,
        ))
        stats.add_result(FetchResult(
            success=False, source_id=2, source_url=FEED_URL,
            outcome=FetchOutcome.HEAD_FAILED, error="timeout",
        ))

        assert stats.total_sources == 2
        assert stats.downloaded == 1
        assert stats.total_bytes == 10
        assert stats.failed == 1
        assert stats.errors_by_type == {"head_failed": 1}


class TestNeedsDownload:
    """Tests for the freshness decision."""

    def test_missing_file(self, tmp_path: Path):
        """No cache file always downloads."""
        assert needs_download({}, tmp_path / "missing") == "no cache file"

    def test_no_headers_keeps_cache(self, tmp_path: Path):
        """Missing headers are not a trigger."""
        path = tmp_path / "cached"
        path.write_bytes(FEED_BODY)
        assert needs_download({}, path) is None

    def test_newer_last_modified(self, tmp_path: Path):
        """Last-Modified after the file mtime triggers a download."""
        path = tmp_path / "cached"
        path.write_bytes(FEED_BODY)
        headers = {"Last-Modified": http_date(3600), "Content-Length": str(len(FEED_BODY))}
        assert needs_download(headers, path) == "server has newer version"

    def test_older_last_modified_same_size(self, tmp_path: Path):
        """Older Last-Modified and the same size keep the cache."""
        path = tmp_path / "cached"
        path.write_bytes(FEED_BODY)
        headers = {"Last-Modified": http_date(-3600), "Content-Length": str(len(FEED_BODY))}
        assert needs_download(headers, path) is None

    def test_different_size(self, tmp_path: Path):
        """A different Content-Length triggers a download."""
        path = tmp_path / "cached"
        path.write_bytes(FEED_BODY)
        assert needs_download({"Content-Length": "1"}, path) == "server has different size"

    def test_unparseable_headers_ignored(self, tmp_path: Path):
        """Garbage header values never trigger on their own."""
        path = tmp_path / "cached"
        path.write_bytes(FEED_BODY)
        headers = {"Last-Modified": "yesterday-ish", "Content-Length": "many"}
        assert needs_download(headers, path) is None

    def test_unknown_zone_last_modified_is_utc(self, tmp_path: Path, monkeypatch):
        """A "-0000" Last-Modified is compared as UTC, not local time."""
        monkeypatch.setenv("TZ", "Asia/Tokyo")
        if hasattr(time, "tzset"):
            time.tzset()
        path = tmp_path / "cached"
        path.write_bytes(FEED_BODY)
        mtime = 1_700_000_000
        os.utime(path, (mtime, mtime))
        size = str(len(FEED_BODY))

        try:
            older = {"Last-Modified": formatdate(mtime - 600), "Content-Length": size}
            newer = {"Last-Modified": formatdate(mtime + 600), "Content-Length": size}
            assert "-0000" in older["Last-Modified"]
            assert needs_download(older, path) is None
            assert needs_download(newer, path) == "server has newer version"
        finally:
            monkeypatch.undo()
            if hasattr(time, "tzset"):
                time.tzset()


class TestSourceFetcher:
    """Tests for SourceFetcher passes."""

    def test_cache_path_is_sharded(self, fetcher: SourceFetcher, config):
        """The cache path nests one directory per leading hash character."""
        path = fetcher.cache_path(FEED_URL)

        assert path.parent.parent.parent == Path(config.fetcher.store_dir)
        assert path.parent.name == path.name[1]
        assert path.parent.parent.name == path.name[0]
        assert len(path.name) == 64

    @respx.mock
    def test_missing_cache_downloads(self, fetcher, source_id, db_manager, clock):
        """The first pass downloads and advances both watermarks."""
        respx.head(FEED_URL).mock(return_value=httpx.Response(200))
        get_route = respx.get(FEED_URL).mock(return_value=httpx.Response(200, content=FEED_BODY))

        stats = fetcher.run_pass()

        assert stats.downloaded == 1
        assert get_route.call_count == 1
        path = fetcher.cache_path(FEED_URL)
        assert path.read_bytes() == FEED_BODY

        status = source_status(db_manager, source_id)
        assert status.updated == clock.current
        assert status.refreshed == clock.current
        with db_manager.session() as session:
            assert WatermarkRepository(session).get_source(source_id).filename == str(path)

    @respx.mock
    def test_identical_headers_do_not_redownload(self, fetcher, source_id, db_manager, clock):
        """A second pass with unchanged headers only moves ``refreshed``."""
        respx.head(FEED_URL).mock(
            return_value=httpx.Response(
                200,
                headers={"Last-Modified": http_date(-3600), "Content-Length": str(len(FEED_BODY))},
            )
        )
        get_route = respx.get(FEED_URL).mock(return_value=httpx.Response(200, content=FEED_BODY))

        fetcher.run_pass()
        first_update = clock.current
        clock.advance(60)
        stats = fetcher.run_pass()

        assert stats.up_to_date == 1
        assert get_route.call_count == 1
        status = source_status(db_manager, source_id)
        assert status.updated == first_update
        assert status.refreshed == clock.current

    @respx.mock
    def test_newer_last_modified_redownloads(self, fetcher, source_id, db_manager, clock):
        """A Last-Modified after the cache mtime triggers a new download."""
        path = fetcher.cache_path(FEED_URL)
        path.parent.mkdir(parents=True)
        path.write_bytes(FEED_BODY)

        respx.head(FEED_URL).mock(
            return_value=httpx.Response(
                200,
                headers={"Last-Modified": http_date(3600), "Content-Length": str(len(FEED_BODY))},
            )
        )
        respx.get(FEED_URL).mock(return_value=httpx.Response(200, content=FEED_BODY + b"\n"))

        result = fetcher.run_pass()

        assert result.downloaded == 1
        assert path.read_bytes() == FEED_BODY + b"\n"
        assert source_status(db_manager, source_id).updated == clock.current

    @respx.mock
    def test_head_failure_leaves_watermarks(self, fetcher, source_id, db_manager):
        """A transport error on HEAD skips the source without touching watermarks."""
        respx.head(FEED_URL).mock(side_effect=httpx.ConnectError("connection refused"))

        stats = fetcher.run_pass()

        assert stats.failed == 1
        assert stats.errors_by_type == {"head_failed": 1}
        status = source_status(db_manager, source_id)
        assert status.refreshed is None
        assert status.updated is None

    @respx.mock
    def test_download_failure_keeps_stale_cache(self, fetcher, source_id, db_manager, clock):
        """A failed GET keeps the old file and the old ``updated``."""
        path = fetcher.cache_path(FEED_URL)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"old copy")

        respx.head(FEED_URL).mock(
            return_value=httpx.Response(200, headers={"Content-Length": "999"})
        )
        respx.get(FEED_URL).mock(return_value=httpx.Response(503))

        stats = fetcher.run_pass()

        assert stats.errors_by_type == {"download_failed": 1}
        assert path.read_bytes() == b"old copy"
        assert list(path.parent.iterdir()) == [path]
        status = source_status(db_manager, source_id)
        assert status.updated is None
        assert status.refreshed == clock.current

    @respx.mock
    def test_head_error_status_still_downloads(
        self, fetcher, source_id, db_manager, clock
    ):
        """Servers refusing HEAD are downloaded on every pass, cache or not."""
        respx.head(FEED_URL).mock(return_value=httpx.Response(405))
        changed = FEED_BODY.replace(b"Hello", b"Hello again")
        get = respx.get(FEED_URL).mock(side_effect=[
            httpx.Response(200, content=FEED_BODY),
            httpx.Response(200, content=changed),
        ])

        stats = fetcher.run_pass()

        assert stats.downloaded == 1
        assert source_status(db_manager, source_id).updated is not None
        assert fetcher.cache_path(FEED_URL).exists()

        clock.advance(60)

        stats = fetcher.run_pass()

        assert stats.downloaded == 1
        assert get.call_count == 2
        assert source_status(db_manager, source_id).updated == clock.current
        assert fetcher.cache_path(FEED_URL).read_bytes() == changed

    @respx.mock
    def test_inactive_source_is_skipped(self, fetcher, source_id, db_manager):
        """Inactive sources make no requests."""
        with db_manager.session() as session:
            WatermarkRepository(session).set_source_active(source_id, False)

        stats = fetcher.run_pass()

        assert stats.inactive == 1
        assert source_status(db_manager, source_id).refreshed is None

    @respx.mock
    def test_failure_does_not_abort_other_sources(self, fetcher, source_id, db_manager, config):
        """One failing source leaves the next one untouched."""
        other_url = "https://other.example.com/rss"
        with db_manager.session() as session:
            CatalogueRepository(session, config.public).get_or_create_source(other_url)

        respx.head(FEED_URL).mock(side_effect=httpx.ReadTimeout("timed out"))
        respx.head(other_url).mock(return_value=httpx.Response(200))
        respx.get(other_url).mock(return_value=httpx.Response(200, content=FEED_BODY))

        stats = fetcher.run_pass()

        assert stats.total_sources == 2
        assert stats.failed == 1
        assert stats.downloaded == 1
