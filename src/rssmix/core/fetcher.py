"""
Fetch cache: keeps a byte-for-byte local copy of every active source.

Each pass sends HEAD to every source and downloads when the cache file is
missing or the server reports a newer or differently sized document. A HEAD
answered with an error status says nothing about freshness and also leads to
a download.
The source's ``updated`` watermark moves only when new content was written.
"""

import os
import tempfile
import time
from dataclasses import dataclass, field
from datetime import timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from rssmix.context import PipelineContext
from rssmix.logger import get_logger
from rssmix.storage.repositories.watermark_repo import WatermarkRepository
from rssmix.utils.hash_utils import shard_path

logger = get_logger(__name__)


class FetchOutcome(str, Enum):
    """What happened to a source during a fetch pass."""

    INACTIVE = "inactive"
    HEAD_FAILED = "head_failed"
    UP_TO_DATE = "up_to_date"
    DOWNLOADED = "downloaded"
    DOWNLOAD_FAILED = "download_failed"
    ERROR = "error"


@dataclass
class FetchResult:
    """Result of refreshing one source."""

    success: bool
    source_id: int
    source_url: str
    outcome: FetchOutcome
    download_reason: Optional[str] = None
    bytes_written: int = 0
    cache_path: Optional[str] = None
    error: Optional[str] = None
    fetch_time_seconds: float = 0.0

    def __post_init__(self):
        """Validate fetch result."""
        if self.success and self.error:
            raise ValueError("Successful fetch cannot have an error")
        if not self.success and not self.error:
            self.error = "Unknown error"


@dataclass
class FetchStats:
    """Statistics for one fetch pass."""

    total_sources: int = 0
    downloaded: int = 0
    up_to_date: int = 0
    inactive: int = 0
    failed: int = 0
    total_bytes: int = 0
    total_time_seconds: float = 0.0
    errors_by_type: dict = field(default_factory=dict)

    def add_result(self, result: FetchResult) -> None:
        """Add a fetch result to statistics.

        Args:
            result: FetchResult to add
        """
        self.total_sources += 1
        self.total_time_seconds += result.fetch_time_seconds

        if result.outcome == FetchOutcome.DOWNLOADED:
            self.downloaded += 1
            self.total_bytes += result.bytes_written
        elif result.outcome == FetchOutcome.UP_TO_DATE:
            self.up_to_date += 1
        elif result.outcome == FetchOutcome.INACTIVE:
            self.inactive += 1
        else:
            self.failed += 1
            self.errors_by_type[result.outcome.value] = (
                self.errors_by_type.get(result.outcome.value, 0) + 1
            )


def needs_download(headers: Mapping[str, str], path: Path) -> Optional[str]:
    """Decide whether a source must be downloaded again.

    Triggers are a missing cache file, a parseable Last-Modified strictly
    after the file's mtime, or a parseable Content-Length different from the
    file's size. Missing or unparseable headers never trigger on their own.

    Args:
        headers: Response headers of the HEAD request
        path: Cache file of the source

    Returns:
        Reason for downloading, or None if the cache is current
    """
    if not path.exists():
        return "no cache file"

    stat = path.stat()

    last_modified = headers.get("Last-Modified")
    if last_modified:
        try:
            server_ts = parsedate_to_datetime(last_modified)
        except (TypeError, ValueError):
            server_ts = None
        if server_ts is not None and server_ts.tzinfo is None:
            # "-0000" zones parse as naive
            server_ts = server_ts.replace(tzinfo=timezone.utc)
        if server_ts is not None and server_ts.timestamp() > stat.st_mtime:
            return "server has newer version"

    content_length = headers.get("Content-Length")
    if content_length:
        try:
            length = int(content_length)
        except ValueError:
            length = None
        if length is not None and length != stat.st_size:
            return "server has different size"

    return None


class SourceFetcher:
    """Refreshes the local cache of every active source."""

    def __init__(self, context: PipelineContext):
        """Initialize source fetcher.

        Args:
            context: Pipeline context with config, database and clock
        """
        self.context = context
        fetcher_config = context.config.fetcher

        self.store_dir = Path(fetcher_config.store_dir)
        self.shard_depth = fetcher_config.shard_depth
        self.timeout_seconds = fetcher_config.timeout_seconds
        self.user_agent = fetcher_config.user_agent
        self.verify_tls = fetcher_config.verify_tls
        self.follow_redirects = fetcher_config.follow_redirects

    def cache_path(self, url: str) -> Path:
        """Get the content-addressed cache file of a source url."""
        return shard_path(self.store_dir, url, self.shard_depth)

    def create_client(self) -> httpx.Client:
        """Create the HTTP client used for one pass.

        Identity encoding keeps Content-Length comparable with the size of
        the cached file.
        """
        return httpx.Client(
            timeout=self.timeout_seconds,
            follow_redirects=self.follow_redirects,
            verify=self.verify_tls,
            headers={"User-Agent": self.user_agent, "Accept-Encoding": "identity"},
        )

    def run_pass(self) -> FetchStats:
        """Refresh every source once.

        Returns:
            FetchStats for the pass
        """
        stats = FetchStats()

        try:
            with self.context.db.session() as session:
                source_ids = WatermarkRepository(session).list_source_ids()
        except SQLAlchemyError as e:
            logger.error(f"Could not list sources: {e}")
            return stats

        logger.info(f"{len(source_ids)} sources")

        with self.create_client() as client:
            for source_id in source_ids:
                try:
                    result = self.refresh_source(source_id, client)
                except SQLAlchemyError as e:
                    logger.error(f"[{source_id}] Database error: {e}")
                    result = FetchResult(
                        success=False,
                        source_id=source_id,
                        source_url="",
                        outcome=FetchOutcome.ERROR,
                        error=f"Database error: {e}",
                    )
                except Exception as e:
                    logger.exception(f"[{source_id}] Unexpected error: {e}")
                    result = FetchResult(
                        success=False,
                        source_id=source_id,
                        source_url="",
                        outcome=FetchOutcome.ERROR,
                        error=f"Unexpected error: {type(e).__name__}: {e}",
                    )
                stats.add_result(result)

        logger.info(
            f"Fetch pass done: {stats.downloaded} downloaded, {stats.up_to_date} up-to-date, "
            f"{stats.inactive} inactive, {stats.failed} failed"
        )
        return stats

    def refresh_source(self, source_id: int, client: httpx.Client) -> FetchResult:
        """Check one source with HEAD and download it if the cache is stale.

        Args:
            source_id: Source id
            client: HTTP client for the HEAD request and the download

        Returns:
            FetchResult describing the outcome

        Raises:
            SQLAlchemyError: On storage errors
        """
        start_time = time.time()

        with self.context.db.session() as session:
            repo = WatermarkRepository(session)
            source = repo.get_source(source_id)
            if source is None:
                return FetchResult(
                    success=False,
                    source_id=source_id,
                    source_url="",
                    outcome=FetchOutcome.ERROR,
                    error="Source not found",
                )
            status = repo.ensure_source_status(source_id)
            active = status.active
            url = source.url

        if not active:
            logger.debug(f"[{source_id}] Source is NOT active")
            return FetchResult(
                success=True,
                source_id=source_id,
                source_url=url,
                outcome=FetchOutcome.INACTIVE,
            )

        path = self.cache_path(url)

        try:
            response = client.head(url)
        except httpx.HTTPError as e:
            logger.warning(f"[{source_id}] HTTP HEAD error -> {type(e).__name__}: {e}")
            return FetchResult(
                success=False,
                source_id=source_id,
                source_url=url,
                outcome=FetchOutcome.HEAD_FAILED,
                error=f"HEAD error: {type(e).__name__}: {e}",
                fetch_time_seconds=time.time() - start_time,
            )

        if response.is_error:
            # Error pages say nothing about the feed document, so freshness is unknown
            logger.debug(f"[{source_id}] HEAD returned {response.status_code}, ignoring headers")
            reason = f"HEAD returned {response.status_code}"
        else:
            reason = needs_download(response.headers, path)

        with self.context.db.session() as session:
            WatermarkRepository(session).mark_source_refreshed(source_id, self.context.now())

        if reason is None:
            logger.debug(f"[{source_id}] Up-to-date")
            return FetchResult(
                success=True,
                source_id=source_id,
                source_url=url,
                outcome=FetchOutcome.UP_TO_DATE,
                cache_path=str(path),
                fetch_time_seconds=time.time() - start_time,
            )

        logger.info(f"[{source_id}] {reason.capitalize()}, downloading {url} -> {path}")

        try:
            bytes_written = self.download(client, url, path)
        except (httpx.HTTPError, OSError) as e:
            logger.warning(f"[{source_id}] Download FAILED -> {type(e).__name__}: {e}")
            return FetchResult(
                success=False,
                source_id=source_id,
                source_url=url,
                outcome=FetchOutcome.DOWNLOAD_FAILED,
                download_reason=reason,
                cache_path=str(path),
                error=f"Download error: {type(e).__name__}: {e}",
                fetch_time_seconds=time.time() - start_time,
            )

        with self.context.db.session() as session:
            WatermarkRepository(session).mark_source_updated(
                source_id, self.context.now(), str(path)
            )

        logger.info(f"[{source_id}] Download successful ({bytes_written} bytes)")
        return FetchResult(
            success=True,
            source_id=source_id,
            source_url=url,
            outcome=FetchOutcome.DOWNLOADED,
            download_reason=reason,
            bytes_written=bytes_written,
            cache_path=str(path),
            fetch_time_seconds=time.time() - start_time,
        )

    def download(self, client: httpx.Client, url: str, path: Path) -> int:
        """Stream a url into the cache file.

        The body goes to a temporary file next to the cache file which then
        replaces it, so a failed download leaves the previous copy intact.

        Args:
            client: HTTP client
            url: Source url
            path: Cache file

        Returns:
            Number of bytes written

        Raises:
            httpx.HTTPError: On transport errors or non-success status
            OSError: On filesystem errors
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".part")

        bytes_written = 0
        try:
            with os.fdopen(fd, "wb") as fh, client.stream("GET", url) as response:
                response.raise_for_status()
                for chunk in response.iter_bytes():
                    fh.write(chunk)
                    bytes_written += len(chunk)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        return bytes_written
