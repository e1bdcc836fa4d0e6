"""
Merge engine: rebuilds the output feed of every compilation whose member
sources changed since its last merge.

Items are never stored. Each merge re-parses the cached copy of every member,
filters and orders the items and writes the result with feedgen. The
compilation's ``updated`` watermark is set to the time the merge started, so
a source updated while the merge is running queues the compilation again.
"""

import os
import re
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from feedgen.entry import FeedEntry
from feedgen.feed import FeedGenerator
from sqlalchemy.exc import SQLAlchemyError

from rssmix import __version__
from rssmix.context import PipelineContext
from rssmix.core.filter_engine import TitleFilter
from rssmix.core.parser import FeedParseError, ItemParser
from rssmix.logger import get_logger
from rssmix.models.item import FeedItem
from rssmix.storage.repositories.catalogue_repo import CatalogueRepository
from rssmix.storage.repositories.watermark_repo import WatermarkRepository

logger = get_logger(__name__)

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)

# Characters lxml refuses in text and attribute values
_XML_INVALID = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


@dataclass
class CompileResult:
    """Result of merging one compilation."""

    success: bool
    compilation_id: str
    items_count: int = 0
    sources_count: int = 0
    skipped_files: int = 0
    filtered_out: int = 0
    output_path: Optional[str] = None
    error: Optional[str] = None
    compile_time_seconds: float = 0.0

    def __post_init__(self):
        """Validate compile result."""
        if self.success and self.error:
            raise ValueError("Successful compile cannot have an error")
        if not self.success and not self.error:
            self.error = "Unknown error"


@dataclass
class CompileStats:
    """Statistics for one compile pass."""

    total_compilations: int = 0
    compiled: int = 0
    failed: int = 0
    total_items: int = 0
    total_time_seconds: float = 0.0
    failed_ids: list = field(default_factory=list)

    def add_result(self, result: CompileResult) -> None:
        """Add a compile result to statistics."""
        self.total_compilations += 1
        self.total_time_seconds += result.compile_time_seconds
        if result.success:
            self.compiled += 1
            self.total_items += result.items_count
        else:
            self.failed += 1
            self.failed_ids.append(result.compilation_id)


@dataclass
class MergeJob:
    """Everything a merge needs, read from storage in one transaction."""

    compilation_id: str
    title: str
    url: str
    output_path: str
    filter_inc: Optional[str]
    filter_exc: Optional[str]
    member_files: list[str]


def _sort_key(item: FeedItem) -> datetime:
    timestamp = item.timestamp
    if timestamp is None:
        return _EARLIEST
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp


def order_items(items: list[FeedItem], max_items: int = 0) -> list[FeedItem]:
    """Sort items newest first and cut the list.

    Items without a timestamp sort as the earliest. Ties keep their input
    order.

    Args:
        items: Items to order
        max_items: Maximum number of items, 0 for no limit

    Returns:
        New ordered list

    Example:
        Timestamps [3, 1, 5] with max_items=2 give [5, 3].
    """
    ordered = sorted(items, key=_sort_key, reverse=True)
    if max_items > 0:
        ordered = ordered[:max_items]
    return ordered


def xml_safe(text: str) -> str:
    """Drop characters that cannot appear in an XML document."""
    return _XML_INVALID.sub("", text)


def build_entry(item: FeedItem) -> FeedEntry:
    """Convert a FeedItem to a feedgen entry.

    Every string is passed through xml_safe, since lxml refuses control
    characters anywhere in the document.

    Raises:
        ValueError: If nothing readable is left of the item
    """
    entry = FeedEntry()

    title = xml_safe(item.title or "")
    description = xml_safe(item.description or "")
    content = xml_safe(item.content or "")
    if not (title or description or content):
        raise ValueError("Item has no title, description or content")

    if title:
        entry.title(title)
    if description:
        entry.description(description)
    if content:
        entry.content(content)
    link = xml_safe(item.link or "")
    if link:
        entry.link(href=link, rel="alternate")
    guid = xml_safe(item.guid or "")
    if guid:
        entry.guid(guid)

    author = item.author
    if author is not None:
        name = xml_safe(author.name or "")
        email = xml_safe(author.email or "")
        if name or email:
            fields = {"name": name or email}
            if email:
                fields["email"] = email
            entry.author(fields)

    enclosure = item.enclosure
    if enclosure is not None and xml_safe(enclosure.url):
        entry.enclosure(
            url=xml_safe(enclosure.url),
            length=xml_safe(str(enclosure.length)) or "0",
            type=xml_safe(enclosure.type) or "application/octet-stream",
        )

    if item.timestamp is not None:
        timestamp = item.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        entry.published(timestamp)

    return entry


def render_feed(
    title: str,
    link: str,
    items: list[FeedItem],
    generated_at: datetime,
) -> bytes:
    """Render an RSS 2.0 document.

    Args:
        title: Channel title
        link: Public url of the feed
        items: Ordered items
        generated_at: Build time; naive values are taken as UTC

    Returns:
        UTF-8 encoded XML document

    Raises:
        ValueError: If a required channel field is empty
    """
    if generated_at.tzinfo is None:
        generated_at = generated_at.replace(tzinfo=timezone.utc)

    fg = FeedGenerator()
    title = xml_safe(title)
    fg.title(title)
    fg.link(href=xml_safe(link), rel="alternate")
    fg.description(title)
    fg.lastBuildDate(generated_at)
    fg.generator("rssmix", version=__version__)

    entries = []
    for item in items:
        if not item.has_body:
            continue
        try:
            entries.append(build_entry(item))
        except ValueError as e:
            logger.warning(f"Skipping item {item.guid or item.link or item.title!r}: {e}")

    # entry() keeps list order, add_entry() does not on every feedgen release
    fg.entry(entries, replace=True)

    return fg.rss_str(pretty=True)


def write_atomic(path: str | Path, data: bytes) -> None:
    """Write a file through a temporary sibling and a rename.

    Readers of ``path`` see either the old or the new document, never a
    partial one.

    Raises:
        OSError: On filesystem errors
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class FeedCompiler:
    """Merges the cached sources of each compilation into one RSS feed."""

    def __init__(self, context: PipelineContext, parser: Optional[ItemParser] = None):
        """Initialize feed compiler.

        Args:
            context: Pipeline context with config, database and clock
            parser: Item parser (default ItemParser)
        """
        self.context = context
        self.parser = parser or ItemParser()
        self.max_items = context.config.compiler.max_items

    def run_pass(self) -> CompileStats:
        """Merge every compilation that has newer member content.

        Returns:
            CompileStats for the pass
        """
        stats = CompileStats()

        try:
            with self.context.db.session() as session:
                repo = WatermarkRepository(session)
                initialized = repo.initialize_missing_compilation_statuses()
                candidates = repo.compile_candidates()
        except SQLAlchemyError as e:
            logger.error(f"Could not list compile candidates: {e}")
            return stats

        for compilation_id in initialized:
            logger.info(f"[{compilation_id}] Initialized missing compilation status")

        logger.info(f"{len(candidates)} compilations to update")

        for compilation_id in candidates:
            try:
                result = self.compile(compilation_id)
            except SQLAlchemyError as e:
                logger.error(f"[{compilation_id}] Database error: {e}")
                result = CompileResult(
                    success=False,
                    compilation_id=compilation_id,
                    error=f"Database error: {e}",
                )
            except Exception as e:
                logger.exception(f"[{compilation_id}] Unexpected error: {e}")
                result = CompileResult(
                    success=False,
                    compilation_id=compilation_id,
                    error=f"Unexpected error: {type(e).__name__}: {e}",
                )
            stats.add_result(result)

        logger.info(f"Compile pass done: {stats.compiled} compiled, {stats.failed} failed")
        return stats

    def load_job(self, compilation_id: str) -> Optional[MergeJob]:
        """Read a compilation and the cache files of its members.

        Members that were never downloaded have no cache file and are left
        out.
        """
        with self.context.db.session() as session:
            catalogue = CatalogueRepository(session, self.context.config.public)
            compilation = catalogue.get_compilation(compilation_id)
            if compilation is None:
                return None

            return MergeJob(
                compilation_id=compilation.id,
                title=compilation.name or compilation.id,
                url=compilation.url or catalogue.public_url(compilation.id),
                output_path=compilation.filename or "",
                filter_inc=compilation.filter_inc,
                filter_exc=compilation.filter_exc,
                member_files=sorted(
                    source.filename for source in compilation.sources if source.filename
                ),
            )

    def collect_items(self, job: MergeJob, result: CompileResult) -> list[FeedItem]:
        """Parse and filter the items of every member file.

        Unreadable or unparseable files are skipped and counted in
        ``result.skipped_files``.
        """
        title_filter = TitleFilter.from_strings(job.filter_inc, job.filter_exc)
        items: list[FeedItem] = []

        for filename in job.member_files:
            try:
                parsed = self.parser.parse_file(filename)
            except (OSError, FeedParseError) as e:
                logger.warning(f"[{job.compilation_id}] Skipping {filename}: {e}")
                result.skipped_files += 1
                continue

            result.sources_count += 1
            for item in parsed:
                if not item.has_body:
                    continue
                if title_filter.allows(item.title):
                    items.append(item)
                else:
                    result.filtered_out += 1

        return items

    def compile(self, compilation_id: str) -> CompileResult:
        """Merge one compilation and advance its watermark.

        Args:
            compilation_id: Compilation id

        Returns:
            CompileResult describing the outcome

        Raises:
            SQLAlchemyError: On storage errors
        """
        start_time = time.time()
        started = self.context.now()

        job = self.load_job(compilation_id)
        if job is None:
            return CompileResult(
                success=False,
                compilation_id=compilation_id,
                error="Compilation not found",
            )

        if not job.output_path:
            logger.error(f"[{compilation_id}] No output filename set")
            return CompileResult(
                success=False,
                compilation_id=compilation_id,
                error="No output filename set",
            )

        result = CompileResult(
            success=True,
            compilation_id=compilation_id,
            output_path=job.output_path,
        )

        items = order_items(self.collect_items(job, result), self.max_items)

        try:
            document = render_feed(job.title, job.url, items, self.context.now())
            write_atomic(job.output_path, document)
        except (OSError, ValueError) as e:
            logger.error(f"[{compilation_id}] Could not write {job.output_path}: {e}")
            return CompileResult(
                success=False,
                compilation_id=compilation_id,
                sources_count=result.sources_count,
                skipped_files=result.skipped_files,
                output_path=job.output_path,
                error=f"Write error: {type(e).__name__}: {e}",
                compile_time_seconds=time.time() - start_time,
            )

        with self.context.db.session() as session:
            WatermarkRepository(session).mark_compilation_updated(compilation_id, started)

        result.items_count = len(items)
        result.compile_time_seconds = time.time() - start_time
        logger.info(
            f"[{compilation_id}] Wrote {result.items_count} items from "
            f"{result.sources_count} sources -> {job.output_path}"
        )
        return result
