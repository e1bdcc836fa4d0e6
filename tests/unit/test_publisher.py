"""Unit tests for the publish gate."""

import subprocess
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from rssmix.core.publisher import FeedPublisher, PublishResult, PublishStats
from rssmix.models import CompilationCreate
from rssmix.storage.repositories import CatalogueRepository, PublishCandidate, WatermarkRepository

T1 = datetime(2024, 1, 1, 12, 0, 0)


@pytest.fixture
def merged_compilation(db_manager, config):
    """Create a compilation that was merged at T1 and never published."""
    with db_manager.session() as session:
        compilation = CatalogueRepository(session, config.public).create_compilation(
            CompilationCreate(urls=["https://example.com/rss"], name="Mix")
        )
        WatermarkRepository(session).mark_compilation_updated(compilation.id, T1)
        return compilation


def completed(returncode: int, stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout="", stderr=stderr)


def published_at(db_manager, compilation_id):
    with db_manager.session() as session:
        return WatermarkRepository(session).get_compilation_status(compilation_id).published


class TestPublishResult:
    """Tests for result dataclasses."""

    def test_result_validation(self):
        """A success cannot carry an error."""
        with pytest.raises(ValueError):
            PublishResult(success=True, compilation_id="abc", error="nope")

    def test_stats(self):
        """Failures are listed by id."""
        stats = PublishStats()
        stats.add_result(PublishResult(success=True, compilation_id="a"))
        stats.add_result(PublishResult(success=False, compilation_id="b", error="x"))

        assert stats.published == 1
        assert stats.failed_ids == ["b"]


class TestFeedPublisher:
    """Tests for FeedPublisher passes."""

    def test_requires_command(self, context, config):
        """A publisher without a command cannot be built."""
        config.publisher.command = None
        with pytest.raises(ValueError):
            FeedPublisher(context)

    def test_command_receives_file_and_url(self, context, db_manager, merged_compilation):
        """The command gets exactly the output path and the public url."""
        with patch("rssmix.core.publisher.subprocess.run", return_value=completed(0)) as run:
            stats = FeedPublisher(context).run_pass()

        assert stats.published == 1
        args = run.call_args[0][0]
        assert args == ["publish-feed", merged_compilation.filename, merged_compilation.url]
        assert run.call_args.kwargs["timeout"] is None

    def test_success_sets_published_to_updated(self, context, db_manager, merged_compilation, clock):
        """``published`` takes the observed ``updated``, not the current time."""
        clock.advance(3600)
        with patch("rssmix.core.publisher.subprocess.run", return_value=completed(0)):
            FeedPublisher(context).run_pass()

        assert published_at(db_manager, merged_compilation.id) == T1
        with db_manager.session() as session:
            assert WatermarkRepository(session).publish_candidates() == []

    def test_failure_then_retry(self, context, db_manager, merged_compilation):
        """A failed run leaves ``published`` alone; the next pass retries."""
        publisher = FeedPublisher(context)

        with patch(
            "rssmix.core.publisher.subprocess.run",
            return_value=completed(1, stderr="upload refused"),
        ):
            stats = publisher.run_pass()

        assert stats.failed == 1
        assert published_at(db_manager, merged_compilation.id) is None

        with patch("rssmix.core.publisher.subprocess.run", return_value=completed(0)):
            stats = publisher.run_pass()

        assert stats.published == 1
        assert published_at(db_manager, merged_compilation.id) == T1

    def test_timeout_is_failure(self, context, config, db_manager, merged_compilation):
        """A command exceeding the timeout counts as failed."""
        config.publisher.timeout_seconds = 5
        with patch(
            "rssmix.core.publisher.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="publish-feed", timeout=5),
        ) as run:
            result = FeedPublisher(context).run_pass()

        assert run.call_args.kwargs["timeout"] == 5
        assert result.failed == 1
        assert published_at(db_manager, merged_compilation.id) is None

    def test_launch_failure_is_failure(self, context, db_manager, merged_compilation):
        """A missing executable counts as failed."""
        with patch(
            "rssmix.core.publisher.subprocess.run",
            side_effect=FileNotFoundError("publish-feed"),
        ):
            result = FeedPublisher(context).run_pass()

        assert result.failed == 1
        assert published_at(db_manager, merged_compilation.id) is None

    def test_unexpected_error_does_not_abort_siblings(
        self, context, config, db_manager, merged_compilation
    ):
        """An unexpected error for one compilation leaves the others published."""
        with db_manager.session() as session:
            other = CatalogueRepository(session, config.public).create_compilation(
                CompilationCreate(urls=["https://example.com/other"], name="Other")
            )
            WatermarkRepository(session).mark_compilation_updated(other.id, T1)

        with patch(
            "rssmix.core.publisher.subprocess.run",
            side_effect=[ValueError("embedded null byte"), completed(0)],
        ) as run:
            stats = FeedPublisher(context).run_pass()

        assert run.call_count == 2
        assert stats.failed == 1
        assert stats.published == 1

    def test_merge_after_publish_queues_again(self, context, db_manager, merged_compilation):
        """A newer merge makes the compilation a candidate again."""
        with patch("rssmix.core.publisher.subprocess.run", return_value=completed(0)):
            FeedPublisher(context).run_pass()

        with db_manager.session() as session:
            WatermarkRepository(session).mark_compilation_updated(
                merged_compilation.id, T1 + timedelta(seconds=1)
            )

        with patch("rssmix.core.publisher.subprocess.run", return_value=completed(0)) as run:
            stats = FeedPublisher(context).run_pass()

        assert stats.published == 1
        assert run.call_count == 1
        assert published_at(db_manager, merged_compilation.id) == T1 + timedelta(seconds=1)

    def test_command_with_arguments(self, context):
        """Configured arguments come before the file and url."""
        publisher = FeedPublisher(context, command="rsync-feed --quiet")
        candidate = PublishCandidate(
            compilation_id="abc", filename="/srv/abc.rss", url="https://x/abc.rss", updated=T1
        )

        with patch("rssmix.core.publisher.subprocess.run", return_value=completed(0)) as run:
            publisher.publish(candidate)

        assert run.call_args[0][0] == ["rsync-feed", "--quiet", "/srv/abc.rss", "https://x/abc.rss"]

    def test_missing_filename_fails(self, context):
        """Candidates without an output file are not handed to the command."""
        candidate = PublishCandidate(compilation_id="abc", filename=None, url="u", updated=T1)

        with patch("rssmix.core.publisher.subprocess.run") as run:
            result = FeedPublisher(context).publish(candidate)

        assert result.success is False
        run.assert_not_called()
