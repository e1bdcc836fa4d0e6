"""
Publish gate: hands every freshly merged compilation to an external command.

The command receives the output file and the public url as its two
positional arguments and signals success with exit status 0. Only then does
the compilation's ``published`` watermark move.
"""

import shlex
import subprocess
import time
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from rssmix.context import PipelineContext
from rssmix.logger import get_logger
from rssmix.storage.repositories.watermark_repo import PublishCandidate, WatermarkRepository

logger = get_logger(__name__)

# Keep failure logs readable when a command is chatty
_OUTPUT_TAIL = 500


@dataclass
class PublishResult:
    """Result of publishing one compilation."""

    success: bool
    compilation_id: str
    returncode: Optional[int] = None
    error: Optional[str] = None
    publish_time_seconds: float = 0.0

    def __post_init__(self):
        """Validate publish result."""
        if self.success and self.error:
            raise ValueError("Successful publish cannot have an error")
        if not self.success and not self.error:
            self.error = "Unknown error"


@dataclass
class PublishStats:
    """Statistics for one publish pass."""

    total_compilations: int = 0
    published: int = 0
    failed: int = 0
    total_time_seconds: float = 0.0
    failed_ids: list = field(default_factory=list)

    def add_result(self, result: PublishResult) -> None:
        """Add a publish result to statistics."""
        self.total_compilations += 1
        self.total_time_seconds += result.publish_time_seconds
        if result.success:
            self.published += 1
        else:
            self.failed += 1
            self.failed_ids.append(result.compilation_id)


class FeedPublisher:
    """Runs the publish command for compilations with unpublished merges."""

    def __init__(self, context: PipelineContext, command: Optional[str] = None):
        """Initialize feed publisher.

        Args:
            context: Pipeline context with config, database and clock
            command: Publish command overriding the configured one

        Raises:
            ValueError: If no publish command is configured
        """
        self.context = context
        publisher_config = context.config.publisher

        command = command or publisher_config.command
        if not command:
            raise ValueError("No publish command configured (publisher.command)")

        self.command = shlex.split(command)
        self.timeout_seconds = publisher_config.timeout_seconds

    def run_pass(self) -> PublishStats:
        """Publish every compilation merged after its last publish.

        Returns:
            PublishStats for the pass
        """
        stats = PublishStats()

        try:
            with self.context.db.session() as session:
                candidates = WatermarkRepository(session).publish_candidates()
        except SQLAlchemyError as e:
            logger.error(f"Could not list publish candidates: {e}")
            return stats

        logger.info(f"{len(candidates)} compilations to publish")

        for candidate in candidates:
            try:
                result = self.publish(candidate)
            except SQLAlchemyError as e:
                logger.error(f"[{candidate.compilation_id}] Database error: {e}")
                result = PublishResult(
                    success=False,
                    compilation_id=candidate.compilation_id,
                    error=f"Database error: {e}",
                )
            except Exception as e:
                logger.exception(f"[{candidate.compilation_id}] Unexpected error: {e}")
                result = PublishResult(
                    success=False,
                    compilation_id=candidate.compilation_id,
                    error=f"Unexpected error: {type(e).__name__}: {e}",
                )
            stats.add_result(result)

        logger.info(f"Publish pass done: {stats.published} published, {stats.failed} failed")
        return stats

    def publish(self, candidate: PublishCandidate) -> PublishResult:
        """Run the publish command for one compilation.

        On success ``published`` is set to the ``updated`` value the
        candidate was selected with, never to the current time.

        Args:
            candidate: Publish candidate

        Returns:
            PublishResult describing the outcome

        Raises:
            SQLAlchemyError: On storage errors
        """
        start_time = time.time()
        compilation_id = candidate.compilation_id

        if not candidate.filename or not candidate.url:
            logger.error(f"[{compilation_id}] Missing output filename or public url")
            return PublishResult(
                success=False,
                compilation_id=compilation_id,
                error="Missing output filename or public url",
            )

        args = [*self.command, candidate.filename, candidate.url]
        logger.debug(f"[{compilation_id}] Running {shlex.join(args)}")

        try:
            proc = subprocess.run(
                args,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.warning(
                f"[{compilation_id}] Publish command timed out after {self.timeout_seconds}s"
            )
            return PublishResult(
                success=False,
                compilation_id=compilation_id,
                error=f"Timed out after {self.timeout_seconds}s",
                publish_time_seconds=time.time() - start_time,
            )
        except OSError as e:
            logger.error(f"[{compilation_id}] Could not run publish command: {e}")
            return PublishResult(
                success=False,
                compilation_id=compilation_id,
                error=f"Launch error: {type(e).__name__}: {e}",
                publish_time_seconds=time.time() - start_time,
            )

        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()[-_OUTPUT_TAIL:]
            logger.warning(
                f"[{compilation_id}] Publish command FAILED with status {proc.returncode}"
                + (f": {stderr}" if stderr else "")
            )
            return PublishResult(
                success=False,
                compilation_id=compilation_id,
                returncode=proc.returncode,
                error=f"Exit status {proc.returncode}",
                publish_time_seconds=time.time() - start_time,
            )

        with self.context.db.session() as session:
            WatermarkRepository(session).mark_compilation_published(
                compilation_id, candidate.updated
            )

        logger.info(f"[{compilation_id}] Published {candidate.filename} -> {candidate.url}")
        return PublishResult(
            success=True,
            compilation_id=compilation_id,
            returncode=0,
            publish_time_seconds=time.time() - start_time,
        )
