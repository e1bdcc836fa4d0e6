"""
Watermark repository: the shared state the pipeline stages coordinate through.

Every stage derives its work queue by comparing timestamps:

- compile candidates: a member source was updated after the compilation
- publish candidates: the compilation was updated after it was published

The queues are never persisted; they are recomputed on every pass from the
durable watermarks, so stages may run at any rate, restart at any time and
miss any number of passes. All watermark writes only ever move forward.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from rssmix.models import (
    CompilationModel,
    CompilationStatusModel,
    SourceModel,
    SourceStatusModel,
    compilation_content,
)


@dataclass
class PublishCandidate:
    """A compilation whose merged output has not been published yet."""

    compilation_id: str
    filename: Optional[str]
    url: Optional[str]
    updated: datetime


class WatermarkRepository:
    """Reads and advances source and compilation watermarks."""

    def __init__(self, session: Session) -> None:
        """Initialize repository with a database session.

        Args:
            session: SQLAlchemy Session instance
        """
        self.session = session

    # Sources

    def list_source_ids(self) -> list[int]:
        """Get the ids of all tracked sources, oldest first."""
        return list(self.session.scalars(select(SourceModel.id).order_by(SourceModel.id)))

    def get_source(self, source_id: int) -> Optional[SourceModel]:
        """Get a source by id."""
        return self.session.get(SourceModel, source_id)

    def ensure_source_status(self, source_id: int) -> SourceStatusModel:
        """Get the status row of a source, creating it with defaults.

        Args:
            source_id: Source id

        Returns:
            Existing or newly created SourceStatusModel
        """
        status = self.session.get(SourceStatusModel, source_id)
        if status is None:
            status = SourceStatusModel(id=source_id, active=True)
            self.session.add(status)
            self.session.flush()
        return status

    def mark_source_refreshed(self, source_id: int, at: datetime) -> None:
        """Record that a source's freshness was checked."""
        self.ensure_source_status(source_id)
        self._advance(SourceStatusModel, SourceStatusModel.refreshed, source_id, at)

    def mark_source_updated(self, source_id: int, at: datetime, filename: str) -> None:
        """Record that a source's cached content changed.

        ``refreshed`` is moved along so ``updated <= refreshed`` keeps holding.

        Args:
            source_id: Source id
            at: Time the new content was in place
            filename: Cache file the content was written to
        """
        self.ensure_source_status(source_id)
        self._advance(SourceStatusModel, SourceStatusModel.refreshed, source_id, at)
        self._advance(SourceStatusModel, SourceStatusModel.updated, source_id, at)
        self.session.execute(
            update(SourceModel).where(SourceModel.id == source_id).values(filename=filename)
        )

    def set_source_active(self, source_id: int, active: bool) -> None:
        """Enable or disable fetching of a source."""
        status = self.ensure_source_status(source_id)
        status.active = active
        self.session.flush()

    # Compilations

    def initialize_missing_compilation_statuses(self) -> list[str]:
        """Create status rows for compilations that have none.

        New rows carry no watermarks, so the compilation becomes a compile
        candidate as soon as any member source has been downloaded.

        Returns:
            Ids of the compilations that got a status row
        """
        missing = list(
            self.session.scalars(
                select(CompilationModel.id)
                .outerjoin(CompilationStatusModel, CompilationStatusModel.id == CompilationModel.id)
                .where(CompilationStatusModel.id.is_(None))
                .order_by(CompilationModel.id)
            )
        )
        for compilation_id in missing:
            self.session.add(CompilationStatusModel(id=compilation_id))
        if missing:
            self.session.flush()
        return missing

    def compile_candidates(self) -> list[str]:
        """Get compilations with a member source newer than their last merge.

        Compilations without members or without a status row never qualify.

        Returns:
            Sorted list of compilation ids
        """
        stmt = (
            select(CompilationModel.id)
            .distinct()
            .join(CompilationStatusModel, CompilationStatusModel.id == CompilationModel.id)
            .join(compilation_content, compilation_content.c.compilation_id == CompilationModel.id)
            .join(SourceStatusModel, SourceStatusModel.id == compilation_content.c.source_id)
            .where(SourceStatusModel.updated.is_not(None))
            .where(
                or_(
                    CompilationStatusModel.updated.is_(None),
                    SourceStatusModel.updated > CompilationStatusModel.updated,
                )
            )
            .order_by(CompilationModel.id)
        )
        return list(self.session.scalars(stmt))

    def mark_compilation_updated(self, compilation_id: str, at: datetime) -> bool:
        """Advance the merge watermark of a compilation.

        Returns:
            True if the watermark moved
        """
        return self._advance(
            CompilationStatusModel, CompilationStatusModel.updated, compilation_id, at
        )

    def publish_candidates(self) -> list[PublishCandidate]:
        """Get compilations merged after their last publish (or never published)."""
        stmt = (
            select(
                CompilationModel.id,
                CompilationModel.filename,
                CompilationModel.url,
                CompilationStatusModel.updated,
            )
            .join(CompilationStatusModel, CompilationStatusModel.id == CompilationModel.id)
            .where(CompilationStatusModel.updated.is_not(None))
            .where(
                or_(
                    CompilationStatusModel.published.is_(None),
                    CompilationStatusModel.updated > CompilationStatusModel.published,
                )
            )
            .order_by(CompilationModel.id)
        )
        return [
            PublishCandidate(compilation_id=row[0], filename=row[1], url=row[2], updated=row[3])
            for row in self.session.execute(stmt)
        ]

    def mark_compilation_published(self, compilation_id: str, at: datetime) -> bool:
        """Advance the publish watermark of a compilation.

        Returns:
            True if the watermark moved
        """
        return self._advance(
            CompilationStatusModel, CompilationStatusModel.published, compilation_id, at
        )

    def get_compilation_status(self, compilation_id: str) -> Optional[CompilationStatusModel]:
        """Get the status row of a compilation."""
        return self.session.get(CompilationStatusModel, compilation_id)

    def get_source_status(self, source_id: int) -> Optional[SourceStatusModel]:
        """Get the status row of a source."""
        return self.session.get(SourceStatusModel, source_id)

    def _advance(self, model, column, key, at: datetime) -> bool:
        """Set a watermark column to ``at`` unless it is already later."""
        result = self.session.execute(
            update(model)
            .where(model.id == key)
            .where(or_(column.is_(None), column < at))
            .values({column.key: at})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0
