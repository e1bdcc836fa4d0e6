"""
Source data model for tracked RSS/Atom feeds and their fetch watermarks.
"""

from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rssmix.models.base import Base
from rssmix.utils.time_utils import utcnow

if TYPE_CHECKING:
    from rssmix.models.compilation import CompilationModel


class SourceModel(Base):
    """SQLAlchemy ORM model for a tracked feed url."""

    __tablename__ = "sources"

    __table_args__ = (
        UniqueConstraint("uschema", "urn", name="uq_sources_uschema_urn"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uschema: Mapped[str] = mapped_column(String(16), nullable=False)
    urn: Mapped[str] = mapped_column(String(2048), nullable=False, index=True)

    # Cache file, set by the fetcher after the first successful download
    filename: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    status: Mapped[Optional["SourceStatusModel"]] = relationship(
        "SourceStatusModel",
        back_populates="source",
        uselist=False,
        cascade="all, delete-orphan",
    )

    compilations: Mapped[list["CompilationModel"]] = relationship(
        "CompilationModel",
        secondary="compilation_content",
        back_populates="sources",
    )

    @property
    def url(self) -> str:
        """Full url rebuilt from scheme and urn."""
        return f"{self.uschema}://{self.urn}"

    def __repr__(self) -> str:
        return f"<SourceModel(id={self.id}, url='{self.url}')>"


class SourceStatusModel(Base):
    """Fetch watermarks of a source.

    ``refreshed`` is the last freshness check, ``updated`` the last time the
    cached content actually changed. ``updated <= refreshed`` always holds.
    """

    __tablename__ = "source_status"

    id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sources.id", ondelete="CASCADE"), primary_key=True
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    refreshed: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)

    source: Mapped["SourceModel"] = relationship("SourceModel", back_populates="status")

    def __repr__(self) -> str:
        return (
            f"<SourceStatusModel(id={self.id}, active={self.active}, "
            f"refreshed={self.refreshed}, updated={self.updated})>"
        )
