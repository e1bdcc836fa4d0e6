"""
Compilation data model: a named, filtered merge of several sources.
"""

from datetime import datetime
from typing import Optional, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rssmix.models.base import Base
from rssmix.utils.time_utils import utcnow

if TYPE_CHECKING:
    from rssmix.models.source import SourceModel

NAME_MAX_LENGTH = 127


# Compilation-Source membership (many-to-many)
compilation_content = Table(
    "compilation_content",
    Base.metadata,
    Column(
        "compilation_id",
        String(16),
        ForeignKey("compilations.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("source_id", Integer, ForeignKey("sources.id"), primary_key=True),
    Index("ix_compilation_content_source_id", "source_id"),
)


class CompilationModel(Base):
    """SQLAlchemy ORM model for Compilation."""

    __tablename__ = "compilations"

    id: Mapped[str] = mapped_column(String(16), primary_key=True)
    name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False, default="")
    password: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Comma-joined regular expressions matched against item titles
    filter_inc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    filter_exc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Output artifact and where it is served from
    filename: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    sources: Mapped[list["SourceModel"]] = relationship(
        "SourceModel",
        secondary=compilation_content,
        back_populates="compilations",
    )

    status: Mapped[Optional["CompilationStatusModel"]] = relationship(
        "CompilationStatusModel",
        back_populates="compilation",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<CompilationModel(id='{self.id}', name='{self.name}')>"


class CompilationStatusModel(Base):
    """Merge and publish watermarks of a compilation."""

    __tablename__ = "compilation_status"

    id: Mapped[str] = mapped_column(
        String(16), ForeignKey("compilations.id", ondelete="CASCADE"), primary_key=True
    )
    updated: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    published: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    compilation: Mapped["CompilationModel"] = relationship(
        "CompilationModel", back_populates="status"
    )

    def __repr__(self) -> str:
        return (
            f"<CompilationStatusModel(id='{self.id}', updated={self.updated}, "
            f"published={self.published})>"
        )


# Pydantic models for the management boundary


class CompilationCreate(BaseModel):
    """Schema for creating a new compilation."""

    urls: list[str] = Field(default_factory=list, description="Feed urls")
    name: str = Field("", description="Display name (truncated to 127 characters)")
    password: Optional[str] = Field(None, description="Optional plaintext password")
    filter_inc: list[str] = Field(default_factory=list, description="Include title patterns")
    filter_exc: list[str] = Field(default_factory=list, description="Exclude title patterns")

    @field_validator("name")
    @classmethod
    def truncate_name(cls, v: str) -> str:
        """Cut the name to the column length."""
        return v[:NAME_MAX_LENGTH]


class CompilationUpdate(BaseModel):
    """Schema for changing an existing compilation."""

    add: list[str] = Field(default_factory=list, description="Feed urls to add")
    delete: list[str] = Field(default_factory=list, description="Feed urls to remove")
    password: Optional[str] = None
    name: Optional[str] = None
    filter_inc: Optional[list[str]] = None
    filter_exc: Optional[list[str]] = None

    @field_validator("name")
    @classmethod
    def truncate_name(cls, v: Optional[str]) -> Optional[str]:
        """Cut the name to the column length."""
        return v[:NAME_MAX_LENGTH] if v else v


class CompilationResponse(BaseModel):
    """Schema for showing a compilation."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    url: Optional[str] = None
    urls: list[str] = Field(default_factory=list)
    updated: Optional[datetime] = None
    published: Optional[datetime] = None
