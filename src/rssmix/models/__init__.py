"""Data models for rssmix."""

from rssmix.models.base import Base
from rssmix.models.compilation import (
    CompilationCreate,
    CompilationModel,
    CompilationResponse,
    CompilationStatusModel,
    CompilationUpdate,
    compilation_content,
)
from rssmix.models.item import Author, Enclosure, FeedItem
from rssmix.models.source import SourceModel, SourceStatusModel

__all__ = [
    "Base",
    "SourceModel",
    "SourceStatusModel",
    "CompilationModel",
    "CompilationStatusModel",
    "CompilationCreate",
    "CompilationUpdate",
    "CompilationResponse",
    "compilation_content",
    "FeedItem",
    "Author",
    "Enclosure",
]
