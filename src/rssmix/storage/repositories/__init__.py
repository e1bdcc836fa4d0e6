"""Repository pattern implementations for data access."""

from rssmix.storage.repositories.catalogue_repo import CatalogueRepository
from rssmix.storage.repositories.watermark_repo import PublishCandidate, WatermarkRepository

__all__ = [
    "CatalogueRepository",
    "PublishCandidate",
    "WatermarkRepository",
]
