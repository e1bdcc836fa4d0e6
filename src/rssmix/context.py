"""
Process-wide handles passed explicitly to every pipeline stage.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from rssmix.config import Config
from rssmix.storage.database import DatabaseManager
from rssmix.utils.time_utils import utcnow


@dataclass
class PipelineContext:
    """Configuration, database and clock shared by the stages of one process.

    Lives from process start to process stop. Tests build one around a
    temporary database and a fake clock.
    """

    config: Config
    db: DatabaseManager
    clock: Callable[[], datetime] = field(default=utcnow)

    @classmethod
    def from_config(
        cls,
        config: Config,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "PipelineContext":
        """Build a context and its database manager from configuration."""
        return cls(config=config, db=DatabaseManager(config.database), clock=clock or utcnow)

    def now(self) -> datetime:
        """Current time from the context clock."""
        return self.clock()

    def close(self) -> None:
        """Release the database connections."""
        self.db.close()

    def __enter__(self) -> "PipelineContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
