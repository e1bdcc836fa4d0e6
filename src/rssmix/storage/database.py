"""
Database connection and session management.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from rssmix.config import DatabaseConfig
from rssmix.logger import get_logger
from rssmix.models import Base
from rssmix.storage.dialects import get_dialect

logger = get_logger(__name__)


class DatabaseManager:
    """Owns the engine and hands out transactional sessions.

    One instance lives for the whole process and is passed to the stages
    through the pipeline context.
    """

    def __init__(self, db_config: Optional[DatabaseConfig] = None, url: Optional[str] = None):
        """Initialize database manager.

        Args:
            db_config: Database configuration
            url: Connection string overriding db_config.url
        """
        db_config = db_config or DatabaseConfig()
        if url:
            db_config = db_config.model_copy(update={"url": url})

        self.config = db_config
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def engine(self) -> Engine:
        """Get the database engine, creating it on first use."""
        if self._engine is None:
            dialect = get_dialect(self.config.url)
            self._ensure_sqlite_directory()

            self._engine = create_engine(self.config.url, **dialect.get_engine_kwargs(self.config))
            dialect.setup_engine_events(self._engine)

        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get the session factory bound to the engine."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
                bind=self.engine,
            )
        return self._session_factory

    def _ensure_sqlite_directory(self) -> None:
        url = make_url(self.config.url)
        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    def init_db(self, drop_all: bool = False) -> None:
        """Initialize database tables.

        Args:
            drop_all: If True, drop existing tables first
        """
        if drop_all:
            logger.warning("Dropping all tables - data will be lost!")
            Base.metadata.drop_all(bind=self.engine)

        Base.metadata.create_all(bind=self.engine)

    def ping(self) -> None:
        """Open a connection and run a trivial query.

        Raises:
            sqlalchemy.exc.SQLAlchemyError: If the database is unreachable
        """
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Get a database session that commits on success.

        Yields:
            SQLAlchemy Session instance
        """
        session = self.session_factory()

        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Close database connections."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None

    def __enter__(self) -> "DatabaseManager":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
