"""Database dialect support.

The backend is chosen from the scheme of the configured connection string.
Each dialect contributes engine kwargs and connection events.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from sqlalchemy import Engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from rssmix.config import DatabaseConfig


class BaseDialect(ABC):
    """Abstract base class for database dialects."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the dialect name."""
        ...

    @abstractmethod
    def get_engine_kwargs(self, config: "DatabaseConfig") -> dict:
        """Get keyword arguments for create_engine().

        Args:
            config: Database configuration object

        Returns:
            Dictionary of engine kwargs
        """
        ...

    def setup_engine_events(self, engine: Engine) -> None:
        """Set up dialect-specific engine event listeners."""
        pass


class SQLiteDialect(BaseDialect):
    """SQLite database dialect.

    Default backend. Foreign keys are switched on for every connection and
    file databases use WAL so a compile pass can read while a fetch pass writes.
    In-memory databases share a single connection.
    """

    @property
    def name(self) -> str:
        return "sqlite"

    def get_engine_kwargs(self, config: "DatabaseConfig") -> dict:
        kwargs = {
            "echo": config.echo,
            "connect_args": {
                "check_same_thread": False,
                "timeout": 30,  # seconds to wait for a lock
            },
        }
        if self.is_memory(config.url):
            kwargs["poolclass"] = StaticPool
        return kwargs

    def setup_engine_events(self, engine: Engine) -> None:
        """Set up SQLite PRAGMA statements."""
        memory = self.is_memory(str(engine.url))

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if not memory:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    @staticmethod
    def is_memory(url: str) -> bool:
        database = make_url(url).database
        return database in (None, "", ":memory:")


class PostgreSQLDialect(BaseDialect):
    """PostgreSQL database dialect."""

    @property
    def name(self) -> str:
        return "postgresql"

    def get_engine_kwargs(self, config: "DatabaseConfig") -> dict:
        return {
            "echo": config.echo,
            "pool_size": config.pool_size,
            "max_overflow": config.max_overflow,
            "pool_pre_ping": True,
        }


class MySQLDialect(BaseDialect):
    """MySQL / MariaDB database dialect."""

    @property
    def name(self) -> str:
        return "mysql"

    def get_engine_kwargs(self, config: "DatabaseConfig") -> dict:
        return {
            "echo": config.echo,
            "pool_size": config.pool_size,
            "max_overflow": config.max_overflow,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        }


# Dialect registry
_DIALECT_REGISTRY: dict[str, type[BaseDialect]] = {
    "sqlite": SQLiteDialect,
    "postgresql": PostgreSQLDialect,
    "mysql": MySQLDialect,
}


def get_dialect(url: str) -> BaseDialect:
    """Get the dialect for a connection string.

    Args:
        url: SQLAlchemy connection string

    Returns:
        Dialect instance

    Raises:
        ValueError: If the backend is not supported
    """
    backend = make_url(url).get_backend_name()
    if backend not in _DIALECT_REGISTRY:
        supported = ", ".join(sorted(_DIALECT_REGISTRY))
        raise ValueError(
            f"Unsupported database dialect: {backend!r}. "
            f"Supported dialects: {supported}"
        )
    return _DIALECT_REGISTRY[backend]()


def get_supported_dialects() -> list[str]:
    """Get list of supported dialect names."""
    return sorted(_DIALECT_REGISTRY)


__all__ = [
    "BaseDialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "MySQLDialect",
    "get_dialect",
    "get_supported_dialects",
]
