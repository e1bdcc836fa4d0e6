"""Shared fixtures for rssmix tests."""

from datetime import datetime, timedelta

import pytest

from rssmix.config import (
    CompilerConfig,
    Config,
    DatabaseConfig,
    FetcherConfig,
    PublicConfig,
    PublisherConfig,
)
from rssmix.context import PipelineContext
from rssmix.storage.database import DatabaseManager


class FakeClock:
    """Clock returning a fixed naive UTC time until advanced."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 1.0) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


@pytest.fixture
def clock():
    """Create a fake clock."""
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    """Create a configuration pointing into a temporary directory."""
    return Config(
        database=DatabaseConfig(url=f"sqlite:///{tmp_path / 'rssmix.db'}"),
        fetcher=FetcherConfig(store_dir=str(tmp_path / "cache"), shard_depth=2),
        compiler=CompilerConfig(max_items=0),
        publisher=PublisherConfig(command="publish-feed"),
        public=PublicConfig(
            protocol="https",
            hostname="feeds.example.org",
            output_dir=str(tmp_path / "public"),
        ),
    )


@pytest.fixture
def db_manager(config):
    """Create a test database manager with all tables."""
    manager = DatabaseManager(config.database)
    manager.init_db()
    yield manager
    manager.close()


@pytest.fixture
def context(config, db_manager, clock):
    """Create a pipeline context around the test database and fake clock."""
    return PipelineContext(config=config, db=db_manager, clock=clock)
