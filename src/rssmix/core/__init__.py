"""Pipeline stages of rssmix.

External code (the CLI, scripts) creates stages through the factories:

    from rssmix.core import create_stage_job, create_scheduler

Stages never call each other. Each one reads and advances watermarks in the
database and that is the only way work flows from one stage to the next:

    fetcher   -> source_status.updated
    compiler  -> compilation_status.updated
    publisher -> compilation_status.published
"""

from rssmix.core.compiler import CompileResult, CompileStats, FeedCompiler
from rssmix.core.factories import (
    STAGE_NAMES,
    create_compiler,
    create_fetcher,
    create_publisher,
    create_scheduler,
    create_stage_job,
)
from rssmix.core.fetcher import FetchOutcome, FetchResult, FetchStats, SourceFetcher
from rssmix.core.filter_engine import FilterResult, TitleFilter
from rssmix.core.publisher import FeedPublisher, PublishResult, PublishStats
from rssmix.core.scheduler import PipelineScheduler, StageJob

__all__ = [
    "STAGE_NAMES",
    "create_compiler",
    "create_fetcher",
    "create_publisher",
    "create_scheduler",
    "create_stage_job",
    "SourceFetcher",
    "FetchOutcome",
    "FetchResult",
    "FetchStats",
    "FeedCompiler",
    "CompileResult",
    "CompileStats",
    "FeedPublisher",
    "PublishResult",
    "PublishStats",
    "TitleFilter",
    "FilterResult",
    "StageJob",
    "PipelineScheduler",
]
