"""
Factory functions for creating the pipeline stages from a context.

Usage:
    from rssmix.core.factories import create_stage_job

    with PipelineContext.from_config(config) as context:
        job = create_stage_job("fetcher", context)
        job.run_forever()
"""

from typing import Optional

from rssmix.context import PipelineContext
from rssmix.core.compiler import FeedCompiler
from rssmix.core.fetcher import SourceFetcher
from rssmix.core.parser import ItemParser
from rssmix.core.publisher import FeedPublisher
from rssmix.core.scheduler import PipelineScheduler, StageJob

STAGE_NAMES = ("fetcher", "compiler", "publisher")


def create_fetcher(context: PipelineContext) -> SourceFetcher:
    """Create a SourceFetcher for the context."""
    return SourceFetcher(context)


def create_compiler(
    context: PipelineContext,
    parser: Optional[ItemParser] = None,
) -> FeedCompiler:
    """Create a FeedCompiler for the context.

    Args:
        context: Pipeline context
        parser: Override the item parser

    Returns:
        Configured FeedCompiler instance
    """
    return FeedCompiler(context, parser=parser)


def create_publisher(
    context: PipelineContext,
    command: Optional[str] = None,
) -> FeedPublisher:
    """Create a FeedPublisher for the context.

    Args:
        context: Pipeline context
        command: Override publisher.command

    Returns:
        Configured FeedPublisher instance

    Raises:
        ValueError: If no publish command is configured
    """
    return FeedPublisher(context, command=command)


def create_stage_job(name: str, context: PipelineContext) -> StageJob:
    """Create the periodic job of one stage.

    Args:
        name: One of STAGE_NAMES
        context: Pipeline context

    Returns:
        StageJob running the stage's pass at its configured interval

    Raises:
        ValueError: For an unknown stage name or a missing publish command
    """
    config = context.config
    if name == "fetcher":
        stage, interval = create_fetcher(context), config.fetcher.interval_seconds
    elif name == "compiler":
        stage, interval = create_compiler(context), config.compiler.interval_seconds
    elif name == "publisher":
        stage, interval = create_publisher(context), config.publisher.interval_seconds
    else:
        raise ValueError(f"Unknown stage: {name}")

    return StageJob(name=name, pass_fn=stage.run_pass, interval_seconds=interval)


def create_scheduler(
    context: PipelineContext,
    jobs: Optional[list[StageJob]] = None,
) -> PipelineScheduler:
    """Create a PipelineScheduler hosting stage jobs.

    Args:
        context: Pipeline context
        jobs: Jobs to host (default: one job per stage)

    Raises:
        ValueError: For an unknown stage name or a missing publish command
    """
    scheduler = PipelineScheduler(
        timezone_name=context.config.scheduler.timezone,
        misfire_grace_time=context.config.scheduler.misfire_grace_time,
    )
    if jobs is None:
        jobs = [create_stage_job(name, context) for name in STAGE_NAMES]
    for job in jobs:
        scheduler.add_stage(job)
    return scheduler
