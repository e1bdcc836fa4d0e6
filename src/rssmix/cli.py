"""
Command line interface for rssmix.

    rssmix init-db [--drop]
    rssmix run {fetcher,compiler,publisher,all} [--once]
    rssmix create URL [URL ...] [--name NAME] [--password PW] [--include RE] [--exclude RE]
    rssmix show ID
    rssmix delete ID [--password PW]
    rssmix cleanup
"""

import argparse
import signal
import sys
import threading
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from rssmix import __version__
from rssmix.config import LOG_LEVELS, Config, load_config
from rssmix.context import PipelineContext
from rssmix.core.factories import STAGE_NAMES, create_scheduler, create_stage_job
from rssmix.logger import get_logger, setup_logger
from rssmix.models import CompilationCreate
from rssmix.storage.repositories import CatalogueRepository

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(prog="rssmix", description="Merge RSS feeds into compilations")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", help="YAML configuration file")
    parser.add_argument(
        "--log-level", type=str.upper, choices=LOG_LEVELS, help="Override the configured log level"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    init_db = sub.add_parser("init-db", help="Create the database tables")
    init_db.add_argument(
        "--drop", action="store_true", help="Drop existing tables before creating new ones"
    )

    run = sub.add_parser("run", help="Run a pipeline stage periodically")
    run.add_argument("stage", choices=(*STAGE_NAMES, "all"))
    run.add_argument("--once", action="store_true", help="Run a single pass and exit")

    create = sub.add_parser("create", help="Create a compilation from feed urls")
    create.add_argument("urls", nargs="+", metavar="URL")
    create.add_argument("--name", default="")
    create.add_argument("--password")
    create.add_argument(
        "--include", action="append", default=[], metavar="REGEX",
        help="Keep items whose title matches (repeatable)"
    )
    create.add_argument(
        "--exclude", action="append", default=[], metavar="REGEX",
        help="Drop items whose title matches (repeatable)"
    )

    show = sub.add_parser("show", help="Show a compilation")
    show.add_argument("compilation_id")

    delete = sub.add_parser("delete", help="Delete a compilation")
    delete.add_argument("compilation_id")
    delete.add_argument("--password")

    sub.add_parser("cleanup", help="Delete sources no compilation uses")

    return parser


def cmd_init_db(context: PipelineContext, args: argparse.Namespace) -> int:
    context.db.init_db(drop_all=args.drop)
    print("Database initialized successfully!")
    return EXIT_OK


def cmd_run(context: PipelineContext, args: argparse.Namespace) -> int:
    """Run one stage, or all stages in this process."""
    stages = STAGE_NAMES if args.stage == "all" else (args.stage,)

    try:
        jobs = [create_stage_job(name, context) for name in stages]
    except ValueError as e:
        logger.critical(str(e))
        return EXIT_FAILURE

    if args.once:
        for job in jobs:
            job.run_once()
        return EXIT_OK if all(job.last_error is None for job in jobs) else EXIT_FAILURE

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, stopping")
        stop_event.set()
        for job in jobs:
            job.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    if len(jobs) == 1:
        jobs[0].run_forever()
    else:
        scheduler = create_scheduler(context, jobs)
        scheduler.run_until(stop_event)
    return EXIT_OK


def cmd_create(context: PipelineContext, args: argparse.Namespace) -> int:
    data = CompilationCreate(
        urls=args.urls,
        name=args.name,
        password=args.password,
        filter_inc=args.include,
        filter_exc=args.exclude,
    )
    try:
        with context.db.session() as session:
            catalogue = CatalogueRepository(session, context.config.public)
            compilation = catalogue.create_compilation(data)
            print(catalogue.describe(compilation).model_dump_json(indent=2))
    except ValueError as e:
        logger.error(f"Could not create compilation: {e}")
        return EXIT_FAILURE
    return EXIT_OK


def cmd_show(context: PipelineContext, args: argparse.Namespace) -> int:
    with context.db.session() as session:
        catalogue = CatalogueRepository(session, context.config.public)
        compilation = catalogue.get_compilation(args.compilation_id)
        if compilation is None:
            logger.error(f"Compilation {args.compilation_id} not found")
            return EXIT_FAILURE
        print(catalogue.describe(compilation).model_dump_json(indent=2))
    return EXIT_OK


def cmd_delete(context: PipelineContext, args: argparse.Namespace) -> int:
    with context.db.session() as session:
        catalogue = CatalogueRepository(session, context.config.public)
        if catalogue.get_compilation(args.compilation_id) is None:
            logger.error(f"Compilation {args.compilation_id} not found")
            return EXIT_FAILURE
        if not catalogue.check_password(args.compilation_id, args.password):
            logger.error(f"Wrong password for compilation {args.compilation_id}")
            return EXIT_FAILURE
        catalogue.delete_compilation(args.compilation_id)
    print(f"Deleted {args.compilation_id}")
    return EXIT_OK


def cmd_cleanup(context: PipelineContext, args: argparse.Namespace) -> int:
    with context.db.session() as session:
        removed = CatalogueRepository(session, context.config.public).cleanup_sources()
    print(f"Removed {removed} unused sources")
    return EXIT_OK


COMMANDS = {
    "init-db": cmd_init_db,
    "run": cmd_run,
    "create": cmd_create,
    "show": cmd_show,
    "delete": cmd_delete,
    "cleanup": cmd_cleanup,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point of the ``rssmix`` command.

    Args:
        argv: Arguments without the program name (default sys.argv[1:])

    Returns:
        Process exit status
    """
    args = build_parser().parse_args(argv)

    try:
        config: Config = load_config(args.config)
    except (ValueError, FileNotFoundError) as e:
        # pydantic.ValidationError is a ValueError
        setup_logger(level=args.log_level)
        logger.critical(f"Invalid configuration: {e}")
        return EXIT_FAILURE

    setup_logger(config.logging, level=args.log_level)

    with PipelineContext.from_config(config) as context:
        try:
            context.db.ping()
        except SQLAlchemyError as e:
            logger.critical(f"Could not connect to database {config.database.url}: {e}")
            return EXIT_FAILURE

        try:
            return COMMANDS[args.command](context, args)
        except SQLAlchemyError as e:
            logger.critical(f"Database error: {e}")
            return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
