"""Command-line interface for RTDB Profiler.

Usage:
    rtdb-profiler run --project my-project --duration 60
    rtdb-profiler serve --interval 3600
    echo '{"project": "my-project", "duration": 30}' | rtdb-profiler listen
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, TypeVar

from pydantic import ValidationError

from rtdb_profiler import __version__
from rtdb_profiler.config import Settings, settings
from rtdb_profiler.credentials import load_credential, resolve_project
from rtdb_profiler.errors import ConfigurationError, ProfilerError
from rtdb_profiler.models import TriggerEvent
from rtdb_profiler.pipeline.orchestrator import PipelineOrchestrator
from rtdb_profiler.pipeline.scheduler import Scheduler
from rtdb_profiler.runner import CommandRunner
from rtdb_profiler.sinks import CloudLoggingSink, StorageSink

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=1)

T = TypeVar("T")


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def create_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser.

    Returns:
        Configured ArgumentParser with all commands and arguments.
    """
    parser = argparse.ArgumentParser(
        prog="rtdb-profiler",
        description="RTDB Profiler — run the database profiler and ship its results",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rtdb-profiler run --project my-project --duration 60
  rtdb-profiler serve --interval 3600
  rtdb-profiler listen < triggers.jsonl
        """,
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write logs to this file",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run the profiler once and upload the results",
    )
    run_parser.add_argument(
        "--project",
        type=str,
        default=None,
        help="Project to profile (default: GCP_PROJECT or credential project)",
    )
    run_parser.add_argument(
        "--duration",
        type=_non_negative_int,
        default=None,
        help="Profiling duration in seconds (default: PROFILE_DURATION)",
    )
    run_parser.add_argument(
        "--no-pipe",
        action="store_true",
        help="Do not mirror profiler output to the console",
    )

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the profiler on a fixed interval",
    )
    serve_parser.add_argument(
        "--project",
        type=str,
        default=None,
        help="Project to profile (default: GCP_PROJECT or credential project)",
    )
    serve_parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between the end of one run and the start of the next",
    )
    serve_parser.add_argument(
        "--max-runs",
        type=int,
        default=None,
        help="Stop after this many runs (default: run forever)",
    )

    # listen command
    listen_parser = subparsers.add_parser(
        "listen",
        help="Run the profiler for each JSON trigger read from stdin",
    )
    listen_parser.add_argument(
        "--project",
        type=str,
        default=None,
        help="Default project for triggers without one",
    )

    # version command
    subparsers.add_parser(
        "version",
        help="Show version information",
    )

    return parser


def setup_logging(level: str, log_file: Path | None = None) -> None:
    """Configure logging to the console and, optionally, a log file."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def _run_async(coro):
    """Run an async coroutine from synchronous CLI context.

    Spins up a new event loop in a dedicated thread to avoid conflicts
    with any existing event loop. On Ctrl-C the coroutine is cancelled and
    awaited (killing any running profiler) before KeyboardInterrupt is re-raised.
    """
    loop = asyncio.new_event_loop()
    main_task = loop.create_task(coro)

    def _target():
        try:
            return loop.run_until_complete(main_task)
        finally:
            loop.close()

    future = _executor.submit(_target)
    try:
        return future.result()
    except KeyboardInterrupt:
        if not future.done():
            logger.warning("Interrupted, cancelling current run...")
            loop.call_soon_threadsafe(main_task.cancel)
            try:
                future.result()
            except asyncio.CancelledError:
                pass
        raise


async def with_scheduler(
    config: Settings,
    project: str | None,
    body: Callable[[Scheduler], Awaitable[T]],
) -> T:
    """Build the service once (credential, sinks, orchestrator) and run body.

    Sink clients live for the whole call and are shared by every run.

    Raises:
        CredentialError: If no credential is available
        ConfigurationError: If no project can be resolved
    """
    credential = load_credential(config=config)
    project_id = resolve_project(project, credential, config)
    if not project_id:
        raise ConfigurationError("No project configured: pass --project or set GCP_PROJECT")

    bucket = config.bucket_name or f"{project_id}.appspot.com"
    logger.info("Service for %s (bucket=%s, log=%s)", project_id, bucket, config.log_stream)

    async with StorageSink(
        bucket,
        credential,
        base_url=config.storage_api_url,
        timeout=config.http_timeout,
    ) as storage, CloudLoggingSink(
        project_id,
        credential,
        base_url=config.logging_api_url,
        timeout=config.http_timeout,
    ) as log_sink:
        orchestrator = PipelineOrchestrator(
            CommandRunner(pipe_output=config.pipe_output),
            storage,
            log_sink,
            config,
        )
        scheduler = Scheduler(orchestrator, config, default_project=project_id)
        return await body(scheduler)


async def listen_stdin(scheduler: Scheduler, stream=None) -> int:
    """Feed one trigger per stdin line into the scheduler until EOF.

    Blank lines trigger a run with defaults. Invalid lines are logged
    and skipped.

    Returns:
        Number of triggers accepted
    """
    stream = stream or sys.stdin
    worker = asyncio.create_task(scheduler.run_triggers())
    accepted = 0
    try:
        while True:
            line = await asyncio.to_thread(stream.readline)
            if not line:
                break
            try:
                event = TriggerEvent.from_message(line)
            except (ValueError, ValidationError) as e:
                logger.error("Invalid trigger %r: %s", line.strip()[:200], e)
                continue
            if scheduler.submit(event):
                accepted += 1
        await scheduler.join()
    finally:
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
    return accepted


def cmd_run(args: argparse.Namespace, config: Settings = settings) -> int:
    """Execute the run command.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    if args.no_pipe:
        config = config.model_copy(update={"pipe_output": False})

    event = TriggerEvent(project=args.project, duration=args.duration)

    async def _body(scheduler: Scheduler):
        return await scheduler.run_once(event)

    try:
        outcome = _run_async(with_scheduler(config, args.project, _body))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except ProfilerError as e:
        logger.error("Run could not start: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not outcome.ok:
        print(f"Error: {outcome.error}", file=sys.stderr)
        return 1

    print(f"Uploaded {len(outcome.result.records)} records for {outcome.request.project}")
    return 0


def cmd_serve(args: argparse.Namespace, config: Settings = settings) -> int:
    """Execute the serve command (fixed-interval mode)."""
    async def _body(scheduler: Scheduler):
        return await scheduler.run_interval(interval=args.interval, max_runs=args.max_runs)

    try:
        runs = _run_async(with_scheduler(config, args.project, _body))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except ProfilerError as e:
        logger.error("Service could not start: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger.info("Stopped after %d runs", runs)
    return 0


def cmd_listen(args: argparse.Namespace, config: Settings = settings) -> int:
    """Execute the listen command (trigger mode, triggers from stdin)."""
    async def _body(scheduler: Scheduler):
        return await listen_stdin(scheduler)

    try:
        accepted = _run_async(with_scheduler(config, args.project, _body))
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except ProfilerError as e:
        logger.error("Listener could not start: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger.info("Input closed after %d accepted triggers", accepted)
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    """Execute the version command."""
    print(f"RTDB Profiler v{__version__}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(settings.log_level, args.log_file)

    # Route to command handler
    if args.command == "run":
        return cmd_run(args)
    elif args.command == "serve":
        return cmd_serve(args)
    elif args.command == "listen":
        return cmd_listen(args)
    elif args.command == "version":
        return cmd_version(args)
    else:
        parser.print_help()
        return 0


def cli_entry() -> None:
    """Console script entry point for setuptools."""
    sys.exit(main())


if __name__ == "__main__":
    cli_entry()
