"""PipelineOrchestrator — one profiler run, end to end.

Sequence:
  1. Prepare output file (create directory + empty file)
  2. Run `firebase database:profile --raw -o <file> ...`
  3. Read the file back and parse it into records
  4. Remove the temporary file (best effort)
  5. Forward the RunResult to Cloud Storage and Cloud Logging

Usage:
    async with StorageSink(bucket, credential) as storage, \\
            CloudLoggingSink(project, credential) as log_sink:
        orchestrator = PipelineOrchestrator(CommandRunner(), storage, log_sink)
        outcome = await orchestrator.execute(request)
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from rtdb_profiler.config import Settings, settings as default_settings
from rtdb_profiler.errors import SinkError
from rtdb_profiler.models import RunOutcome, RunRequest, RunResult
from rtdb_profiler.parser import read_results, records_to_json
from rtdb_profiler.runner import CommandRunner
from rtdb_profiler.sinks.cloud_logging import (
    CloudLoggingSink,
    default_resource,
    entries_from_records,
)
from rtdb_profiler.sinks.storage import StorageSink

logger = logging.getLogger(__name__)

PROFILE_SUBCOMMAND = "database:profile"


def object_path(prefix: str, started_at: datetime) -> str:
    """Date-partitioned object path: <prefix>/<MM-DD-YYYY>/<H:mm:ss.SSS>.json"""
    millis = started_at.microsecond // 1000
    time_stamp = f"{started_at.hour}:{started_at:%M:%S}.{millis:03d}"
    return f"{prefix}/{started_at:%m-%d-%Y}/{time_stamp}.json"


def redact(args: list[str]) -> list[str]:
    """Copy of args with the --token value masked."""
    redacted = list(args)
    for i, arg in enumerate(redacted[:-1]):
        if arg == "--token":
            redacted[i + 1] = "***"
    return redacted


def _prepare_output(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # the profiler fails if the target file does not exist yet
    if not path.exists():
        path.write_bytes(b"")


class PipelineOrchestrator:
    """Runs the profiler and ships its results.

    Sink clients are created once by the caller and injected here; the
    orchestrator never constructs or closes them.

    Args:
        runner: CommandRunner used to spawn the profiler
        storage: Object-store sink (upload(path, payload))
        log_sink: Log sink (write_entries(stream_name, entries))
        config: Settings (default: global settings)
        clock: Returns "now"; injectable for tests
    """

    def __init__(
        self,
        runner: CommandRunner,
        storage: StorageSink,
        log_sink: CloudLoggingSink,
        config: Settings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.runner = runner
        self.storage = storage
        self.log_sink = log_sink
        self.config = config or default_settings
        self._clock = clock

    def build_args(self, request: RunRequest) -> list[str]:
        """Profiler arguments for a request (without the command prefix)."""
        duration = request.duration_seconds or self.config.profile_duration
        args = [
            PROFILE_SUBCOMMAND,
            "--raw",
            "-o",
            str(request.output_path),
            "--project",
            request.project,
            "-d",
            str(duration),
        ]
        if self.config.firebase_token:
            args.extend(["--token", self.config.firebase_token])
        else:
            logger.warning("NOTE: Running without FIREBASE_TOKEN can cause authentication issues")
        return args

    async def run(self, request: RunRequest) -> RunResult:
        """Run one profiler pass and forward the results.

        Raises:
            SpawnError / ExecutionError: The profiler command failed
            EmptyInputError: The profiler wrote nothing
            SinkError: Either sink failed (the other is still attempted)
            OSError: The output file could not be prepared or read
        """
        started_at = self._clock()
        output_path = Path(request.output_path)

        try:
            await asyncio.to_thread(_prepare_output, output_path)
        except OSError as e:
            logger.error("Error preparing output path %s: %s", output_path, e)
            raise

        command, *prefix_args = self.config.command_argv
        args = [*prefix_args, *self.build_args(request)]
        logger.info("Running command %s with args: %s", command, redact(args))

        try:
            try:
                await self.runner.execute(
                    command,
                    args,
                    timeout=self.config.run_timeout,
                )
            except Exception as e:
                logger.error(
                    "Error running profiler command %s with args %s: %s",
                    command, redact(args), e,
                )
                raise

            logger.info("Starting profiler results parse...")
            records = await read_results(output_path)
        finally:
            await self._cleanup(output_path)

        result = RunResult(
            records=tuple(records),
            started_at=started_at,
            finished_at=self._clock(),
        )
        logger.info("Parsed %d records for %s", len(result.records), request.project)

        await self._forward(result, request)
        return result

    async def execute(self, request: RunRequest) -> RunOutcome:
        """Run and convert any failure into a failed RunOutcome.

        Never raises (except on task cancellation), so a long-running
        service survives individual run failures.
        """
        started_at = self._clock()
        try:
            result = await self.run(request)
        except Exception as e:
            finished_at = self._clock()
            logger.error(
                "Run failed (project=%s, duration=%s, output=%s, started=%s, elapsed=%.1fs): %s",
                request.project,
                request.duration_seconds or self.config.profile_duration,
                request.output_path,
                started_at.isoformat(),
                (finished_at - started_at).total_seconds(),
                e,
                exc_info=True,
            )
            return RunOutcome(
                request=request,
                started_at=started_at,
                finished_at=finished_at,
                error=e,
            )

        finished_at = self._clock()
        logger.info(
            "Run succeeded for %s: %d records in %.1fs",
            request.project, len(result.records), (finished_at - started_at).total_seconds(),
        )
        return RunOutcome(
            request=request,
            started_at=started_at,
            finished_at=finished_at,
            result=result,
        )

    async def _cleanup(self, path: Path) -> None:
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove temporary output file %s: %s", path, e)

    async def _forward(self, result: RunResult, request: RunRequest) -> None:
        """Send results to both sinks; fail if either failed."""
        storage_path = object_path(self.config.results_prefix, result.started_at)
        entries = entries_from_records(result.records, default_resource(request.project))

        outcomes = await asyncio.gather(
            self.storage.upload(storage_path, records_to_json(result.records)),
            self.log_sink.write_entries(self.config.log_stream, entries),
            return_exceptions=True,
        )

        first_error: BaseException | None = None
        for sink, outcome in zip(("storage", "cloud-logging"), outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Sink %s failed for %s: %s", sink, request.project, outcome)
                if first_error is None:
                    first_error = outcome

        if first_error is None:
            return
        if isinstance(first_error, SinkError):
            raise first_error
        raise SinkError(f"Sink call failed: {first_error}") from first_error
