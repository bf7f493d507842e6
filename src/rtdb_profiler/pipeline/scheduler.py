"""Scheduler — drives the orchestrator without ever overlapping runs.

Two modes:
- Fixed interval: run, wait `interval` seconds after completion, repeat.
- Trigger: events arrive via submit() into a bounded queue; the worker
  loop pulls one at a time and acknowledges each only after its run
  completes (at-least-once: an unacked event may be redelivered).

Trigger policy: one run in flight plus at most one pending trigger. A
trigger submitted while one is already pending is dropped with a warning
and submit() returns False; the caller decides whether to nack it.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from rtdb_profiler.config import Settings, settings as default_settings
from rtdb_profiler.errors import ConfigurationError
from rtdb_profiler.models import RunOutcome, RunRequest, TriggerEvent
from rtdb_profiler.pipeline.orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)

Ack = Callable[[], Any]


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class Scheduler:
    """Single-worker scheduler around a PipelineOrchestrator.

    Args:
        orchestrator: Orchestrator executing each run
        config: Settings (default: global settings)
        default_project: Project used when an event has none
            (default: config.gcp_project)
        clock: Returns "now"; injectable for tests
    """

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        config: Settings | None = None,
        default_project: str | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.orchestrator = orchestrator
        self.config = config or default_settings
        self.default_project = default_project or self.config.gcp_project
        self.work_dir = Path(self.config.work_dir)
        self.state = SchedulerState.IDLE
        self.runs_started = 0
        self.dropped = 0
        self._clock = clock
        self._lock = asyncio.Lock()
        self._pending: asyncio.Queue[tuple[TriggerEvent, Ack | None]] = asyncio.Queue(maxsize=1)

    @property
    def pending(self) -> int:
        """Number of accepted triggers not yet picked up (0 or 1)."""
        return self._pending.qsize()

    def build_request(self, event: TriggerEvent | None = None) -> RunRequest:
        """RunRequest from an event, falling back to configured defaults.

        Raises:
            ConfigurationError: If no project can be resolved
        """
        project = (event.project if event else None) or self.default_project
        if not project:
            raise ConfigurationError(
                "No project to profile: trigger has no 'project' and GCP_PROJECT is not set"
            )
        duration = event.duration if event and event.duration is not None else 0

        now = self._clock()
        # unique per run even if a previous file was not cleaned up
        filename = f"profile-{now:%Y%m%d-%H%M%S-%f}-{self.runs_started + 1}.json"
        return RunRequest(
            project=project,
            output_path=self.work_dir / filename,
            duration_seconds=duration,
        )

    async def run_once(self, event: TriggerEvent | None = None) -> RunOutcome:
        """Run the pipeline once; waits if another run is in flight."""
        async with self._lock:
            self.state = SchedulerState.RUNNING
            try:
                try:
                    request = self.build_request(event)
                except ConfigurationError as e:
                    now = self._clock()
                    logger.error("Skipping run: %s", e)
                    return RunOutcome(request=None, started_at=now, finished_at=now, error=e)

                self.runs_started += 1
                logger.info(
                    "Starting run #%d for %s (duration=%s)",
                    self.runs_started, request.project, request.duration_seconds or "default",
                )
                return await self.orchestrator.execute(request)
            finally:
                self.state = SchedulerState.IDLE

    async def run_interval(
        self,
        interval: float | None = None,
        max_runs: int | None = None,
    ) -> int:
        """Fixed-interval mode: next run starts `interval` s after the last one finished.

        Failed runs are not retried; the loop just waits for the next slot.

        Returns:
            Number of runs performed (only returns when max_runs is set)
        """
        interval = interval if interval is not None else self.config.run_interval
        runs = 0
        while True:
            outcome = await self.run_once()
            runs += 1
            if not outcome.ok:
                logger.warning("Run #%d failed: %s", runs, outcome.error)
            if max_runs is not None and runs >= max_runs:
                return runs
            logger.info("Next run in %.0fs", interval)
            await asyncio.sleep(interval)

    def submit(self, event: TriggerEvent, ack: Ack | None = None) -> bool:
        """Offer a trigger without blocking.

        Returns:
            True if accepted, False if dropped (one already pending)
        """
        try:
            self._pending.put_nowait((event, ack))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Trigger dropped (state=%s, %d pending): %s",
                self.state.value, self._pending.qsize(), event.model_dump(),
            )
            return False
        logger.info("Trigger accepted: %s", event.model_dump())
        return True

    async def run_triggers(self, max_runs: int | None = None) -> int:
        """Trigger mode: pull, run and ack one trigger at a time.

        Returns:
            Number of triggers handled (only returns when max_runs is set)
        """
        handled = 0
        while max_runs is None or handled < max_runs:
            event, ack = await self._pending.get()
            try:
                outcome = await self.run_once(event)
                handled += 1
                if not outcome.ok:
                    logger.warning("Triggered run failed: %s", outcome.error)
                if ack is not None:
                    await self._ack(ack)
            finally:
                self._pending.task_done()
        return handled

    async def join(self) -> None:
        """Wait until every accepted trigger has been run and acked."""
        await self._pending.join()

    async def _ack(self, ack: Ack) -> None:
        try:
            result = ack()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error("Failed to acknowledge trigger: %s", e)
