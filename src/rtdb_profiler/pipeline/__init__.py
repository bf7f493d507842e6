"""Profiler pipeline — Scheduler → Orchestrator → Runner → Parser → Sinks.

Components:
- PipelineOrchestrator: one run, from command to sinks
- Scheduler: interval / trigger driver, never overlaps runs
"""

from rtdb_profiler.pipeline.orchestrator import PipelineOrchestrator
from rtdb_profiler.pipeline.scheduler import Scheduler, SchedulerState

__all__ = ["PipelineOrchestrator", "Scheduler", "SchedulerState"]
