"""Run-level data model: requests, results, outcomes and trigger events."""

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from rtdb_profiler.parser import Record


@dataclass(frozen=True)
class RunRequest:
    """Parameters for one pipeline run.

    duration_seconds of 0 means "use the configured default".
    """

    project: str
    output_path: Path
    duration_seconds: int = 0

    def __post_init__(self) -> None:
        if self.duration_seconds < 0:
            raise ValueError(f"duration_seconds must be >= 0, got {self.duration_seconds}")
        if not self.project:
            raise ValueError("project must not be empty")


@dataclass(frozen=True)
class RunResult:
    """Parsed records of one successful profiler run."""

    records: tuple[Record, ...]
    started_at: datetime
    finished_at: datetime


@dataclass(frozen=True)
class RunOutcome:
    """What happened to a run, success or failure."""

    request: RunRequest | None
    started_at: datetime
    finished_at: datetime
    result: RunResult | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None

    @property
    def elapsed(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


class TriggerEvent(BaseModel):
    """Inbound trigger payload: {"project"?: str, "duration"?: int}.

    Absent fields fall back to configured defaults.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    project: str | None = Field(default=None, min_length=1)
    duration: int | None = Field(default=None, ge=0)

    @classmethod
    def from_message(cls, data: bytes | str | None) -> "TriggerEvent":
        """Build an event from a raw message body (JSON or empty)."""
        if data is None:
            return cls()
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        if not data.strip():
            return cls()
        return cls.model_validate(json.loads(data))
