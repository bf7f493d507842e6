"""Error taxonomy for the profiler pipeline.

Every failure a run can hit derives from ProfilerError so the orchestrator
boundary can turn it into a failed RunOutcome:

- SpawnError: the external command could not be started
- ExecutionError: the command exited non-zero (or was killed on timeout)
- EmptyInputError: the output file had no content to parse
- SinkError: Cloud Storage or Cloud Logging call failed
- CredentialError: no usable credential material was found
- ConfigurationError: a run could not be built from settings + trigger
"""

from collections.abc import Sequence


class ProfilerError(Exception):
    """Base exception for profiler pipeline errors."""


class SpawnError(ProfilerError):
    """Raised when the external command cannot be spawned."""

    def __init__(self, command: str, cause: OSError) -> None:
        super().__init__(f"Failed to spawn {command!r}: {cause}")
        self.command = command
        self.cause = cause


class ExecutionError(ProfilerError):
    """Raised when the external command exits with a non-zero code."""

    def __init__(
        self,
        exit_code: int | None,
        stderr: str,
        args: Sequence[str] = (),
        timed_out: bool = False,
    ) -> None:
        if timed_out:
            message = "Command timed out and was killed"
        else:
            message = f"Command exited with code {exit_code}"
        if stderr:
            message = f"{message}: {stderr.strip()[:500]}"
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr
        self.command_args = list(args)
        self.timed_out = timed_out


class EmptyInputError(ProfilerError):
    """Raised when there is no content to parse."""

    def __init__(self, source: str = "<bytes>") -> None:
        super().__init__(f"{source} does not contain any content to parse")
        self.source = source


class SinkError(ProfilerError):
    """Raised when a sink (object store or log sink) call fails."""

    def __init__(
        self,
        message: str,
        sink: str | None = None,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.sink = sink
        self.status_code = status_code
        self.response_body = response_body


class CredentialError(ProfilerError):
    """Raised when no usable credential can be loaded."""


class ConfigurationError(ProfilerError):
    """Raised when a run cannot be configured (e.g. no project)."""
