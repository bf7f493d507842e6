"""CommandRunner — spawn an external command and capture its output.

The command is spawned from an argument vector (never through a shell).
stdout and stderr are drained by two tasks that start together and are both
joined before the runner returns, so a chatty child can never block on a full
pipe buffer. Output can be mirrored to the service's own console while it is
being buffered. The child runs in its own session so a timeout or
cancellation can kill the whole process tree it started.

Usage:
    runner = CommandRunner(pipe_output=True)
    output = await runner.execute("npx", ["firebase", "--version"])
    print(output.stdout.decode())
"""

import asyncio
import logging
import os
import signal
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from rtdb_profiler.errors import ExecutionError, SpawnError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class CompletedOutput:
    """Result of a command that exited with code 0."""

    exit_code: int
    stdout: bytes
    stderr: bytes


def _mirror(stream: IO, chunk: bytes) -> None:
    """Write a raw chunk to a console stream, byte for byte when possible."""
    binary = getattr(stream, "buffer", None)
    if binary is not None:
        binary.write(chunk)
        binary.flush()
    else:
        stream.write(chunk.decode("utf-8", errors="replace"))
        stream.flush()


async def _drain(
    stream: asyncio.StreamReader,
    buffer: bytearray,
    mirror: IO | None,
) -> None:
    while True:
        chunk = await stream.read(_CHUNK_SIZE)
        if not chunk:
            break
        buffer.extend(chunk)
        if mirror is not None:
            _mirror(mirror, chunk)


async def _kill(process: asyncio.subprocess.Process) -> None:
    """Kill the child and everything it spawned, then reap it."""
    # the child leads its own session, so its pid is also the group id
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass
    await process.wait()


class CommandRunner:
    """Runs external commands and collects their output.

    Args:
        pipe_output: Mirror child stdout/stderr to this process's
            stdout/stderr (default: True). Can be overridden per call.
    """

    def __init__(self, pipe_output: bool = True) -> None:
        self.pipe_output = pipe_output

    async def execute(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: str | Path | None = None,
        timeout: float | None = None,
        pipe_output: bool | None = None,
    ) -> CompletedOutput:
        """Run a command to completion.

        No timeout is enforced unless one is given. On timeout, or when the
        awaiting task is cancelled, the child is killed before returning.

        Args:
            command: Executable to run
            args: Argument vector passed to the executable
            cwd: Working directory for the child
            timeout: Optional wall-clock limit in seconds
            pipe_output: Override the runner's pipe_output setting

        Returns:
            CompletedOutput with everything the child wrote to stdout

        Raises:
            SpawnError: If the process could not be started
            ExecutionError: If the process exited non-zero or timed out
        """
        argv = [str(a) for a in args]
        mirror = self.pipe_output if pipe_output is None else pipe_output

        logger.debug("Spawning %s with %d args", command, len(argv))
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *argv,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            logger.error("Failed to spawn %s: %s", command, e)
            raise SpawnError(command, e) from e

        stdout_buf = bytearray()
        stderr_buf = bytearray()

        async def _communicate() -> int:
            await asyncio.gather(
                _drain(process.stdout, stdout_buf, sys.stdout if mirror else None),
                _drain(process.stderr, stderr_buf, sys.stderr if mirror else None),
            )
            return await process.wait()

        timed_out = False
        try:
            exit_code = await asyncio.wait_for(_communicate(), timeout=timeout)
        except TimeoutError:
            logger.warning("%s exceeded %.1fs timeout, killing pid %d", command, timeout, process.pid)
            timed_out = True
            await _kill(process)
            exit_code = process.returncode
        except asyncio.CancelledError:
            logger.warning("Run cancelled, killing %s (pid %d)", command, process.pid)
            await _kill(process)
            raise

        stderr_text = bytes(stderr_buf).decode("utf-8", errors="replace")
        if timed_out or exit_code != 0:
            raise ExecutionError(
                exit_code=exit_code,
                stderr=stderr_text,
                args=[command, *argv],
                timed_out=timed_out,
            )

        logger.debug(
            "%s exited 0 (%d stdout bytes, %d stderr bytes)",
            command, len(stdout_buf), len(stderr_buf),
        )
        return CompletedOutput(
            exit_code=exit_code,
            stdout=bytes(stdout_buf),
            stderr=bytes(stderr_buf),
        )
