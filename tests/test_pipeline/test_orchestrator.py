"""Tests for PipelineOrchestrator — run → parse → forward.

The CommandRunner is replaced by a fake that writes the output file the way
the real profiler does; both sinks are AsyncMocks.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from rtdb_profiler.config import Settings
from rtdb_profiler.errors import EmptyInputError, ExecutionError, SinkError, SpawnError
from rtdb_profiler.models import RunRequest
from rtdb_profiler.parser import Decoded, Unparsed
from rtdb_profiler.pipeline.orchestrator import PipelineOrchestrator, object_path, redact
from rtdb_profiler.runner import CommandRunner, CompletedOutput

STARTED = datetime(2026, 10, 19, 9, 5, 1, 123456)


# --- Fixtures ---


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "firebase_token": "secret-token",
        "profiler_command": "npx firebase",
        "work_dir": str(tmp_path / "work"),
        "profile_duration": 30,
        "results_prefix": "profiler-service-results",
        "log_stream": "database-profiler",
        "run_timeout": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_runner(content: bytes = b'{"a":1}\n{"b":2}\n', error: Exception | None = None) -> MagicMock:
    """Fake runner writing `content` to the -o path, or raising `error`."""
    runner = MagicMock(spec=CommandRunner)

    async def _execute(command, args, **kwargs):
        path = Path(args[args.index("-o") + 1])
        assert path.exists(), "output file must exist before the command runs"
        if error is not None:
            raise error
        path.write_bytes(content)
        return CompletedOutput(exit_code=0, stdout=b"", stderr=b"")

    runner.execute = AsyncMock(side_effect=_execute)
    return runner


def make_sinks() -> tuple[MagicMock, MagicMock]:
    storage = MagicMock()
    storage.upload = AsyncMock(return_value={"name": "obj"})
    log_sink = MagicMock()
    log_sink.write_entries = AsyncMock(return_value=2)
    return storage, log_sink


def make_orchestrator(tmp_path, runner=None, **settings_overrides):
    storage, log_sink = make_sinks()
    orch = PipelineOrchestrator(
        runner or make_runner(),
        storage,
        log_sink,
        make_settings(tmp_path, **settings_overrides),
        clock=lambda: STARTED,
    )
    return orch, storage, log_sink


def make_request(tmp_path, **kwargs) -> RunRequest:
    kwargs.setdefault("project", "demo")
    kwargs.setdefault("output_path", tmp_path / "work" / "nested" / "profile.json")
    return RunRequest(**kwargs)


class TestHelpers:

    def test_object_path_format(self):
        """<prefix>/<MM-DD-YYYY>/<H:mm:ss.SSS>.json, hour not zero-padded."""
        assert (
            object_path("profiler-service-results", STARTED)
            == "profiler-service-results/10-19-2026/9:05:01.123.json"
        )

    def test_object_path_afternoon(self):
        ts = datetime(2026, 1, 2, 15, 0, 9, 7000)
        assert object_path("p", ts) == "p/01-02-2026/15:00:09.007.json"

    def test_redact(self):
        args = ["database:profile", "--token", "abc", "-d", "30"]

        assert redact(args) == ["database:profile", "--token", "***", "-d", "30"]
        assert args[2] == "abc"


class TestBuildArgs:

    def test_argument_order(self, tmp_path):
        orch, _, _ = make_orchestrator(tmp_path)
        request = make_request(tmp_path, duration_seconds=60)

        assert orch.build_args(request) == [
            "database:profile",
            "--raw",
            "-o",
            str(request.output_path),
            "--project",
            "demo",
            "-d",
            "60",
            "--token",
            "secret-token",
        ]

    def test_zero_duration_uses_default(self, tmp_path):
        orch, _, _ = make_orchestrator(tmp_path, profile_duration=45)
        args = orch.build_args(make_request(tmp_path, duration_seconds=0))

        assert args[args.index("-d") + 1] == "45"

    def test_missing_token_warns_and_proceeds(self, tmp_path, caplog):
        orch, _, _ = make_orchestrator(tmp_path, firebase_token=None)

        with caplog.at_level(logging.WARNING):
            args = orch.build_args(make_request(tmp_path))

        assert "--token" not in args
        assert "FIREBASE_TOKEN" in caplog.text


class TestRun:
    """Successful runs."""

    @pytest.mark.asyncio
    async def test_end_to_end(self, tmp_path):
        """Output file → records → both sinks once, date-partitioned path."""
        orch, storage, log_sink = make_orchestrator(tmp_path)
        request = make_request(tmp_path, duration_seconds=60)

        result = await orch.run(request)

        assert result.records == (Decoded({"a": 1}), Decoded({"b": 2}))
        assert result.started_at == STARTED

        command, args = orch.runner.execute.call_args.args
        assert command == "npx"
        assert args[0] == "firebase"
        assert args[args.index("-d") + 1] == "60"
        assert args[args.index("--project") + 1] == "demo"

        storage.upload.assert_awaited_once()
        path, payload = storage.upload.call_args.args
        assert path == "profiler-service-results/10-19-2026/9:05:01.123.json"
        assert json.loads(payload) == [{"a": 1}, {"b": 2}]

        log_sink.write_entries.assert_awaited_once()
        stream, entries = log_sink.write_entries.call_args.args
        assert stream == "database-profiler"
        assert [e.payload for e in entries] == [Decoded({"a": 1}), Decoded({"b": 2})]
        assert entries[0].resource["labels"]["project_id"] == "demo"

    @pytest.mark.asyncio
    async def test_creates_directory_and_file(self, tmp_path):
        """Missing output directory and file are created before spawning."""
        orch, _, _ = make_orchestrator(tmp_path)
        request = make_request(tmp_path)
        assert not request.output_path.parent.exists()

        await orch.run(request)

        # fake runner asserts the file existed when it ran
        orch.runner.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_removes_output_file(self, tmp_path):
        orch, _, _ = make_orchestrator(tmp_path)
        request = make_request(tmp_path)

        await orch.run(request)

        assert not request.output_path.exists()

    @pytest.mark.asyncio
    async def test_malformed_lines_are_forwarded(self, tmp_path):
        runner = make_runner(b'{"a":1}\ngarbage\n')
        orch, storage, _ = make_orchestrator(tmp_path, runner=runner)

        result = await orch.run(make_request(tmp_path))

        assert result.records == (Decoded({"a": 1}), Unparsed("garbage"))
        assert json.loads(storage.upload.call_args.args[1]) == [{"a": 1}, "garbage"]

    @pytest.mark.asyncio
    async def test_nan_line_does_not_fail_run(self, tmp_path):
        """A NaN line is forwarded as raw text and the upload stays valid JSON."""
        runner = make_runner(b'{"a":1}\n{"x": NaN}\n')
        orch, storage, log_sink = make_orchestrator(tmp_path, runner=runner)

        result = await orch.run(make_request(tmp_path))

        assert result.records == (Decoded({"a": 1}), Unparsed('{"x": NaN}'))
        payload = storage.upload.call_args.args[1]
        assert json.loads(payload) == [{"a": 1}, '{"x": NaN}']
        json.dumps(json.loads(payload), allow_nan=False)
        log_sink.write_entries.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cleanup_failure_is_not_fatal(self, tmp_path, monkeypatch, caplog):
        orch, storage, _ = make_orchestrator(tmp_path)

        def _fail_unlink(self, missing_ok=False):
            raise PermissionError("read-only")

        monkeypatch.setattr(Path, "unlink", _fail_unlink)

        with caplog.at_level(logging.WARNING):
            result = await orch.run(make_request(tmp_path))

        assert len(result.records) == 2
        storage.upload.assert_awaited_once()
        assert "Could not remove temporary output file" in caplog.text

    @pytest.mark.asyncio
    async def test_passes_timeout_to_runner(self, tmp_path):
        orch, _, _ = make_orchestrator(tmp_path, run_timeout=120.0)

        await orch.run(make_request(tmp_path))

        assert orch.runner.execute.call_args.kwargs["timeout"] == 120.0


class TestRunFailures:
    """Failures abort the run (command/parse) or fail it after both sinks."""

    @pytest.mark.asyncio
    async def test_command_failure_skips_sinks(self, tmp_path, caplog):
        runner = make_runner(error=ExecutionError(2, "boom"))
        orch, storage, log_sink = make_orchestrator(tmp_path, runner=runner)
        request = make_request(tmp_path)

        with caplog.at_level(logging.ERROR):
            with pytest.raises(ExecutionError):
                await orch.run(request)

        storage.upload.assert_not_called()
        log_sink.write_entries.assert_not_called()
        assert not request.output_path.exists()
        # full argument vector logged, token masked
        assert "database:profile" in caplog.text
        assert "***" in caplog.text
        assert "secret-token" not in caplog.text

    @pytest.mark.asyncio
    async def test_spawn_failure_propagates(self, tmp_path):
        runner = make_runner(error=SpawnError("npx", FileNotFoundError("npx")))
        orch, storage, _ = make_orchestrator(tmp_path, runner=runner)

        with pytest.raises(SpawnError):
            await orch.run(make_request(tmp_path))

        storage.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_output_raises(self, tmp_path):
        runner = make_runner(content=b"")
        orch, storage, log_sink = make_orchestrator(tmp_path, runner=runner)

        with pytest.raises(EmptyInputError):
            await orch.run(make_request(tmp_path))

        storage.upload.assert_not_called()
        log_sink.write_entries.assert_not_called()

    @pytest.mark.asyncio
    async def test_storage_failure_still_writes_logs(self, tmp_path):
        orch, storage, log_sink = make_orchestrator(tmp_path)
        storage.upload.side_effect = SinkError("upload failed", sink="storage")

        with pytest.raises(SinkError, match="upload failed"):
            await orch.run(make_request(tmp_path))

        log_sink.write_entries.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_log_sink_failure_still_uploads(self, tmp_path):
        orch, storage, log_sink = make_orchestrator(tmp_path)
        log_sink.write_entries.side_effect = SinkError("write failed", sink="cloud-logging")

        with pytest.raises(SinkError, match="write failed"):
            await orch.run(make_request(tmp_path))

        storage.upload.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_both_sinks_fail_first_error_wins(self, tmp_path):
        orch, storage, log_sink = make_orchestrator(tmp_path)
        storage.upload.side_effect = SinkError("storage down", sink="storage")
        log_sink.write_entries.side_effect = SinkError("logging down", sink="cloud-logging")

        with pytest.raises(SinkError, match="storage down"):
            await orch.run(make_request(tmp_path))

    @pytest.mark.asyncio
    async def test_unexpected_sink_exception_wrapped(self, tmp_path):
        orch, storage, _ = make_orchestrator(tmp_path)
        storage.upload.side_effect = RuntimeError("client closed")

        with pytest.raises(SinkError) as exc_info:
            await orch.run(make_request(tmp_path))

        assert isinstance(exc_info.value.__cause__, RuntimeError)


class TestExecute:
    """Failures converted into outcomes at the orchestrator boundary."""

    @pytest.mark.asyncio
    async def test_success_outcome(self, tmp_path):
        orch, _, _ = make_orchestrator(tmp_path)
        request = make_request(tmp_path)

        outcome = await orch.execute(request)

        assert outcome.ok
        assert outcome.request == request
        assert len(outcome.result.records) == 2
        assert outcome.error is None

    @pytest.mark.asyncio
    async def test_failure_outcome_does_not_raise(self, tmp_path, caplog):
        runner = make_runner(error=ExecutionError(1, "auth failed"))
        orch, _, _ = make_orchestrator(tmp_path, runner=runner)

        with caplog.at_level(logging.ERROR):
            outcome = await orch.execute(make_request(tmp_path))

        assert not outcome.ok
        assert isinstance(outcome.error, ExecutionError)
        assert outcome.result is None
        assert "Run failed (project=demo" in caplog.text

    @pytest.mark.asyncio
    async def test_sink_failure_outcome(self, tmp_path):
        orch, storage, _ = make_orchestrator(tmp_path)
        storage.upload.side_effect = SinkError("nope", sink="storage")

        outcome = await orch.execute(make_request(tmp_path))

        assert not outcome.ok
        assert isinstance(outcome.error, SinkError)
