"""
Tests for low-level process spawning against real system processes.
"""

import time

import pytest

from chunk_runner.process import (
    TIMEOUT_MARKER,
    StreamCollector,
    append_message,
    run_process,
    split_command,
)

from .conftest import PYTHON


class TestHelpers:

    def test_split_command(self) -> None:
        assert split_command("python3 -u") == ["python3", "-u"]
        assert split_command('node --eval "x y"') == ["node", "--eval", "x y"]

    def test_split_command_keeps_existing_executable_path_whole(self) -> None:
        assert split_command(PYTHON) == [PYTHON]

    def test_append_message(self) -> None:
        assert append_message("", "[Timeout]") == "[Timeout]"
        assert append_message("err\n", "[Timeout]") == "err\n[Timeout]"
        assert append_message("err", "[Timeout]") == "err\n[Timeout]"

    def test_collector_decodes_split_multibyte_characters(self) -> None:
        collector = StreamCollector()
        data = "é".encode("utf-8")

        collector.feed(data[:1])
        collector.feed(data[1:])

        assert collector.text() == "é"


class TestRunProcess:
    """Test suite for run_process()."""

    @pytest.mark.asyncio
    async def test_captures_stdout_stderr_and_exit_code(self) -> None:
        result = await run_process("sh", ["-c", "echo out; echo err 1>&2; exit 3"], timeout_ms=10000)

        assert result.stdout == "out\n"
        assert result.stderr == "err\n"
        assert result.exit_code == 3
        assert result.timed_out is False

    @pytest.mark.asyncio
    async def test_stdin_payload_is_delivered(self) -> None:
        result = await run_process(PYTHON, ["-c", "import sys; print(sys.stdin.read().upper())"],
                                   timeout_ms=10000, stdin_data="hello")

        assert result.stdout.strip() == "HELLO"
        assert result.ok

    @pytest.mark.asyncio
    async def test_runs_in_working_directory(self, tmp_path) -> None:
        result = await run_process("sh", ["-c", "pwd"], cwd=str(tmp_path), timeout_ms=10000)

        assert result.stdout.strip() == str(tmp_path.resolve())

    @pytest.mark.asyncio
    async def test_missing_command_is_a_failed_result(self) -> None:
        result = await run_process("chunk-runner-no-such-command", [], timeout_ms=10000)

        assert result.exit_code == 1
        assert result.stderr

    @pytest.mark.asyncio
    async def test_timeout_kills_process_and_keeps_partial_output(self) -> None:
        started = time.monotonic()

        result = await run_process("sh", ["-c", "echo started; sleep 5"], timeout_ms=500)

        assert time.monotonic() - started < 4
        assert result.timed_out is True
        assert result.exit_code != 0
        assert result.stdout == "started\n"
        assert result.stderr.endswith(TIMEOUT_MARKER)
