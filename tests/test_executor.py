"""
Tests for one-shot chunk execution strategies.

Most cases use a recording runner so no interpreter is needed; a few run
the current Python interpreter for real.
"""

import re
from pathlib import Path

import pytest

from chunk_runner.config import ExecutionConfig
from chunk_runner.executor import (
    PLOT_END,
    PLOT_START,
    CodeChunkExecutor,
    substitute_input_file,
    temp_extension,
)
from chunk_runner.exceptions import ExecutionDisabledError, UnresolvedCommandError
from chunk_runner.models import ExecutionResult
from chunk_runner.process import TIMEOUT_MARKER, run_process

from .conftest import PYTHON, RecordingRunner, make_chunk


class TestSubstituteInputFile:

    def test_placeholder_is_replaced(self) -> None:
        assert substitute_input_file(["--file=$input_file", "-v"], "/tmp/x.py") == ["--file=/tmp/x.py", "-v"]

    def test_path_is_appended_without_placeholder(self) -> None:
        assert substitute_input_file(["-v"], "/tmp/x.py") == ["-v", "/tmp/x.py"]

    def test_extension_lookup(self) -> None:
        assert temp_extension("python") == ".py"
        assert temp_extension("brainfuck") == ".tmp"


class TestResolveCommand:
    """Test suite for CodeChunkExecutor.resolve_command()."""

    def test_disabled_execution_raises(self, disabled_config) -> None:
        executor = CodeChunkExecutor(disabled_config, runner=RecordingRunner())

        with pytest.raises(ExecutionDisabledError):
            executor.resolve_command(make_chunk("sh", "cmd=true", "echo 1"))

    def test_language_name_is_the_command(self, enabled_config) -> None:
        executor = CodeChunkExecutor(enabled_config, runner=RecordingRunner())

        assert executor.resolve_command(make_chunk("ruby", "cmd=true", "")) == "ruby"

    def test_explicit_command_wins(self, enabled_config) -> None:
        executor = CodeChunkExecutor(enabled_config, runner=RecordingRunner())

        assert executor.resolve_command(make_chunk("python", 'cmd="python3 -u"', "")) == "python3 -u"

    def test_generic_shell_uses_configured_shell(self) -> None:
        chunk = make_chunk("shell", "cmd=true", "echo 1")

        default = CodeChunkExecutor(ExecutionConfig(enable_execution=True))
        configured = CodeChunkExecutor(ExecutionConfig(enable_execution=True, default_shell="bash"))

        assert default.resolve_command(chunk) == "sh"
        assert configured.resolve_command(chunk) == "bash"

    def test_empty_command_is_unresolved(self, enabled_config) -> None:
        executor = CodeChunkExecutor(enabled_config, runner=RecordingRunner())

        with pytest.raises(UnresolvedCommandError):
            executor.resolve_command(make_chunk("sh", 'cmd=" "', "echo 1"))


class TestExecute:
    """Test suite for CodeChunkExecutor.execute()."""

    @pytest.mark.asyncio
    async def test_disabled_execution_never_spawns(self, disabled_config, recording_runner) -> None:
        executor = CodeChunkExecutor(disabled_config, runner=recording_runner)
        chunk = make_chunk("sh", "cmd=true", "echo 1")

        result = await executor.execute(chunk, chunk.code, None)

        assert result.exit_code != 0
        assert result.stderr == "Script execution is disabled."
        assert recording_runner.calls == []

    @pytest.mark.asyncio
    async def test_unresolved_command_is_a_failed_result(self, enabled_config, recording_runner) -> None:
        executor = CodeChunkExecutor(enabled_config, runner=recording_runner)
        chunk = make_chunk("sh", 'cmd=""', "echo 1")

        result = await executor.execute(chunk, chunk.code, None)

        assert result.stderr == "No command specified for code chunk."
        assert recording_runner.calls == []

    @pytest.mark.asyncio
    async def test_temp_file_holds_code_during_run_and_is_removed(self, enabled_config) -> None:
        seen = {}

        def respond(call):
            path = Path(call.args[-1])
            seen["path"] = path
            seen["code"] = path.read_text(encoding="utf-8")
            return ExecutionResult(stdout="done\n")

        runner = RecordingRunner(respond)
        executor = CodeChunkExecutor(enabled_config, runner=runner)
        chunk = make_chunk("python", 'cmd=true args=["-u"]', "print(1)\n")

        result = await executor.execute(chunk, "x = 0\nprint(1)\n", "/work")

        assert result.stdout == "done\n"
        assert seen["code"] == "x = 0\nprint(1)\n"
        assert seen["path"].suffix == ".py"
        assert not seen["path"].exists()
        call = runner.calls[0]
        assert call.command == "python"
        assert call.args[0] == "-u"
        assert call.cwd == "/work"
        assert call.timeout_ms == enabled_config.timeout_ms
        assert call.stdin_data is None

    @pytest.mark.asyncio
    async def test_placeholder_arg_receives_temp_path(self, enabled_config) -> None:
        runner = RecordingRunner()
        executor = CodeChunkExecutor(enabled_config, runner=runner)
        chunk = make_chunk("js", 'cmd=node args=["$input_file", "--trace"]', "console.log(1)")

        await executor.execute(chunk, chunk.code, None)

        args = runner.calls[0].args
        assert len(args) == 2
        assert args[0].endswith(".js")
        assert args[1] == "--trace"

    @pytest.mark.asyncio
    async def test_temp_file_is_removed_when_run_fails(self, enabled_config) -> None:
        paths = []

        def respond(call):
            paths.append(Path(call.args[-1]))
            return ExecutionResult(stderr="boom", exit_code=2)

        executor = CodeChunkExecutor(enabled_config, runner=RecordingRunner(respond))

        result = await executor.execute(make_chunk("sh", "cmd=true", "false"), "false", None)

        assert result.exit_code == 2
        assert not paths[0].exists()

    @pytest.mark.asyncio
    async def test_temp_file_is_removed_when_runner_raises(self, enabled_config) -> None:
        paths = []

        def respond(call):
            paths.append(Path(call.args[-1]))
            raise RuntimeError("runner exploded")

        executor = CodeChunkExecutor(enabled_config, runner=RecordingRunner(respond))

        with pytest.raises(RuntimeError):
            await executor.execute(make_chunk("sh", "cmd=true", "true"), "true", None)

        assert not paths[0].exists()

    @pytest.mark.asyncio
    async def test_temp_file_is_removed_after_real_timeout(self) -> None:
        paths = []

        async def runner(command, args, cwd=None, timeout_ms=30000, stdin_data=None):
            paths.append(Path(args[-1]))
            return await run_process(command, args, cwd, timeout_ms, stdin_data)

        config = ExecutionConfig(enable_execution=True, timeout_ms=500)
        executor = CodeChunkExecutor(config, runner=runner)
        chunk = make_chunk("sh", "cmd=true", "echo started\nsleep 5\n")

        result = await executor.execute(chunk, chunk.code, None)

        assert result.timed_out is True
        assert result.stdout == "started\n"
        assert TIMEOUT_MARKER in result.stderr
        assert not paths[0].exists()

    @pytest.mark.asyncio
    async def test_stdin_strategy_pipes_code(self, enabled_config, recording_runner) -> None:
        executor = CodeChunkExecutor(enabled_config, runner=recording_runner)
        chunk = make_chunk("python", 'cmd=true stdin args=["-"]', "print(1)")

        await executor.execute(chunk, "print(1)", None)

        call = recording_runner.calls[0]
        assert call.args == ["-"]
        assert call.stdin_data == "print(1)"

    @pytest.mark.asyncio
    async def test_real_python_chunk(self, enabled_config, tmp_path) -> None:
        executor = CodeChunkExecutor(enabled_config)
        chunk = make_chunk("python", f'cmd="{PYTHON}"', "import os\nprint(1 + 1)\nprint(os.getcwd())\n")

        result = await executor.execute(chunk, chunk.code, str(tmp_path))

        lines = result.stdout.splitlines()
        assert result.exit_code == 0
        assert lines[0] == "2"
        assert lines[1] == str(tmp_path.resolve())


class TestPlotCapture:
    """Test suite for the matplotlib capture strategy."""

    @pytest.mark.asyncio
    async def test_wraps_code_and_extracts_payload(self, enabled_config) -> None:
        seen = {}

        def respond(call):
            script = Path(call.args[-1]).read_text(encoding="utf-8")
            seen["script"] = script
            image_path = Path(re.search(r"plt\.savefig\('([^']+)'", script).group(1))
            seen["image"] = image_path
            image_path.write_bytes(b"png")
            return ExecutionResult(stdout=f"user output\n{PLOT_START}QUJD{PLOT_END}\n")

        executor = CodeChunkExecutor(enabled_config, runner=RecordingRunner(respond))
        chunk = make_chunk("python", "cmd=true matplotlib", "plt.plot([1, 2])")

        result = await executor.execute(chunk, chunk.code, None)

        assert result.stdout == "QUJD"
        assert "matplotlib.use('Agg')" in seen["script"]
        assert seen["script"].index("matplotlib.use('Agg')") < seen["script"].index("plt.plot([1, 2])")
        assert not seen["image"].exists()

    @pytest.mark.asyncio
    async def test_failed_plot_keeps_original_output(self, enabled_config) -> None:
        runner = RecordingRunner(lambda call: ExecutionResult(stderr="Traceback", exit_code=1))
        executor = CodeChunkExecutor(enabled_config, runner=runner)
        chunk = make_chunk("python", "cmd=true matplotlib", "raise SystemExit(1)")

        result = await executor.execute(chunk, chunk.code, None)

        assert result.exit_code == 1
        assert result.stderr == "Traceback"

    @pytest.mark.asyncio
    async def test_matplotlib_flag_ignored_for_other_languages(self, enabled_config, recording_runner) -> None:
        executor = CodeChunkExecutor(enabled_config, runner=recording_runner)
        chunk = make_chunk("sh", "cmd=true matplotlib", "echo 1")

        await executor.execute(chunk, chunk.code, None)

        script = Path(recording_runner.calls[0].args[-1])
        assert script.suffix == ".sh"

    @pytest.mark.asyncio
    async def test_real_figure_is_captured(self, enabled_config) -> None:
        pytest.importorskip("matplotlib")
        executor = CodeChunkExecutor(enabled_config)
        chunk = make_chunk("python", f'cmd="{PYTHON}" matplotlib', "plt.plot([1, 2, 3])\n")

        result = await executor.execute(chunk, chunk.code, None)

        assert result.exit_code == 0, result.stderr
        assert result.stdout.startswith("iVBOR")


class TestCompileDispatch:
    """Test suite for routing LaTeX chunks to the compilation pipeline."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("config_engine, attr_text, expected", [
        ("pdflatex", "cmd=true", "pdflatex"),
        ("xelatex", "cmd=true", "xelatex"),
        ("xelatex", "cmd=true latex_engine=lualatex", "lualatex"),
    ])
    async def test_engine_selection(self, config_engine, attr_text, expected) -> None:
        runner = RecordingRunner(lambda call: ExecutionResult(stderr="no engine", exit_code=1))
        config = ExecutionConfig(enable_execution=True, latex_engine=config_engine)
        executor = CodeChunkExecutor(config, runner=runner)

        result = await executor.execute(make_chunk("latex", attr_text, "x"), "x", None)

        assert runner.calls[0].command == expected
        assert result.stderr == "no engine"
