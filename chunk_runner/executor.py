"""
One-shot execution of code chunks.

Chooses an execution strategy per chunk (temp file, stdin, plot capture or
document compilation) and runs it through the process runner.
"""
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence

from .attributes import CommandKind
from .compile import CompilationPipeline
from .config import ExecutionConfig
from .exceptions import ExecutionDisabledError, UnresolvedCommandError
from .models import Chunk, ExecutionResult
from .process import run_process

logger = logging.getLogger(__name__)

# (command, args, cwd, timeout_ms, stdin_data) -> ExecutionResult
ProcessRunner = Callable[..., Awaitable[ExecutionResult]]

INPUT_FILE_PLACEHOLDER = "$input_file"
TEMP_PREFIX = "chunk_runner_"
FALLBACK_EXTENSION = ".tmp"

TEMP_EXTENSIONS = {
    'javascript': '.js',
    'js': '.js',
    'typescript': '.ts',
    'ts': '.ts',
    'python': '.py',
    'python3': '.py',
    'py': '.py',
    'ruby': '.rb',
    'bash': '.sh',
    'sh': '.sh',
    'shell': '.sh',
    'console': '.sh',
    'zsh': '.zsh',
    'go': '.go',
    'rust': '.rs',
    'c': '.c',
    'cpp': '.cpp',
    'c++': '.cpp',
    'java': '.java',
    'php': '.php',
    'perl': '.pl',
    'r': '.r',
    'R': '.r',
    'lua': '.lua',
    'swift': '.swift',
    'kotlin': '.kt',
    'scala': '.scala',
    'haskell': '.hs',
    'elixir': '.exs',
    'erlang': '.erl',
}

PYTHON_LANGUAGES = {'python', 'python3', 'py'}
COMPILED_DOCUMENT_LANGUAGES = {'latex', 'tex'}
GENERIC_SHELL_LANGUAGES = {'shell', 'console'}

PLOT_START = "__CHUNK_RUNNER_PNG_BASE64__"
PLOT_END = "__CHUNK_RUNNER_PNG_BASE64_END__"
PLOT_PATTERN = re.compile(re.escape(PLOT_START) + r'(.+?)' + re.escape(PLOT_END), re.DOTALL)

PLOT_PREAMBLE = """import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
"""

PLOT_POSTAMBLE = """
import base64 as __chunk_b64
plt.savefig({image_path!r}, bbox_inches='tight', dpi=150)
with open({image_path!r}, 'rb') as __chunk_f:
    __chunk_data = __chunk_b64.b64encode(__chunk_f.read()).decode('ascii')
    print({start!r} + __chunk_data + {end!r})
plt.close('all')
"""


def temp_extension(language: str) -> str:
    return TEMP_EXTENSIONS.get(language, FALLBACK_EXTENSION)


def substitute_input_file(args: Sequence[str], input_file: str) -> List[str]:
    """
    Put the input file path into an argument list

    Every ``$input_file`` placeholder is replaced; if none is present the
    path is appended as the last argument.
    """
    resolved = [arg.replace(INPUT_FILE_PLACEHOLDER, input_file) for arg in args]
    if not any(INPUT_FILE_PLACEHOLDER in arg for arg in args):
        resolved.append(input_file)
    return resolved


def _make_temp_path(suffix: str) -> str:
    fd, path = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=suffix)
    os.close(fd)
    return path


class CodeChunkExecutor:
    """Runs chunks as one-shot processes"""

    def __init__(self, config: ExecutionConfig, runner: Optional[ProcessRunner] = None):
        self.config = config
        self.runner = runner or run_process
        self.compiler = CompilationPipeline(self.runner)

    async def execute(self, chunk: Chunk, combined_code: str, working_dir: Optional[str]) -> ExecutionResult:
        """
        Execute a chunk's code

        Args:
            chunk: The chunk being run (attributes select the strategy)
            combined_code: Code to run, including continued chunks
            working_dir: Working directory for the process

        Returns:
            ExecutionResult; gate and command problems are reported as failures
        """
        try:
            command = self.resolve_command(chunk)
        except (ExecutionDisabledError, UnresolvedCommandError) as e:
            logger.info(f"Not running {chunk.id}: {e}")
            return ExecutionResult.failure(str(e))

        timeout_ms = self.config.timeout_ms
        attrs = chunk.attrs

        if attrs.plot_capture and chunk.language in PYTHON_LANGUAGES:
            logger.debug(f"{chunk.id}: plot capture pipeline")
            return await self._execute_plot_capture(command, attrs.args, combined_code, working_dir)

        if chunk.language in COMPILED_DOCUMENT_LANGUAGES:
            logger.debug(f"{chunk.id}: document compilation pipeline")
            engine = attrs.engine or self.config.latex_engine
            return await self.compiler.run(combined_code, engine, attrs, working_dir, timeout_ms)

        if attrs.stdin:
            return await self._execute_via_stdin(command, attrs.args, combined_code, working_dir)

        return await self._execute_via_temp_file(
            command, attrs.args, combined_code, chunk.language, working_dir
        )

    def resolve_command(self, chunk: Chunk) -> str:
        """
        Resolve the command a chunk runs with

        Raises:
            ExecutionDisabledError: execution is turned off
            UnresolvedCommandError: the chunk has no usable command
        """
        if not self.config.enable_execution:
            raise ExecutionDisabledError()

        cmd = chunk.attrs.cmd
        if cmd.kind == CommandKind.EXPLICIT:
            command = cmd.value.strip()
        elif cmd.kind == CommandKind.LANGUAGE:
            if chunk.language in GENERIC_SHELL_LANGUAGES:
                command = self.config.default_shell or 'sh'
            else:
                command = chunk.language
        else:
            command = ''

        if not command:
            raise UnresolvedCommandError()
        return command

    async def _execute_via_temp_file(
        self,
        command: str,
        args: Sequence[str],
        code: str,
        language: str,
        working_dir: Optional[str],
    ) -> ExecutionResult:
        """Write code to a temp file and pass its path to the command"""
        temp_path = _make_temp_path(temp_extension(language))
        try:
            Path(temp_path).write_text(code, encoding='utf-8')
            resolved_args = substitute_input_file(args, temp_path)
            return await self.runner(command, resolved_args, working_dir, self.config.timeout_ms)
        finally:
            Path(temp_path).unlink(missing_ok=True)

    async def _execute_via_stdin(
        self,
        command: str,
        args: Sequence[str],
        code: str,
        working_dir: Optional[str],
    ) -> ExecutionResult:
        return await self.runner(command, list(args), working_dir, self.config.timeout_ms, code)

    async def _execute_plot_capture(
        self,
        command: str,
        args: Sequence[str],
        code: str,
        working_dir: Optional[str],
    ) -> ExecutionResult:
        """
        Run plotting code and capture the last figure as base64 PNG

        The code is wrapped to force the Agg backend and to print the saved
        figure between sentinels; on success stdout is replaced by the
        base64 payload alone.
        """
        image_path = _make_temp_path('.png')
        try:
            postamble = PLOT_POSTAMBLE.format(image_path=image_path, start=PLOT_START, end=PLOT_END)
            wrapped = f"{PLOT_PREAMBLE}{code}\n{postamble}"
            result = await self._execute_via_temp_file(command, args, wrapped, 'python', working_dir)

            match = PLOT_PATTERN.search(result.stdout)
            if match:
                result.stdout = match.group(1)
            return result
        finally:
            Path(image_path).unlink(missing_ok=True)
