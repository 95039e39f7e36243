"""
Low-level process spawning with incremental capture and a hard timeout.
"""
import asyncio
import codecs
import contextlib
import logging
import os
import shlex
import shutil
import signal
from typing import List, Optional, Sequence

from .models import ExecutionResult

logger = logging.getLogger(__name__)

TIMEOUT_MARKER = "[Timeout]"
READ_CHUNK_SIZE = 4096
# Seconds to wait for a killed process to be reaped
KILL_GRACE_SECONDS = 2.0

# Children get their own process group so a kill reaches their subprocesses too
NEW_SESSION = os.name == "posix"


def split_command(command: str) -> List[str]:
    """Split a command string such as ``python3 -u`` into argv words"""
    if shutil.which(command) or os.path.isfile(command):
        return [command]
    try:
        return shlex.split(command)
    except ValueError:
        return command.split()


def append_message(stderr: str, message: str) -> str:
    """Append a line to accumulated stderr"""
    if not stderr:
        return message
    if stderr.endswith('\n'):
        return f"{stderr}{message}"
    return f"{stderr}\n{message}"


class StreamCollector:
    """Accumulates a byte stream as decoded text"""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        self._parts: List[str] = []

    def feed(self, data: bytes) -> str:
        text = self._decoder.decode(data)
        if text:
            self._parts.append(text)
        return text

    def peek(self) -> str:
        """Text decoded so far, without flushing a partial character"""
        return ''.join(self._parts)

    def text(self) -> str:
        return ''.join(self._parts) + self._decoder.decode(b'', final=True)


def kill_process_tree(proc: asyncio.subprocess.Process) -> None:
    """Kill a process and, on POSIX, every process in its group"""
    with contextlib.suppress(ProcessLookupError, PermissionError):
        if NEW_SESSION:
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()


async def wait_killed(proc: asyncio.subprocess.Process) -> Optional[int]:
    try:
        return await asyncio.wait_for(proc.wait(), timeout=KILL_GRACE_SECONDS)
    except asyncio.TimeoutError:
        logger.warning(f"Process {proc.pid} still not reaped after kill")
        return proc.returncode


async def pump_stream(stream: asyncio.StreamReader, collector: StreamCollector) -> None:
    """Read a stream to EOF into collector"""
    while True:
        data = await stream.read(READ_CHUNK_SIZE)
        if not data:
            break
        collector.feed(data)


async def _feed_stdin(stdin: asyncio.StreamWriter, payload: str) -> None:
    with contextlib.suppress(BrokenPipeError, ConnectionResetError):
        stdin.write(payload.encode('utf-8'))
        await stdin.drain()
    stdin.close()


async def run_process(
    command: str,
    args: Sequence[str],
    cwd: Optional[str] = None,
    timeout_ms: int = 30000,
    stdin_data: Optional[str] = None,
) -> ExecutionResult:
    """
    Run a command and collect its output

    Never raises for process-level failures: a spawn error is reported in
    stderr with exit code 1, and a timeout kills the process, keeps the
    output captured so far and appends TIMEOUT_MARKER to stderr.

    Args:
        command: Command name, optionally with leading arguments ("python3 -u")
        args: Additional arguments
        cwd: Working directory
        timeout_ms: Hard wall-clock limit in milliseconds
        stdin_data: Text written to standard input, which is then closed

    Returns:
        ExecutionResult with decoded stdout/stderr and exit code
    """
    argv = split_command(command) + list(args)
    if not argv:
        return ExecutionResult.failure("Empty command")

    stdout = StreamCollector()
    stderr = StreamCollector()

    logger.debug(f"Spawning {argv} in {cwd or '.'}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd or None,
            stdin=asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=NEW_SESSION,
        )
    except OSError as e:
        logger.warning(f"Failed to spawn {argv[0]}: {e}")
        return ExecutionResult(stdout="", stderr=append_message("", str(e)), exit_code=1)

    tasks = [
        pump_stream(proc.stdout, stdout),
        pump_stream(proc.stderr, stderr),
        proc.wait(),
    ]
    if stdin_data is not None:
        tasks.append(_feed_stdin(proc.stdin, stdin_data))

    try:
        await asyncio.wait_for(asyncio.gather(*tasks), timeout=timeout_ms / 1000.0)
        exit_code = proc.returncode
    except asyncio.TimeoutError:
        logger.warning(f"Process {argv[0]} exceeded {timeout_ms} ms, killing it")
        kill_process_tree(proc)
        exit_code = await wait_killed(proc)
        return ExecutionResult(
            stdout=stdout.text(),
            stderr=append_message(stderr.text(), TIMEOUT_MARKER),
            exit_code=exit_code or 1,
            timed_out=True,
        )

    return ExecutionResult(stdout=stdout.text(), stderr=stderr.text(), exit_code=exit_code)
