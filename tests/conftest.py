"""
Shared fixtures for the chunk runner test suite.

Provides: execution configs, a recording process runner, chunk builders
"""

import sys
from dataclasses import dataclass
from typing import Callable, List, Optional

import pytest

from chunk_runner.attributes import parse_attributes
from chunk_runner.config import ExecutionConfig
from chunk_runner.models import Chunk, ExecutionResult


PYTHON = sys.executable


@dataclass
class RecordedCall:
    command: str
    args: List[str]
    cwd: Optional[str]
    timeout_ms: int
    stdin_data: Optional[str]


class RecordingRunner:
    """
    Process runner double that records every call.

    ``respond`` receives the RecordedCall and returns an ExecutionResult; it
    runs while the call is in flight, so it can inspect temp files.
    """

    def __init__(self, respond: Optional[Callable[[RecordedCall], ExecutionResult]] = None):
        self.calls: List[RecordedCall] = []
        self.respond = respond or (lambda call: ExecutionResult(stdout="ok\n"))

    async def __call__(self, command, args, cwd=None, timeout_ms=30000, stdin_data=None):
        call = RecordedCall(command, list(args), cwd, timeout_ms, stdin_data)
        self.calls.append(call)
        return self.respond(call)


def make_chunk(language: str, attr_text: str, code: str, chunk_id: str = "chunk-0", source_line: int = 0) -> Chunk:
    """Build a chunk the way the manager does from a fence"""
    return Chunk(
        id=chunk_id,
        language=language,
        code=code,
        attrs=parse_attributes(attr_text),
        source_line=source_line,
    )


def fence(language: str, attr_text: str, code: str, marker: str = "```") -> str:
    """Markdown for one fenced block"""
    info = f"{language} {{{attr_text}}}" if attr_text else language
    return f"{marker}{info}\n{code}\n{marker}\n"


@pytest.fixture
def enabled_config() -> ExecutionConfig:
    """Execution turned on with a short timeout."""
    return ExecutionConfig(enable_execution=True, timeout_ms=10000)


@pytest.fixture
def disabled_config() -> ExecutionConfig:
    return ExecutionConfig(enable_execution=False)


@pytest.fixture
def recording_runner() -> RecordingRunner:
    return RecordingRunner()
