from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Any, Optional

from .attributes import ChunkAttributes


class ChunkStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class ExecutionResult:
    """Captured output of one process run"""
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = 0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @classmethod
    def failure(cls, message: str, exit_code: int = 1) -> 'ExecutionResult':
        """Result for a run that never reached a process"""
        return cls(stdout="", stderr=message, exit_code=exit_code)


@dataclass
class SessionResult:
    """Output of one fragment sent to a persistent session"""
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def exit_code(self) -> int:
        # Sessions have no per-fragment exit status; stderr output counts as failure
        return 1 if self.stderr else 0


@dataclass
class ChunkResult:
    """Snapshot of a chunk after a run, as handed to the host"""
    chunk_id: str
    status: ChunkStatus
    rendered_result: str
    error: str
    source_line: int

    @property
    def succeeded(self) -> bool:
        return self.status == ChunkStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return data


@dataclass
class Chunk:
    """An executable fenced code block"""
    id: str
    language: str
    code: str
    attrs: ChunkAttributes
    source_line: int
    rendered_result: str = ""
    status: ChunkStatus = ChunkStatus.IDLE
    error: str = ""

    def to_result(self) -> ChunkResult:
        return ChunkResult(
            chunk_id=self.id,
            status=self.status,
            rendered_result=self.rendered_result,
            error=self.error,
            source_line=self.source_line,
        )
