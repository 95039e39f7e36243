from dataclasses import dataclass, field
from typing import Optional


DEFAULT_TIMEOUT_MS = 30000
DEFAULT_LATEX_ENGINE = "pdflatex"


@dataclass
class ExecutionConfig:
    """Configuration for running code chunks"""
    enable_execution: bool = False
    timeout_ms: int = DEFAULT_TIMEOUT_MS  # Per execution or per session send
    default_shell: str = ""  # Command for generic `shell` chunks; empty means sh
    latex_engine: str = DEFAULT_LATEX_ENGINE

    def __post_init__(self):
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

        if not self.latex_engine:
            self.latex_engine = DEFAULT_LATEX_ENGINE

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass
class RunnerConfig:
    """Main configuration container"""
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    log_level: str = "INFO"
    log_file: Optional[str] = None
