"""
Code Chunk Execution Engine

"""

__version__ = "1.0.0"
__author__ = "Your Name"

from .attributes import ChunkAttributes, CommandSpec, ContinueSpec, OutputFormat, parse_attributes
from .config import ExecutionConfig, RunnerConfig
from .models import Chunk, ChunkResult, ChunkStatus, ExecutionResult, SessionResult
from .executor import CodeChunkExecutor
from .session import SessionManager
from .manager import ChunkManager, ChunkManagerRegistry
from .render import render_output

__all__ = [
    'ChunkAttributes',
    'CommandSpec',
    'ContinueSpec',
    'OutputFormat',
    'parse_attributes',
    'ExecutionConfig',
    'RunnerConfig',
    'Chunk',
    'ChunkResult',
    'ChunkStatus',
    'ExecutionResult',
    'SessionResult',
    'CodeChunkExecutor',
    'SessionManager',
    'ChunkManager',
    'ChunkManagerRegistry',
    'render_output',
]
