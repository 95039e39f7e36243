"""
Custom exceptions for code chunk execution.

These are raised inside the execution engine and converted into failing
results before they reach the caller of ChunkManager.run_chunk.
"""


class ChunkRunnerError(Exception):
    """Base exception for all chunk runner errors"""
    pass


class ExecutionDisabledError(ChunkRunnerError):
    """Raised when code execution is turned off in the configuration"""
    def __init__(self, message: str = "Script execution is disabled."):
        super().__init__(message)


class UnresolvedCommandError(ChunkRunnerError):
    """Raised when a chunk does not declare a usable command"""
    def __init__(self, message: str = "No command specified for code chunk."):
        super().__init__(message)


class CompilationError(ChunkRunnerError):
    """Raised when document compilation produced no usable artifact"""
    def __init__(self, message: str = "LaTeX compilation produced no output."):
        super().__init__(message)


class SessionError(ChunkRunnerError):
    """Raised when a persistent session cannot be started or written to"""
    def __init__(self, session_key: str, message: str):
        self.session_key = session_key
        super().__init__(f"Session {session_key}: {message}")
