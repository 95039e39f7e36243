"""
Persistent interpreter sessions for continued chunks.

A chunk with ``continue`` shares a long-lived interpreter with earlier
chunks so that variables and other state carry over. Each fragment is
followed by a statement that echoes a one-time delimiter; the reply is
everything printed before that delimiter appears.
"""
import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .exceptions import SessionError
from .models import SessionResult
from .process import (
    NEW_SESSION,
    READ_CHUNK_SIZE,
    TIMEOUT_MARKER,
    StreamCollector,
    append_message,
    kill_process_tree,
    split_command,
    wait_killed,
)

logger = logging.getLogger(__name__)

SESSION_EXITED_MARKER = "[Session exited]"
# Time allowed for stderr written just before the delimiter to be read
STDERR_SETTLE_SECONDS = 0.05

# REPL with silent prompts that does not echo undefined statement results
NODE_REPL_COMMAND = 'node -e "require(\'repl\').start({prompt: \'\', ignoreUndefined: true})"'

INTERPRETER_COMMANDS = {
    'python': 'python3 -q -u -i -c "import sys; sys.ps1 = sys.ps2 = \'\'"',
    'python3': 'python3 -q -u -i -c "import sys; sys.ps1 = sys.ps2 = \'\'"',
    'javascript': NODE_REPL_COMMAND,
    'node': NODE_REPL_COMMAND,
    'ruby': 'irb --noecho',
    'bash': 'bash',
    'sh': 'sh',
    'zsh': 'zsh',
    'php': 'php -a',
    'perl': 'perl',
    'r': 'R --no-save --quiet',
    'R': 'R --no-save --quiet',
}


def interpreter_command(language: str) -> str:
    return INTERPRETER_COMMANDS.get(language, language)


def build_delimiter_echo(language: str, delimiter: str) -> str:
    """Statement, in the session's language, that prints the delimiter"""
    if language in ('python', 'python3'):
        return f'\nprint("{delimiter}")\n'
    if language in ('javascript', 'node'):
        return f'\nconsole.log("{delimiter}");\n'
    if language == 'ruby':
        return f'\nputs "{delimiter}"\n'
    if language == 'php':
        return f'\necho "{delimiter}\\n";\n'
    if language == 'perl':
        return f'\nprint "{delimiter}\\n";\n'
    if language in ('r', 'R'):
        return f'\ncat("{delimiter}\\n")\n'
    return f'\necho "{delimiter}"\n'


def make_delimiter() -> str:
    return f"__CHUNK_RUNNER_SESSION_END__{int(time.time() * 1000)}_{secrets.token_hex(8)}"


@dataclass
class Session:
    """One live interpreter process and the output it has produced"""
    language: str
    key: str
    cwd: Optional[str]
    process: asyncio.subprocess.Process
    stdout: StreamCollector = field(default_factory=StreamCollector)
    stderr: StreamCollector = field(default_factory=StreamCollector)
    changed: asyncio.Condition = field(default_factory=asyncio.Condition)
    tasks: List[asyncio.Task] = field(default_factory=list)
    closed: bool = False

    @property
    def alive(self) -> bool:
        return not self.closed and self.process.returncode is None

    def reset_output(self) -> None:
        self.stdout = StreamCollector()
        self.stderr = StreamCollector()


class SessionManager:
    """Owns the persistent interpreter processes, keyed by language and session id"""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        # Killed after a timeout, still draining
        self._retired: List[Session] = []

    @staticmethod
    def table_key(language: str, session_key: str) -> str:
        return f"{language}:{session_key}"

    def has_session(self, language: str, session_key: str) -> bool:
        session = self._sessions.get(self.table_key(language, session_key))
        return session is not None and session.alive

    async def get_or_create(self, language: str, session_key: str, cwd: Optional[str]) -> Session:
        """
        Return the live session for a key, starting a new interpreter if needed

        Raises:
            SessionError: the interpreter could not be started
        """
        key = self.table_key(language, session_key)
        session = self._sessions.get(key)
        if session is not None and session.alive:
            return session

        argv = split_command(interpreter_command(language))
        logger.info(f"Starting session {key}: {argv}")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd or None,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=NEW_SESSION,
            )
        except OSError as e:
            raise SessionError(key, str(e)) from e

        session = Session(language=language, key=key, cwd=cwd, process=process)
        session.tasks = [
            asyncio.create_task(self._pump(session, process.stdout, 'stdout')),
            asyncio.create_task(self._pump(session, process.stderr, 'stderr')),
            asyncio.create_task(self._watch_exit(session)),
        ]
        self._sessions[key] = session
        return session

    async def send(
        self,
        language: str,
        session_key: str,
        code: str,
        cwd: Optional[str],
        timeout_ms: int,
    ) -> SessionResult:
        """
        Run a code fragment in the session and wait for its output

        Sends to the same session are served one at a time in arrival order.

        Returns:
            SessionResult with the output printed before the delimiter, or
            the partial output plus a timeout/exit marker in stderr
        """
        key = self.table_key(language, session_key)
        lock = self._locks.setdefault(key, asyncio.Lock())

        async with lock:
            try:
                session = await self.get_or_create(language, session_key, cwd)
            except SessionError as e:
                logger.warning(str(e))
                return SessionResult(stdout="", stderr=str(e))

            delimiter = make_delimiter()
            session.reset_output()
            payload = code + build_delimiter_echo(language, delimiter)

            try:
                session.process.stdin.write(payload.encode('utf-8'))
                await session.process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                logger.warning(f"Session {key} rejected input: {e}")
                return SessionResult(
                    stdout=session.stdout.text(),
                    stderr=append_message(session.stderr.text(), SESSION_EXITED_MARKER),
                )

            return await self._await_delimiter(session, delimiter, timeout_ms)

    async def _await_delimiter(self, session: Session, delimiter: str, timeout_ms: int) -> SessionResult:
        def settled() -> bool:
            return session.closed or delimiter in session.stdout.peek()

        try:
            async with session.changed:
                await asyncio.wait_for(session.changed.wait_for(settled), timeout=timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            logger.warning(f"Session {session.key} did not answer within {timeout_ms} ms, killing it")
            result = SessionResult(
                stdout=session.stdout.text(),
                stderr=append_message(session.stderr.text(), TIMEOUT_MARKER),
                timed_out=True,
            )
            self._retire(session)
            return result

        if not session.closed:
            await asyncio.sleep(STDERR_SETTLE_SECONDS)

        stdout = session.stdout.text()
        index = stdout.find(delimiter)
        if index == -1:
            return SessionResult(
                stdout=stdout,
                stderr=append_message(session.stderr.text(), SESSION_EXITED_MARKER),
            )
        return SessionResult(stdout=stdout[:index], stderr=session.stderr.text())

    async def _pump(self, session: Session, stream: asyncio.StreamReader, name: str) -> None:
        while True:
            data = await stream.read(READ_CHUNK_SIZE)
            if not data:
                break
            collector = session.stdout if name == 'stdout' else session.stderr
            collector.feed(data)
            async with session.changed:
                session.changed.notify_all()

    async def _watch_exit(self, session: Session) -> None:
        returncode = await session.process.wait()
        # Let the pumps drain what the process wrote before exiting
        await asyncio.gather(*session.tasks[:2], return_exceptions=True)
        session.closed = True
        if self._sessions.get(session.key) is session:
            del self._sessions[session.key]
        logger.info(f"Session {session.key} exited with code {returncode}")
        async with session.changed:
            session.changed.notify_all()

    def _retire(self, session: Session) -> None:
        """Kill a session and drop it so the next send starts a fresh interpreter"""
        self._terminate(session)
        if self._sessions.get(session.key) is session:
            del self._sessions[session.key]
        self._retired.append(session)

    def dispose(self) -> None:
        """Kill every session process and forget them"""
        for session in list(self._sessions.values()):
            self._terminate(session)
        self._sessions.clear()
        self._locks.clear()
        self._retired.clear()

    async def aclose(self) -> None:
        """Kill every session and wait for the processes to exit"""
        sessions = list(self._sessions.values()) + self._retired
        self._retired = []
        self.dispose()
        for session in sessions:
            await wait_killed(session.process)
            await asyncio.gather(*session.tasks, return_exceptions=True)

    @staticmethod
    def _terminate(session: Session) -> None:
        logger.debug(f"Killing session {session.key}")
        session.closed = True
        if session.process.returncode is None:
            kill_process_tree(session.process)
