"""
Chunk manager: parses executable chunks out of a document, resolves
continuation chains, routes each run to the one-shot executor or a
persistent session, and renders the captured output.
"""
from typing import Dict, List, Optional, Set
import logging

from .attributes import ContinueKind, parse_attributes
from .config import ExecutionConfig
from .exceptions import ExecutionDisabledError
from .executor import CodeChunkExecutor
from .models import Chunk, ChunkResult, ChunkStatus, ExecutionResult
from .parser import FenceParser
from .render import error_block, render_output
from .session import SessionManager
from .source_writer import insert_chunk_output

logger = logging.getLogger(__name__)


class ChunkManager:
    """Owns the chunks of one document and the sessions they run in"""

    def __init__(
        self,
        config: Optional[ExecutionConfig] = None,
        executor: Optional[CodeChunkExecutor] = None,
        sessions: Optional[SessionManager] = None,
    ):
        self.config = config or ExecutionConfig()
        self.executor = executor or CodeChunkExecutor(self.config)
        self.sessions = sessions or SessionManager()
        self.parser = FenceParser()
        self._chunks: Dict[str, Chunk] = {}
        self._order: List[str] = []

    def parse(self, content: str) -> List[str]:
        """
        Parse executable chunks from markdown, replacing any previous set

        Only fences whose attributes enable ``cmd`` become chunks. Ids come
        from the ``id`` attribute or are generated as ``chunk-<n>``, where n
        counts executable chunks only.

        Returns:
            Chunk ids in document order
        """
        self._chunks = {}
        self._order = []
        index = 0

        for block in self.parser.parse(content):
            attrs = parse_attributes(block.attr_text)
            if not attrs.cmd.enabled:
                continue

            chunk_id = attrs.id or f"chunk-{index}"
            if chunk_id in self._chunks:
                logger.warning(f"Duplicate chunk id {chunk_id} at line {block.start_line}")
                chunk_id = f"{chunk_id}-{index}"
            index += 1

            self._chunks[chunk_id] = Chunk(
                id=chunk_id,
                language=block.language,
                code=block.code,
                attrs=attrs,
                source_line=block.start_line,
            )
            self._order.append(chunk_id)

        logger.info(f"Parsed {len(self._order)} executable chunks")
        return list(self._order)

    def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        return self._chunks.get(chunk_id)

    def get_chunk_ids(self) -> List[str]:
        return list(self._order)

    def has_run_on_save_chunks(self) -> bool:
        return any(self._chunks[chunk_id].attrs.run_on_save for chunk_id in self._order)

    def find_chunk_at_line(self, line: int) -> Optional[Chunk]:
        """Return the last chunk starting at or before line"""
        found = None
        for chunk_id in self._order:
            chunk = self._chunks[chunk_id]
            if chunk.source_line > line:
                break
            found = chunk
        return found

    def build_continued_code(self, chunk_id: str) -> str:
        """
        Combine a chunk's code with the code it continues from

        ``continue=<id>`` follows the explicit chain depth-first (ancestors
        first, stopping at a cycle); ``continue`` alone takes every earlier
        chunk of the same language. Bodies are joined with newlines, the
        chunk's own code last.
        """
        chunk = self._chunks.get(chunk_id)
        if chunk is None:
            return ''

        continuation = chunk.attrs.continue_
        if continuation.kind == ContinueKind.NONE:
            return chunk.code

        blocks: List[str] = []
        if continuation.kind == ContinueKind.TARGET:
            visited: Set[str] = {chunk_id}
            self._collect_chain(continuation.target, blocks, visited)
        else:
            for other_id in self._order:
                if other_id == chunk_id:
                    break
                other = self._chunks[other_id]
                if other.language == chunk.language:
                    blocks.append(other.code)

        blocks.append(chunk.code)
        return '\n'.join(blocks)

    def _collect_chain(self, chunk_id: str, blocks: List[str], visited: Set[str]) -> None:
        if chunk_id in visited:
            return
        visited.add(chunk_id)

        chunk = self._chunks.get(chunk_id)
        if chunk is None:
            return

        continuation = chunk.attrs.continue_
        if continuation.kind == ContinueKind.TARGET:
            self._collect_chain(continuation.target, blocks, visited)

        blocks.append(chunk.code)

    @staticmethod
    def session_key(chunk: Chunk) -> str:
        continuation = chunk.attrs.continue_
        return continuation.target if continuation.kind == ContinueKind.TARGET else chunk.language

    async def run_chunk(self, chunk_id: str, working_dir: Optional[str] = None) -> Optional[ChunkResult]:
        """
        Run one chunk and store its rendered result

        Continued chunks run in a persistent session and send only their own
        code; other chunks run once with the combined continuation code.
        Failures of any kind end up in the chunk's status and error.

        Returns:
            ChunkResult, or None for an unknown id
        """
        chunk = self._chunks.get(chunk_id)
        if chunk is None:
            return None

        chunk.status = ChunkStatus.RUNNING
        chunk.error = ''

        try:
            if not self.config.enable_execution:
                raise ExecutionDisabledError()

            combined_code = self.build_continued_code(chunk_id)

            if chunk.attrs.continue_.enabled:
                session_key = self.session_key(chunk)
                logger.info(f"Running {chunk_id} in session {chunk.language}:{session_key}")
                reply = await self.sessions.send(
                    chunk.language,
                    session_key,
                    chunk.code,
                    working_dir,
                    self.config.timeout_ms,
                )
                result = ExecutionResult(
                    stdout=reply.stdout,
                    stderr=reply.stderr,
                    exit_code=reply.exit_code,
                    timed_out=reply.timed_out,
                )
            else:
                logger.info(f"Running {chunk_id} ({chunk.language})")
                result = await self.executor.execute(chunk, combined_code, working_dir)

            chunk.rendered_result = render_output(
                result.stdout,
                result.stderr,
                chunk.attrs.output,
                chunk.attrs.plot_capture,
            )
            if result.exit_code == 0:
                chunk.status = ChunkStatus.SUCCESS
                chunk.error = result.stderr
            else:
                chunk.status = ChunkStatus.ERROR
                chunk.error = result.stderr or f"Process exited with code {result.exit_code}"

        except ExecutionDisabledError as e:
            logger.info(f"Not running {chunk_id}: {e}")
            self._mark_failed(chunk, str(e))
        except Exception as e:
            logger.error(f"Chunk {chunk_id} failed: {e}", exc_info=True)
            self._mark_failed(chunk, str(e) or e.__class__.__name__)

        return chunk.to_result()

    @staticmethod
    def _mark_failed(chunk: Chunk, message: str) -> None:
        chunk.status = ChunkStatus.ERROR
        chunk.error = message
        chunk.rendered_result = error_block(message)

    async def run_all_chunks(self, working_dir: Optional[str] = None) -> List[ChunkResult]:
        """Run every chunk in document order, one at a time"""
        results = []
        for chunk_id in list(self._order):
            result = await self.run_chunk(chunk_id, working_dir)
            if result:
                results.append(result)
        return results

    async def run_on_save_chunks(self, working_dir: Optional[str] = None) -> List[ChunkResult]:
        """Run the chunks marked run_on_save, in document order"""
        results = []
        for chunk_id in list(self._order):
            if not self._chunks[chunk_id].attrs.run_on_save:
                continue
            result = await self.run_chunk(chunk_id, working_dir)
            if result:
                results.append(result)
        return results

    def render_output(self, stdout: str, stderr: str, output_format, is_image_capture: bool = False) -> str:
        return render_output(stdout, stderr, output_format, is_image_capture)

    def apply_source_updates(self, content: str) -> str:
        """
        Write results of modify_source chunks back into the document

        Chunks are processed bottom-up so earlier line numbers stay valid.
        """
        targets = [
            self._chunks[chunk_id] for chunk_id in self._order
            if self._chunks[chunk_id].attrs.modify_source and self._chunks[chunk_id].rendered_result
        ]
        for chunk in sorted(targets, key=lambda c: c.source_line, reverse=True):
            content = insert_chunk_output(content, chunk.source_line, chunk.rendered_result)
        return content

    def dispose(self) -> None:
        """Kill all sessions owned by this manager"""
        self.sessions.dispose()

    async def aclose(self) -> None:
        await self.sessions.aclose()


class ChunkManagerRegistry:
    """
    Chunk managers keyed by document identity

    Owned by the host integration; releasing a key disposes its manager
    and the sessions it owns.
    """

    def __init__(self, config: Optional[ExecutionConfig] = None):
        self.config = config or ExecutionConfig()
        self._managers: Dict[str, ChunkManager] = {}

    def get(self, key: str) -> ChunkManager:
        manager = self._managers.get(key)
        if manager is None:
            logger.debug(f"Creating chunk manager for {key}")
            manager = ChunkManager(self.config)
            self._managers[key] = manager
        return manager

    def __contains__(self, key: str) -> bool:
        return key in self._managers

    def __len__(self) -> int:
        return len(self._managers)

    def release(self, key: str) -> None:
        manager = self._managers.pop(key, None)
        if manager is not None:
            manager.dispose()

    def release_all(self) -> None:
        for manager in self._managers.values():
            manager.dispose()
        self._managers.clear()
