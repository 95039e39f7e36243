"""
Fenced code block discovery using markdown-it-py.
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple
import logging
import re

from markdown_it import MarkdownIt
from markdown_it.token import Token

logger = logging.getLogger(__name__)

# "<language> [{<attributes>}]"
INFO_STRING_PATTERN = re.compile(r'^(\S+?)(?:\s+\{(.+)\})?\s*$')
# Line breaks as markdown-it counts them; other Unicode separators stay inside a line
LINE_BREAK_PATTERN = re.compile(r'(\r\n?|\n)')
# Leading blockquote markers of a line inside a quoted fence
QUOTE_PREFIX_PATTERN = re.compile(r'^\s*(?:>\s?)*')


@dataclass
class FencedBlock:
    """A closed fenced code block as it appears in the source"""
    info: str
    language: str
    attr_text: str
    code: str
    start_line: int  # zero-based line of the opening fence
    end_line: int  # zero-based line of the closing fence


def split_info_string(info: str) -> Optional[Tuple[str, str]]:
    """
    Split a fence info string into language and attribute text

    Returns:
        (language, attribute_text) or None if the info string has no language
    """
    match = INFO_STRING_PATTERN.match(info.strip())
    if not match:
        return None
    return match.group(1), match.group(2) or ''


def split_source_lines(content: str) -> List[Tuple[str, str]]:
    """Split content into (line, line_ending) pairs the way markdown-it numbers lines"""
    parts = LINE_BREAK_PATTERN.split(content)
    texts = parts[0::2]
    endings = parts[1::2] + ['']
    return list(zip(texts, endings))


class FenceParser:
    """Find fenced code blocks with markdown-it-py (block-level fence tokens)"""

    def __init__(self):
        self.md = MarkdownIt("commonmark", {"html": False})

    def parse(self, content: str) -> List[FencedBlock]:
        """
        Parse markdown content into its fenced code blocks, in document order
        """
        if not content:
            return []

        tokens = self.md.parse(content)
        lines = split_source_lines(content)
        blocks = []

        for token in tokens:
            if token.type != 'fence' or not token.map:
                continue
            block = self._process_fence(token, lines)
            if block:
                blocks.append(block)

        logger.debug(f"Found {len(blocks)} fenced blocks")
        return blocks

    def _process_fence(self, token: Token, lines: List[Tuple[str, str]]) -> Optional[FencedBlock]:
        start_line, end_line = token.map
        closing_line = end_line - 1

        # markdown-it closes unterminated fences at end of input; those are not blocks
        if (
            closing_line <= start_line
            or closing_line >= len(lines)
            or not self._is_closing_fence(lines[closing_line][0], token.markup)
        ):
            logger.debug(f"Skipping unterminated fence at line {start_line}")
            return None

        split = split_info_string(token.info or '')
        if split is None:
            return None
        language, attr_text = split

        return FencedBlock(
            info=token.info,
            language=language,
            attr_text=attr_text,
            code=self._verbatim_body(token, lines[start_line + 1:closing_line]),
            start_line=start_line,
            end_line=closing_line,
        )

    @staticmethod
    def _verbatim_body(token: Token, body_lines: List[Tuple[str, str]]) -> str:
        """
        Body text exactly as written in the source

        markdown-it normalizes line endings and NUL characters in
        token.content. The raw slice is used whenever it is the same text up
        to that normalization; fences nested in blockquotes or indented list
        items keep the de-indented token.content.
        """
        raw = ''.join(text + ending for text, ending in body_lines)
        normalized = LINE_BREAK_PATTERN.sub('\n', raw).replace('\0', '\ufffd')
        return raw if normalized == token.content else token.content

    @staticmethod
    def _is_closing_fence(line: str, markup: str) -> bool:
        if not markup:
            return False
        stripped = QUOTE_PREFIX_PATTERN.sub('', line).strip()
        fence_char = markup[0]
        return (
            len(stripped) >= len(markup)
            and stripped == fence_char * len(stripped)
        )
