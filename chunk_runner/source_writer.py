"""
Write rendered chunk output back into the markdown source.

Output is kept between marker comments directly after the chunk's closing
fence so that re-running a chunk replaces the previous output in place.
"""
import html
import re
from typing import List

OUTPUT_START = '<!-- code_chunk_output -->'
OUTPUT_END = '<!-- /code_chunk_output -->'

_TAG = re.compile(r'<[^>]+>')
_FENCE_OPEN = re.compile(r'^\s{0,3}(`{3,}|~{3,})')


def to_plain_text(rendered: str) -> str:
    """Strip tags and unescape entities of a rendered result"""
    return html.unescape(_TAG.sub('', rendered)).rstrip('\n')


def _find_closing_fence(lines: List[str], start_line: int) -> int:
    opening = _FENCE_OPEN.match(lines[start_line]) if start_line < len(lines) else None
    if not opening:
        return -1
    fence = opening.group(1)
    for index in range(start_line + 1, len(lines)):
        stripped = lines[index].strip()
        if len(stripped) >= len(fence) and stripped == fence[0] * len(stripped):
            return index
    return -1


def insert_chunk_output(document: str, source_line: int, rendered: str) -> str:
    """
    Insert or replace the output block of the chunk starting at source_line

    Args:
        document: Full markdown text
        source_line: Zero-based line of the chunk's opening fence
        rendered: Rendered result of the chunk

    Returns:
        Updated markdown text; unchanged if no closed fence starts there
    """
    lines = document.split('\n')
    end_line = _find_closing_fence(lines, source_line)
    if end_line == -1:
        return document

    replace_start = end_line + 1
    replace_end = replace_start

    probe = replace_start
    if probe < len(lines) and lines[probe].strip() == '':
        probe += 1
    if probe < len(lines) and lines[probe].strip() == OUTPUT_START:
        for index in range(probe, len(lines)):
            if lines[index].strip() == OUTPUT_END:
                replace_end = index + 1
                break

    block = ['', OUTPUT_START, to_plain_text(rendered), OUTPUT_END]
    updated = lines[:replace_start] + block + lines[replace_end:]
    return '\n'.join(updated)
