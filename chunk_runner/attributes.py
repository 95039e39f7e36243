"""
Attribute parsing for executable code fences.

Turns the text inside ``{...}`` after a fence's language tag into a
populated ChunkAttributes value. Parsing never raises: malformed input
leaves the affected fields at their defaults.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import logging
import math

logger = logging.getLogger(__name__)


class OutputFormat(Enum):
    """How captured stdout is presented"""
    TEXT = "text"
    HTML = "html"
    MARKDOWN = "markdown"
    IMAGE = "image"
    NONE = "none"


# "png" is the historical spelling of the image format
_OUTPUT_ALIASES = {
    "text": OutputFormat.TEXT,
    "html": OutputFormat.HTML,
    "markdown": OutputFormat.MARKDOWN,
    "image": OutputFormat.IMAGE,
    "png": OutputFormat.IMAGE,
    "none": OutputFormat.NONE,
}


class CommandKind(Enum):
    DISABLED = "disabled"
    LANGUAGE = "language"
    EXPLICIT = "explicit"


@dataclass(frozen=True)
class CommandSpec:
    """Command selection: disabled, use the language name, or an explicit command"""
    kind: CommandKind = CommandKind.DISABLED
    value: str = ""

    @classmethod
    def disabled(cls) -> 'CommandSpec':
        return cls(CommandKind.DISABLED)

    @classmethod
    def use_language(cls) -> 'CommandSpec':
        return cls(CommandKind.LANGUAGE)

    @classmethod
    def explicit(cls, command: str) -> 'CommandSpec':
        return cls(CommandKind.EXPLICIT, command)

    @property
    def enabled(self) -> bool:
        return self.kind != CommandKind.DISABLED


class ContinueKind(Enum):
    NONE = "none"
    PREVIOUS = "previous"
    TARGET = "target"


@dataclass(frozen=True)
class ContinueSpec:
    """Continuation: none, previous same-language chunks, or an explicit chunk id"""
    kind: ContinueKind = ContinueKind.NONE
    target: str = ""

    @classmethod
    def none(cls) -> 'ContinueSpec':
        return cls(ContinueKind.NONE)

    @classmethod
    def previous(cls) -> 'ContinueSpec':
        return cls(ContinueKind.PREVIOUS)

    @classmethod
    def to_target(cls, target: str) -> 'ContinueSpec':
        return cls(ContinueKind.TARGET, target)

    @property
    def enabled(self) -> bool:
        return self.kind != ContinueKind.NONE


DEFAULT_ZOOM = 1.0


@dataclass
class ChunkAttributes:
    """Per-chunk configuration parsed from the fence info string"""
    cmd: CommandSpec = field(default_factory=CommandSpec.disabled)
    output: OutputFormat = OutputFormat.TEXT
    args: List[str] = field(default_factory=list)
    stdin: bool = False
    hide: bool = False
    continue_: ContinueSpec = field(default_factory=ContinueSpec.none)
    id: str = ""
    css_class: str = ""
    element: str = ""
    run_on_save: bool = False
    modify_source: bool = False
    plot_capture: bool = False

    # Document compilation options
    zoom: float = DEFAULT_ZOOM
    width: str = ""
    height: str = ""
    engine: str = ""  # empty: use the configured engine

    def add_css_class(self, name: str) -> None:
        if not name:
            return
        self.css_class = f"{self.css_class} {name}" if self.css_class else name


def parse_attributes(attr_text: Optional[str]) -> ChunkAttributes:
    """
    Parse an attribute string into ChunkAttributes

    Accepts ``.class`` shorthands, bare flags (``key``), and ``key=value``
    pairs where value is an unquoted word, a quoted string, or a
    bracketed array literal. Surrounding braces are optional.

    Args:
        attr_text: Raw attribute text, e.g. ``{cmd=true output=html .note}``

    Returns:
        ChunkAttributes with defaults for everything not set
    """
    attrs = ChunkAttributes()
    if not attr_text:
        return attrs

    text = attr_text.strip()
    if text.startswith('{') and text.endswith('}'):
        text = text[1:-1].strip()

    pos = 0
    length = len(text)

    while pos < length:
        while pos < length and text[pos].isspace():
            pos += 1
        if pos >= length:
            break

        if text[pos] == '.':
            pos += 1
            start = pos
            while pos < length and (text[pos].isalnum() or text[pos] in '_-'):
                pos += 1
            attrs.add_css_class(text[start:pos])
            continue

        start = pos
        while pos < length and (text[pos].isalnum() or text[pos] == '_'):
            pos += 1
        key = text[start:pos]

        if not key:
            # Not a token start; skip the stray character
            pos += 1
            continue

        while pos < length and text[pos] == ' ':
            pos += 1

        if pos < length and text[pos] == '=':
            pos += 1
            while pos < length and text[pos] == ' ':
                pos += 1
            value, pos = _read_value(text, pos)
            _set_attribute(attrs, key, value)
        else:
            _set_attribute(attrs, key, 'true')

    return attrs


def _read_value(text: str, pos: int):
    """Read one value starting at pos, returning (value, new_pos)"""
    length = len(text)
    if pos >= length:
        return '', pos

    if text[pos] == '[':
        start = pos
        depth = 0
        while pos < length:
            if text[pos] == '[':
                depth += 1
            elif text[pos] == ']':
                depth -= 1
                if depth == 0:
                    pos += 1
                    break
            pos += 1
        return text[start:pos], pos

    if text[pos] in ('"', "'"):
        quote = text[pos]
        pos += 1
        start = pos
        while pos < length and text[pos] != quote:
            pos += 1
        value = text[start:pos]
        if pos < length:
            pos += 1
        return value, pos

    start = pos
    while pos < length and not text[pos].isspace():
        pos += 1
    return text[start:pos], pos


def _parse_bool(value: str) -> bool:
    return value == 'true'


def _parse_float(value: str, default: float) -> float:
    try:
        number = float(value)
    except ValueError:
        return default
    if not math.isfinite(number) or number == 0:
        return default
    return number


def _set_attribute(attrs: ChunkAttributes, key: str, value: str) -> None:
    """Write one recognized key into attrs with type coercion"""
    if key == 'cmd':
        if value == 'true':
            attrs.cmd = CommandSpec.use_language()
        elif value == 'false':
            attrs.cmd = CommandSpec.disabled()
        else:
            attrs.cmd = CommandSpec.explicit(value)
    elif key == 'output':
        output = _OUTPUT_ALIASES.get(value)
        if output is not None:
            attrs.output = output
    elif key == 'args':
        attrs.args = parse_args_value(value)
    elif key == 'stdin':
        attrs.stdin = _parse_bool(value)
    elif key == 'hide':
        attrs.hide = _parse_bool(value)
    elif key == 'continue':
        if value == 'true':
            attrs.continue_ = ContinueSpec.previous()
        elif value == 'false':
            attrs.continue_ = ContinueSpec.none()
        else:
            attrs.continue_ = ContinueSpec.to_target(value)
    elif key == 'id':
        attrs.id = value
    elif key == 'class':
        attrs.add_css_class(value)
    elif key == 'element':
        attrs.element = value
    elif key == 'run_on_save':
        attrs.run_on_save = _parse_bool(value)
    elif key == 'modify_source':
        attrs.modify_source = _parse_bool(value)
    elif key == 'matplotlib':
        attrs.plot_capture = _parse_bool(value)
    elif key == 'latex_zoom':
        attrs.zoom = _parse_float(value, DEFAULT_ZOOM)
    elif key == 'latex_width':
        attrs.width = value
    elif key == 'latex_height':
        attrs.height = value
    elif key == 'latex_engine':
        attrs.engine = value
    else:
        logger.debug(f"Ignoring unknown chunk attribute: {key}")


def parse_args_value(value: str) -> List[str]:
    """
    Parse the value of an ``args`` attribute

    A ``[...]`` literal is decoded into its string elements; anything that
    is not a well-formed literal becomes a single-element list holding the
    raw text.
    """
    parsed = parse_array_literal(value)
    if parsed is None:
        return [value]
    return parsed


_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '\\': '\\', '"': '"', "'": "'", '/': '/'}


def parse_array_literal(text: str) -> Optional[List[str]]:
    """
    Decode a small array literal such as ``["-v", '--flag', 3]``

    Elements are double- or single-quoted strings (with backslash escapes)
    or bare words (numbers, true/false), all returned as strings.

    Returns:
        List of element strings, or None if text is not a valid literal
    """
    text = text.strip()
    if len(text) < 2 or text[0] != '[' or text[-1] != ']':
        return None

    items: List[str] = []
    pos = 1
    end = len(text) - 1
    expect_item = True

    while True:
        while pos < end and text[pos].isspace():
            pos += 1
        if pos >= end:
            # Trailing comma ("[a,]") is malformed; empty list is fine
            if expect_item and items:
                return None
            return items
        if not expect_item:
            if text[pos] != ',':
                return None
            pos += 1
            expect_item = True
            continue

        char = text[pos]
        if char in ('"', "'"):
            quote = char
            pos += 1
            buffer = []
            closed = False
            while pos < end:
                char = text[pos]
                if char == '\\' and pos + 1 < end:
                    buffer.append(_ESCAPES.get(text[pos + 1], text[pos + 1]))
                    pos += 2
                    continue
                if char == quote:
                    closed = True
                    pos += 1
                    break
                buffer.append(char)
                pos += 1
            if not closed:
                return None
            items.append(''.join(buffer))
        else:
            start = pos
            while pos < end and text[pos] != ',' and not text[pos].isspace():
                if text[pos] in '[]{}"\'':
                    return None
                pos += 1
            items.append(text[start:pos])
        expect_item = False
