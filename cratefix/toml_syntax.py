"""Lossless TOML scanning and value rendering.

The scanner does not build a plain dictionary. Every table, key/value pair and
value keeps the offsets it was read from, so the document layer can splice
replacement text into exactly the region that changed and leave every other
byte alone.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any

from .errors import ParseError

BARE_KEY = re.compile(r"[A-Za-z0-9_-]+")

_DATETIME = re.compile(
    r"\d{4}-\d{2}-\d{2}"
    r"(?:[Tt ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:[Zz]|[+-]\d{2}:\d{2})?)?"
    r"|\d{2}:\d{2}:\d{2}(?:\.\d+)?"
)
_NUMBER = re.compile(
    r"[+-]?(?:inf|nan"
    r"|0x[0-9A-Fa-f_]+|0o[0-7_]+|0b[01_]+"
    r"|[0-9_]+(?:\.[0-9_]+)?(?:[eE][+-]?[0-9_]+)?)"
)
_DELIMITERS = " \t\r\n,]}#"
_ESCAPES = {"b": "\b", "t": "\t", "n": "\n", "f": "\f", "r": "\r", '"': '"', "\\": "\\"}
_REVERSE_ESCAPES = {"\b": "\\b", "\t": "\\t", "\n": "\\n", "\f": "\\f", "\r": "\\r", '"': '\\"', "\\": "\\\\"}


@dataclass(eq=False)
class Value:
    """A parsed value and the span of text it came from."""

    kind: str  # string, integer, float, boolean, datetime, array, inline-table
    start: int
    end: int
    data: Any = None
    style: str = ""
    items: list = field(default_factory=list)

    def to_python(self) -> Any:
        if self.kind == "array":
            return [item.to_python() for item in self.items]
        if self.kind == "inline-table":
            result: dict = {}
            for entry in self.items:
                insert_nested(result, entry.key, entry.value.to_python())
            return result
        return self.data


@dataclass(eq=False)
class KeyValue:
    """One ``key = value`` pair.

    For pairs directly inside a table ``start`` is the start of the line and
    ``end`` is past its newline. For pairs inside an inline table both offsets
    bound the pair itself. ``comment_start`` is the first comment line attached
    directly above the pair.
    """

    key: tuple[str, ...]
    key_start: int
    key_end: int
    value: Value
    start: int
    end: int
    comment_start: int


@dataclass(eq=False)
class Table:
    """A header table (``[a.b]`` / ``[[a.b]]``) or the implicit root table."""

    name: tuple[str, ...]
    is_array: bool
    start: int
    header_end: int
    comment_start: int
    entries: list[KeyValue] = field(default_factory=list)

    @property
    def is_root(self) -> bool:
        return not self.name

    @property
    def content_end(self) -> int:
        return self.entries[-1].end if self.entries else self.header_end


def line_column(text: str, offset: int) -> tuple[int, int]:
    """Return the 1-based line and column of ``offset``."""
    line = text.count("\n", 0, offset) + 1
    column = offset - (text.rfind("\n", 0, offset) + 1) + 1
    return line, column


def insert_nested(target: dict, key: tuple[str, ...], value: Any) -> None:
    """Set ``target[k0][k1]...[kn] = value``, creating tables on the way."""
    current = target
    for part in key[:-1]:
        existing = current.get(part)
        if isinstance(existing, list) and existing and isinstance(existing[-1], dict):
            current = existing[-1]
            continue
        if not isinstance(existing, dict):
            existing = {}
            current[part] = existing
        current = existing
    current[key[-1]] = value


def parse_tables(text: str) -> list[Table]:
    """Scan ``text`` into its tables, raising ``ParseError`` on bad input."""
    return _Scanner(text).document()


class _Scanner:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.length = len(text)

    def error(self, message: str, pos: int | None = None) -> ParseError:
        line, column = line_column(self.text, self.pos if pos is None else pos)
        return ParseError(message, line=line, column=column)

    def peek(self, offset: int = 0) -> str:
        index = self.pos + offset
        return self.text[index] if index < self.length else ""

    def startswith(self, prefix: str) -> bool:
        return self.text.startswith(prefix, self.pos)

    def skip_ws(self) -> None:
        while self.pos < self.length and self.text[self.pos] in " \t":
            self.pos += 1

    def skip_comment(self) -> None:
        if self.peek() != "#":
            return
        while self.pos < self.length and self.text[self.pos] not in "\r\n":
            self.pos += 1

    def skip_newline(self) -> bool:
        if self.startswith("\r\n"):
            self.pos += 2
            return True
        if self.peek() == "\n":
            self.pos += 1
            return True
        return False

    def skip_blank(self) -> None:
        """Skip whitespace, comments and newlines (inside arrays and inline tables)."""
        while True:
            self.skip_ws()
            self.skip_comment()
            if not self.skip_newline():
                return

    def end_of_line(self) -> None:
        self.skip_ws()
        self.skip_comment()
        if self.pos >= self.length:
            return
        if not self.skip_newline():
            raise self.error("expected end of line")

    def document(self) -> list[Table]:
        root = Table(name=(), is_array=False, start=0, header_end=0, comment_start=0)
        tables = [root]
        current = root
        pending_comment: int | None = None
        # A byte order mark stays in the text but is not part of the first line.
        if self.startswith("\ufeff"):
            self.pos = 1

        while self.pos < self.length:
            line_start = self.pos
            self.skip_ws()
            char = self.peek()
            if char == "":
                break
            if char in "\r\n":
                self.skip_newline()
                pending_comment = None
                continue
            if char == "#":
                self.end_of_line()
                if pending_comment is None:
                    pending_comment = line_start
                continue

            attached = line_start if pending_comment is None else pending_comment
            pending_comment = None
            if char == "[":
                current = self.header(line_start, attached)
                tables.append(current)
                continue

            entry = self.keyval()
            self.end_of_line()
            entry.start = line_start
            entry.end = self.pos
            entry.comment_start = attached
            current.entries.append(entry)

        return tables

    def header(self, line_start: int, attached: int) -> Table:
        is_array = self.startswith("[[")
        self.pos += 2 if is_array else 1
        self.skip_ws()
        name, _, _ = self.key()
        self.skip_ws()
        closing = "]]" if is_array else "]"
        if not self.startswith(closing):
            raise self.error(f"expected '{closing}' to close table header")
        self.pos += len(closing)
        self.end_of_line()
        return Table(
            name=name,
            is_array=is_array,
            start=line_start,
            header_end=self.pos,
            comment_start=attached,
        )

    def key(self) -> tuple[tuple[str, ...], int, int]:
        start = self.pos
        parts = [self.simple_key()]
        while True:
            checkpoint = self.pos
            self.skip_ws()
            if self.peek() != ".":
                self.pos = checkpoint
                break
            self.pos += 1
            self.skip_ws()
            parts.append(self.simple_key())
        return tuple(parts), start, self.pos

    def simple_key(self) -> str:
        char = self.peek()
        if char == '"':
            if self.startswith('"""'):
                raise self.error("multi-line strings cannot be keys")
            return self.basic_string()
        if char == "'":
            if self.startswith("'''"):
                raise self.error("multi-line strings cannot be keys")
            return self.literal_string()
        match = BARE_KEY.match(self.text, self.pos)
        if not match:
            raise self.error("invalid key")
        self.pos = match.end()
        return match.group()

    def keyval(self) -> KeyValue:
        key, key_start, key_end = self.key()
        self.skip_ws()
        if self.peek() != "=":
            raise self.error("expected '=' after key")
        self.pos += 1
        self.skip_ws()
        value = self.value()
        return KeyValue(
            key=key,
            key_start=key_start,
            key_end=key_end,
            value=value,
            start=key_start,
            end=value.end,
            comment_start=key_start,
        )

    def delimited(self, pos: int) -> bool:
        return pos >= self.length or self.text[pos] in _DELIMITERS

    def value(self) -> Value:
        start = self.pos
        char = self.peek()
        if char == '"':
            if self.startswith('"""'):
                return Value("string", start, *self.multiline_string('"""'), style='"""')
            data = self.basic_string()
            return Value("string", start, self.pos, data, style='"')
        if char == "'":
            if self.startswith("'''"):
                return Value("string", start, *self.multiline_string("'''"), style="'''")
            data = self.literal_string()
            return Value("string", start, self.pos, data, style="'")
        if char == "[":
            return self.array()
        if char == "{":
            return self.inline_table()
        for word, flag in (("true", True), ("false", False)):
            if self.startswith(word) and self.delimited(self.pos + len(word)):
                self.pos += len(word)
                return Value("boolean", start, self.pos, flag)

        match = _DATETIME.match(self.text, self.pos)
        if match and self.delimited(match.end()):
            self.pos = match.end()
            return Value("datetime", start, self.pos, match.group())
        match = _NUMBER.match(self.text, self.pos)
        if match and match.end() > start and self.delimited(match.end()):
            self.pos = match.end()
            number = self.number(match.group(), start)
            kind = "float" if isinstance(number, float) else "integer"
            return Value(kind, start, self.pos, number)
        if char == "":
            raise self.error("expected a value, found end of input")
        raise self.error("invalid value")

    def number(self, token: str, start: int) -> int | float:
        cleaned = token.replace("_", "")
        sign = -1 if cleaned.startswith("-") else 1
        unsigned = cleaned.lstrip("+-")
        if unsigned == "inf":
            return sign * math.inf
        if unsigned == "nan":
            return math.nan
        try:
            for prefix, base in (("0x", 16), ("0o", 8), ("0b", 2)):
                if unsigned.startswith(prefix):
                    return sign * int(unsigned[2:], base)
            if any(marker in unsigned for marker in ".eE"):
                return float(cleaned)
            return int(cleaned)
        except ValueError as exc:
            raise self.error(f"invalid number {token!r}", start) from exc

    def basic_string(self) -> str:
        start = self.pos
        self.pos += 1
        chars = []
        while True:
            char = self.peek()
            if char == "" or char in "\r\n":
                raise self.error("unterminated string", start)
            if char == '"':
                self.pos += 1
                return "".join(chars)
            if char == "\\":
                chars.append(self.escape())
                continue
            chars.append(char)
            self.pos += 1

    def literal_string(self) -> str:
        start = self.pos
        end = self.pos + 1
        while end < self.length and self.text[end] not in "'\r\n":
            end += 1
        if end >= self.length or self.text[end] != "'":
            raise self.error("unterminated string", start)
        self.pos = end + 1
        return self.text[start + 1 : end]

    def multiline_string(self, delimiter: str) -> tuple[int, str]:
        start = self.pos
        self.pos += 3
        self.skip_newline()
        chars = []
        literal = delimiter == "'''"
        while True:
            if self.pos >= self.length:
                raise self.error("unterminated multi-line string", start)
            if self.startswith(delimiter):
                run = 3
                while run < 5 and self.peek(run) == delimiter[0]:
                    run += 1
                chars.append(delimiter[0] * (run - 3))
                self.pos += run
                return self.pos, "".join(chars)
            char = self.peek()
            if char == "\\" and not literal:
                after = self.pos + 1
                while after < self.length and self.text[after] in " \t":
                    after += 1
                if after < self.length and self.text[after] in "\r\n":
                    self.pos = after
                    self.skip_blank_lines()
                    continue
                chars.append(self.escape())
                continue
            chars.append(char)
            self.pos += 1

    def skip_blank_lines(self) -> None:
        while self.pos < self.length and self.text[self.pos] in " \t\r\n":
            self.pos += 1

    def escape(self) -> str:
        start = self.pos
        code = self.peek(1)
        if code in _ESCAPES:
            self.pos += 2
            return _ESCAPES[code]
        width = {"u": 4, "U": 8}.get(code)
        if width is None:
            raise self.error("invalid escape sequence", start)
        digits = self.text[self.pos + 2 : self.pos + 2 + width]
        if len(digits) != width or not all(c in "0123456789abcdefABCDEF" for c in digits):
            raise self.error("invalid unicode escape", start)
        self.pos += 2 + width
        try:
            return chr(int(digits, 16))
        except ValueError as exc:
            raise self.error("invalid unicode escape", start) from exc

    def array(self) -> Value:
        start = self.pos
        self.pos += 1
        items = []
        while True:
            self.skip_blank()
            if self.peek() == "]":
                self.pos += 1
                break
            if self.peek() == "":
                raise self.error("unterminated array", start)
            items.append(self.value())
            self.skip_blank()
            if self.peek() == ",":
                self.pos += 1
                continue
            if self.peek() == "]":
                self.pos += 1
                break
            raise self.error("expected ',' or ']' in array")
        return Value("array", start, self.pos, items=items)

    def inline_table(self) -> Value:
        start = self.pos
        self.pos += 1
        entries = []
        self.skip_blank()
        if self.peek() == "}":
            self.pos += 1
            return Value("inline-table", start, self.pos, items=entries)
        while True:
            self.skip_blank()
            if self.peek() == "":
                raise self.error("unterminated inline table", start)
            entries.append(self.keyval())
            self.skip_blank()
            if self.peek() == ",":
                self.pos += 1
                self.skip_blank()
                if self.peek() == "}":
                    self.pos += 1
                    break
                continue
            if self.peek() == "}":
                self.pos += 1
                break
            raise self.error("expected ',' or '}' in inline table")
        return Value("inline-table", start, self.pos, items=entries)


def render_key(key: str) -> str:
    if BARE_KEY.fullmatch(key):
        return key
    return render_string(key)


def render_path(path: tuple[str, ...]) -> str:
    return ".".join(render_key(part) for part in path)


def render_string(text: str, style: str = '"') -> str:
    """Render a single-line string, keeping literal quoting when it is safe."""
    if style == "'" and "'" not in text and not any(ord(c) < 0x20 or c == "\x7f" for c in text):
        return f"'{text}'"
    out = []
    for char in text:
        if char in _REVERSE_ESCAPES:
            out.append(_REVERSE_ESCAPES[char])
        elif ord(char) < 0x20 or char == "\x7f":
            out.append(f"\\u{ord(char):04X}")
        else:
            out.append(char)
    return '"' + "".join(out) + '"'


def render_value(value: Any, style: str = "") -> str:
    """Render a Python value as inline TOML."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "nan"
        if math.isinf(value):
            return "inf" if value > 0 else "-inf"
        return repr(value)
    if isinstance(value, str):
        return render_string(value, style)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(render_value(item) for item in value) + "]"
    if isinstance(value, dict):
        if not value:
            return "{}"
        pairs = ", ".join(f"{render_key(k)} = {render_value(v)}" for k, v in value.items())
        return "{ " + pairs + " }"
    raise TypeError(f"cannot render {type(value).__name__} as TOML")
