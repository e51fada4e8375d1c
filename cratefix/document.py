"""Format-preserving manifest document model.

A ``Document`` owns the manifest text. Reads go through the scanned table
structure; every edit splices replacement text into the smallest region that
changes and re-scans, so rendering an untouched document reproduces its input
byte for byte.
"""

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator

from .errors import InvalidManifest, StaleHandle
from .toml_syntax import (
    KeyValue,
    Table,
    Value,
    insert_nested,
    line_column,
    parse_tables,
    render_key,
    render_path,
    render_value,
)

logger = logging.getLogger(__name__)

_BLANK_LINES = re.compile(r"(?:[ \t]*\r?\n)+")


class HandleKind(Enum):
    TABLE = "table"  # a [header] table
    VALUE = "value"  # a key/value pair, possibly nested in an inline table
    DOTTED = "dotted"  # a group of dotted keys sharing a prefix


@dataclass(frozen=True, eq=False)
class Handle:
    """A located node, valid for one revision of its document."""

    kind: HandleKind
    path: tuple[str, ...]
    revision: int
    table: Table
    entries: tuple[KeyValue, ...] = ()
    container: Value | None = None
    depth: int = 0

    @property
    def node(self) -> Value:
        if self.kind is not HandleKind.VALUE:
            raise TypeError(f"{self.kind.value} handle has no single value")
        return self.entries[0].value

    @property
    def offset(self) -> int:
        if self.kind is HandleKind.TABLE:
            return self.table.start
        return self.entries[0].key_start

    @property
    def prefix(self) -> tuple[str, ...]:
        """Key parts shared by the entries of a dotted group."""
        return self.entries[0].key[: self.depth]


class Document:
    """An editable, lossless view of one manifest."""

    def __init__(self, text: str):
        self._text = text
        self._tables = parse_tables(text)
        self._newline = "\r\n" if "\r\n" in text else "\n"
        self._revision = 0
        self._cache: dict | None = None

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def tables(self) -> tuple[Table, ...]:
        return tuple(self._tables)

    def render(self) -> str:
        return self._text

    def position(self, offset: int) -> tuple[int, int]:
        return line_column(self._text, offset)

    # Reading

    def as_dict(self) -> dict:
        """Return the whole document as plain Python data."""
        if self._cache is None:
            data: dict = {}
            for table in self._tables:
                target = self._navigate(data, table.name, table.is_array)
                for entry in table.entries:
                    insert_nested(target, entry.key, entry.value.to_python())
            self._cache = data
        return self._cache

    @staticmethod
    def _navigate(data: dict, name: tuple[str, ...], is_array: bool) -> dict:
        current = data
        parts = name[:-1] if is_array else name
        for part in parts:
            existing = current.get(part)
            if isinstance(existing, list) and existing and isinstance(existing[-1], dict):
                current = existing[-1]
                continue
            if not isinstance(existing, dict):
                existing = {}
                current[part] = existing
            current = existing
        if is_array:
            array = current.get(name[-1])
            if not isinstance(array, list):
                array = []
                current[name[-1]] = array
            array.append({})
            return array[-1]
        return current

    def get(self, path: tuple[str, ...], default: Any = None) -> Any:
        current: Any = self.as_dict()
        for part in path:
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        return current

    def value(self, handle: Handle) -> Any:
        self._check(handle)
        if handle.kind is HandleKind.VALUE:
            return handle.node.to_python()
        if handle.kind is HandleKind.DOTTED:
            result: dict = {}
            for entry in handle.entries:
                insert_nested(result, entry.key[handle.depth :], entry.value.to_python())
            return result
        return self.get(handle.path, {})

    def keys(self, path: tuple[str, ...]) -> list[str]:
        """Ordered, de-duplicated names of the direct children of ``path``."""
        names: dict[str, None] = {}
        size = len(path)
        for table in self._tables:
            if table.is_array:
                continue
            if len(table.name) > size and table.name[:size] == path:
                names.setdefault(table.name[size])
            elif table.name == path:
                for entry in table.entries:
                    names.setdefault(entry.key[0])
            elif len(table.name) < size and path[: len(table.name)] == table.name:
                self._entry_keys(table.entries, path[len(table.name) :], names)
        return list(names)

    def _entry_keys(self, entries: list[KeyValue], rest: tuple[str, ...], names: dict) -> None:
        for entry in entries:
            key = entry.key
            if len(key) > len(rest) and key[: len(rest)] == rest:
                names.setdefault(key[len(rest)])
            elif rest[: len(key)] == key and entry.value.kind == "inline-table":
                self._entry_keys(entry.value.items, rest[len(key) :], names)

    def declarations(self, path: tuple[str, ...]) -> list[Handle]:
        """Every place in the document that declares ``path``, in text order."""
        found = []
        for table in self._tables:
            if table.is_array:
                continue
            if table.name == path:
                found.append(Handle(HandleKind.TABLE, path, self._revision, table))
            elif len(table.name) < len(path) and path[: len(table.name)] == table.name:
                rest = path[len(table.name) :]
                found.extend(self._search(table, table.entries, path, rest, None))
        return found

    def _search(
        self,
        table: Table,
        entries: list[KeyValue],
        path: tuple[str, ...],
        rest: tuple[str, ...],
        container: Value | None,
    ) -> list[Handle]:
        found = []
        dotted = []
        for entry in entries:
            key = entry.key
            if key == rest:
                found.append(
                    Handle(HandleKind.VALUE, path, self._revision, table, (entry,), container, len(key))
                )
            elif len(key) > len(rest) and key[: len(rest)] == rest:
                dotted.append(entry)
            elif rest[: len(key)] == key and entry.value.kind == "inline-table":
                found.extend(
                    self._search(table, entry.value.items, path, rest[len(key) :], entry.value)
                )
        if dotted:
            found.append(
                Handle(HandleKind.DOTTED, path, self._revision, table, tuple(dotted), container, len(rest))
            )
        return found

    def locate(self, path: tuple[str, ...]) -> Handle | None:
        found = self.declarations(path)
        return found[0] if found else None

    # Editing

    @contextmanager
    def transaction(self) -> Iterator["Document"]:
        """Restore the original text if the block raises."""
        saved = self._text
        try:
            yield self
        except BaseException:
            if self._text != saved:
                logger.debug("rolling back partial document edit")
                self._load(saved)
            raise

    def set_scalar(self, handle: Handle, value: Any) -> Handle:
        self._check(handle)
        node = handle.node
        style = node.style if node.kind == "string" and isinstance(value, str) else ""
        self._splice([(node.start, node.end, render_value(value, style))])
        return self._relocate(handle.path, HandleKind.VALUE)

    def insert_value(self, parent: Handle, key: str, value: Any) -> Handle:
        """Append ``key = value`` at the end of ``parent``."""
        self._check(parent)
        rendered = render_value(value)
        if parent.kind is HandleKind.TABLE:
            self._insert_line(parent.table, (key,), rendered)
        elif parent.kind is HandleKind.VALUE:
            node = parent.node
            if node.kind != "inline-table":
                raise InvalidManifest(f"`{render_path(parent.path)}` is not a table")
            self._insert_inline(node, f"{render_key(key)} = {rendered}")
        else:
            full_key = parent.prefix + (key,)
            if parent.container is not None:
                self._insert_inline(parent.container, f"{render_path(full_key)} = {rendered}")
            else:
                self._insert_line(parent.table, full_key, rendered, after=parent.entries[-1])
        return self._relocate(parent.path + (key,), HandleKind.VALUE)

    def _insert_line(
        self,
        table: Table,
        key: tuple[str, ...],
        rendered: str,
        after: KeyValue | None = None,
    ) -> None:
        anchor = after or (table.entries[-1] if table.entries else None)
        if anchor is not None:
            position = anchor.end
            indent = self._text[anchor.start : anchor.key_start]
        else:
            position = table.header_end
            indent = ""
        newline = self._newline
        line = f"{indent}{render_path(key)} = {rendered}{newline}"
        if position > 0 and self._text[position - 1] != "\n":
            line = newline + line
        self._splice([(position, position, line)])

    def _insert_inline(self, node: Value, pair: str) -> None:
        if node.items:
            position = node.items[-1].end
            self._splice([(position, position, f", {pair}")])
        else:
            self._splice([(node.start, node.end, "{ " + pair + " }")])

    def insert_table(self, parent: tuple[str, ...], key: str) -> Handle:
        """Add an empty ``[parent.key]`` table after its closest relatives."""
        name = parent + (key,)
        anchor = None
        if parent:
            for table in self._tables:
                if not table.is_root and table.name[: len(parent)] == parent:
                    anchor = table
        position = anchor.content_end if anchor is not None else len(self._text)
        newline = self._newline
        before = self._text[:position]
        prefix = ""
        if before and not before.endswith("\n"):
            prefix = newline
        if before.strip() and not (before + prefix).endswith(newline * 2):
            prefix += newline
        self._splice([(position, position, f"{prefix}[{render_path(name)}]{newline}")])
        return self._relocate(name, HandleKind.TABLE)

    def extend_array(self, handle: Handle, values: list[Any]) -> Handle:
        """Append ``values`` to an array, following its one- or multi-line layout."""
        self._check(handle)
        node = handle.node
        if node.kind != "array":
            raise InvalidManifest(f"`{render_path(handle.path)}` is not an array")
        if not values:
            return handle
        if not node.items:
            self._splice([(node.start, node.end, render_value(list(values)))])
            return self._relocate(handle.path, HandleKind.VALUE)

        last = node.items[-1]
        body = self._text[last.end : node.end - 1]
        trailing_comma = "," in body.split("#", 1)[0]
        if "\n" in self._text[node.start : node.end]:
            line_start = self._text.rfind("\n", 0, last.start) + 1
            indent = self._text[line_start : last.start]
            if trailing_comma:
                position = last.end + body.index(",") + 1
                text = "".join(f"{self._newline}{indent}{render_value(v)}," for v in values)
            else:
                position = last.end
                text = "".join(f",{self._newline}{indent}{render_value(v)}" for v in values)
        else:
            position = last.end
            text = "".join(f", {render_value(v)}" for v in values)
        self._splice([(position, position, text)])
        return self._relocate(handle.path, HandleKind.VALUE)

    def remove_array_item(self, handle: Handle, index: int) -> Handle:
        self._check(handle)
        node = handle.node
        if node.kind != "array":
            raise InvalidManifest(f"`{render_path(handle.path)}` is not an array")
        self._splice([self._item_removal(node, node.items, index)])
        return self._relocate(handle.path, HandleKind.VALUE)

    def _item_removal(self, node: Value, items: list, index: int) -> tuple[int, int, str]:
        if len(items) == 1:
            empty = "[]" if node.kind == "array" else "{}"
            return node.start, node.end, empty
        item = items[index]
        if index < len(items) - 1:
            return item.start, items[index + 1].start, ""
        return items[index - 1].end, item.end, ""

    def remove(self, handle: Handle) -> None:
        """Delete a table, a key or a dotted group, with its attached comments."""
        self._check(handle)
        if handle.kind is HandleKind.TABLE:
            self._splice([self._table_removal(handle.table)])
            return
        if handle.container is None:
            self._splice([(entry.comment_start, entry.end, "") for entry in handle.entries])
            return
        if handle.kind is HandleKind.VALUE:
            container = handle.container
            index = container.items.index(handle.entries[0])
            self._splice([self._item_removal(container, container.items, index)])
            return
        # Dotted keys inside an inline table share separators; drop them one at a time.
        for _ in range(len(handle.entries)):
            current = self._relocate(handle.path, HandleKind.DOTTED)
            container = current.container
            index = container.items.index(current.entries[-1])
            self._splice([self._item_removal(container, container.items, index)])

    def _table_removal(self, table: Table) -> tuple[int, int, str]:
        start = table.comment_start
        end = table.content_end
        before = self._text[:start]
        if start == 0 or before.endswith("\n\n") or before.endswith("\r\n\r\n"):
            match = _BLANK_LINES.match(self._text, end)
            if match:
                end = match.end()
            if end >= len(self._text):
                if before.endswith("\r\n\r\n"):
                    start -= 2
                elif before.endswith("\n\n"):
                    start -= 1
        return start, end, ""

    # Internals

    def _check(self, handle: Handle) -> None:
        if handle.revision != self._revision:
            raise StaleHandle(
                f"handle for `{render_path(handle.path)}` is from revision "
                f"{handle.revision}, document is at {self._revision}"
            )

    def _relocate(self, path: tuple[str, ...], kind: HandleKind) -> Handle:
        for handle in self.declarations(path):
            if handle.kind is kind:
                return handle
        raise InvalidManifest(f"`{render_path(path)}` vanished after an edit")

    def _splice(self, edits: list[tuple[int, int, str]]) -> None:
        text = self._text
        for start, end, replacement in sorted(edits, key=lambda edit: edit[0], reverse=True):
            text = text[:start] + replacement + text[end:]
        self._load(text)

    def _load(self, text: str) -> None:
        self._tables = parse_tables(text)
        self._text = text
        self._revision += 1
        self._cache = None


def parse(text: str) -> Document:
    """Parse manifest text into a ``Document``."""
    return Document(text)
