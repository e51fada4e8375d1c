"""Find dependency declarations in a manifest, whatever form they take.

A dependency can be written as ``foo = "1"``, ``foo = { version = "1" }``,
``foo.version = "1"`` or as a ``[dependencies.foo]`` table. All of them are
the same logical entry; declaring one name twice in one scope is an error.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterator

from .document import Document, Handle, HandleKind
from .errors import AmbiguousDeclaration, CratefixError, InvalidManifest
from .models import (
    DeclarationForm,
    DependencyEntry,
    DependencySpec,
    DepKind,
    DepTable,
    GitSource,
    PathSource,
    RegistrySource,
    Source,
    WorkspaceSource,
)
from .semver import VersionReq

logger = logging.getLogger(__name__)

__all__ = [
    "DepKind",
    "DepTable",
    "DependencyHandle",
    "choose_form",
    "dependency_tables",
    "ensure_table",
    "find",
    "iter_dependencies",
    "read_entry",
    "render_entry",
    "source_fields",
    "table_handle",
]

_SOURCE_KEYS = ("git", "path", "workspace")


@dataclass(frozen=True)
class DependencyHandle:
    """A located dependency declaration."""

    key: str
    table: DepTable
    form: DeclarationForm
    handle: Handle

    @property
    def path(self) -> tuple[str, ...]:
        return self.handle.path


def _form(handle: Handle) -> DeclarationForm:
    if handle.kind is HandleKind.TABLE:
        return DeclarationForm.TABLE
    if handle.kind is HandleKind.DOTTED:
        return DeclarationForm.DOTTED
    kind = handle.node.kind
    if kind == "string":
        return DeclarationForm.SCALAR
    if kind == "inline-table":
        return DeclarationForm.INLINE
    raise InvalidManifest(f"dependency `{handle.path[-1]}` must be a string or a table")


def _ambiguous(document: Document, name: str, table: DepTable, handle: Handle) -> AmbiguousDeclaration:
    line, column = document.position(handle.offset)
    return AmbiguousDeclaration(
        f"`{name}` is declared more than once in {table}",
        line=line,
        column=column,
    )


def _scope(document: Document, table: DepTable) -> Iterator[tuple[str, Handle]]:
    """Every (key, declaration) under any spelling of ``table``."""
    for base in table.paths():
        for key in document.keys(base):
            for handle in document.declarations(base + (key,)):
                yield key, handle


def find(document: Document, table: DepTable, name: str) -> DependencyHandle | None:
    """Locate ``name`` in ``table``, by key first and then by ``package``."""
    by_key = []
    by_package = []
    for key, handle in _scope(document, table):
        if key == name:
            by_key.append((key, handle))
        elif handle.kind is not HandleKind.VALUE or handle.node.kind == "inline-table":
            if _package_of(document, handle) == name:
                by_package.append((key, handle))

    matches = by_key or by_package
    if not matches:
        return None
    if len(matches) > 1:
        raise _ambiguous(document, name, table, matches[1][1])
    key, handle = matches[0]
    return DependencyHandle(key, table, _form(handle), handle)


def _package_of(document: Document, handle: Handle) -> str | None:
    value = document.value(handle)
    if isinstance(value, dict):
        package = value.get("package")
        return package if isinstance(package, str) else None
    return None


def dependency_tables(document: Document) -> list[DepTable]:
    """Dependency tables present in the manifest, normal first, then by target."""
    tables = []
    targets = [None] + document.keys(("target",))
    for target in targets:
        for kind in (DepKind.NORMAL, DepKind.DEVELOPMENT, DepKind.BUILD):
            table = DepTable(kind, target)
            if any(document.declarations(path) or document.keys(path) for path in table.paths()):
                tables.append(table)
    if document.declarations(("workspace", "dependencies")):
        tables.append(DepTable(DepKind.WORKSPACE))
    return tables


def iter_dependencies(document: Document) -> Iterator[DependencyHandle]:
    """Every dependency declaration in the manifest, in text order."""
    found = []
    for table in dependency_tables(document):
        seen = set()
        for key, handle in _scope(document, table):
            if key in seen:
                raise _ambiguous(document, key, table, handle)
            seen.add(key)
            found.append(DependencyHandle(key, table, _form(handle), handle))
    found.sort(key=lambda dep: dep.handle.offset)
    return iter(found)


def read_entry(document: Document, dep: DependencyHandle) -> DependencyEntry:
    """Convert a declaration into a ``DependencyEntry``."""
    try:
        return _read(document.value(dep.handle), dep)
    except CratefixError as exc:
        if exc.line is None:
            exc.line, exc.column = document.position(dep.handle.offset)
        raise


def _read(value: Any, dep: DependencyHandle) -> DependencyEntry:
    if isinstance(value, str):
        return DependencyEntry(
            name=dep.key,
            requirement=VersionReq.parse(value),
            target=dep.table.target,
        )
    if not isinstance(value, dict):
        raise InvalidManifest(f"dependency `{dep.key}` must be a string or a table")

    present = [key for key in _SOURCE_KEYS if key in value]
    if len(present) > 1:
        raise InvalidManifest(f"dependency `{dep.key}` sets both `{present[0]}` and `{present[1]}`")
    if "registry" in value and present and present[0] != "path":
        raise InvalidManifest(f"dependency `{dep.key}` sets both `registry` and `{present[0]}`")

    if "git" in value:
        source = GitSource(value["git"], value.get("branch"), value.get("tag"), value.get("rev"))
    elif "path" in value:
        source = PathSource(value["path"])
    elif value.get("workspace") is True:
        source = WorkspaceSource()
    else:
        source = RegistrySource(value.get("registry"))

    package = value.get("package")
    version = value.get("version")
    default_features = value.get("default-features", value.get("default_features", True))
    features = []
    for feature in value.get("features", []):
        if feature not in features:
            features.append(feature)
    return DependencyEntry(
        name=package or dep.key,
        rename=dep.key if package and package != dep.key else None,
        requirement=VersionReq.parse(version) if version is not None else None,
        source=source,
        optional=bool(value.get("optional", False)),
        features=tuple(features),
        default_features=bool(default_features),
        target=dep.table.target,
    )


def choose_form(entry: DependencyEntry | DependencySpec) -> DeclarationForm:
    """The most compact form that can express ``entry``."""
    simple = (
        entry.requirement is not None
        and (entry.source is None or entry.source == RegistrySource())
        and entry.rename is None
        and not entry.optional
        and not entry.features
        and entry.default_features in (None, True)
    )
    return DeclarationForm.SCALAR if simple else DeclarationForm.INLINE


def render_entry(entry: DependencyEntry | DependencySpec) -> str | dict:
    """The value to write for a new declaration of ``entry``."""
    if choose_form(entry) is DeclarationForm.SCALAR:
        return str(entry.requirement)
    value: dict = {}
    if entry.requirement is not None and not isinstance(entry.source, WorkspaceSource):
        value["version"] = str(entry.requirement)
    value.update(source_fields(entry.source))
    if entry.rename is not None:
        value["package"] = entry.name
    if entry.default_features is False:
        value["default-features"] = False
    if entry.features:
        value["features"] = list(entry.features)
    if entry.optional:
        value["optional"] = True
    return value


def table_handle(document: Document, table: DepTable) -> Handle | None:
    for path in table.paths():
        handle = document.locate(path)
        if handle is not None:
            return handle
    return None


def ensure_table(document: Document, table: DepTable) -> Handle:
    """Return the table's handle, adding an empty ``[table]`` when it is missing."""
    handle = table_handle(document, table)
    if handle is not None:
        return handle
    path = table.path
    logger.debug("creating table [%s]", ".".join(path))
    return document.insert_table(path[:-1], path[-1])


def source_fields(source: Source | None) -> dict:
    """The keys that spell ``source`` in a dependency table."""
    if isinstance(source, WorkspaceSource):
        return {"workspace": True}
    if isinstance(source, PathSource):
        return {"path": source.path}
    if isinstance(source, GitSource):
        fields = {"git": source.url}
        for ref in ("branch", "tag", "rev"):
            if getattr(source, ref) is not None:
                fields[ref] = getattr(source, ref)
        return fields
    if isinstance(source, RegistrySource) and source.registry:
        return {"registry": source.registry}
    return {}
