"""Apply one logical dependency operation to one manifest document.

Every operation runs inside ``Document.transaction()``: if any step fails the
document is left exactly as it was.
"""

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from .document import Document, Handle, HandleKind
from .errors import InvalidManifest, NotFoundError
from .locator import (
    ensure_table,
    find,
    iter_dependencies,
    read_entry,
    render_entry,
    source_fields,
    table_handle,
)
from .models import (
    ChangeRecord,
    DeclarationForm,
    DependencyEntry,
    DependencySpec,
    DepKind,
    DepTable,
    RegistrySource,
    WorkspaceSource,
    describe_source,
)
from .policy import RequirementPolicy, compute_requirement
from .semver import Version, VersionReq

if TYPE_CHECKING:
    from .workspace import WorkspacePropagator

logger = logging.getLogger(__name__)

_SOURCE_FIELDS = ("registry", "path", "git", "branch", "tag", "rev", "workspace")


def merge_entry(existing: DependencyEntry, spec: DependencySpec) -> DependencyEntry:
    """Fold the attributes requested by ``spec`` into ``existing``."""
    features = list(existing.features)
    for feature in spec.features or ():
        if feature not in features:
            features.append(feature)
    source = spec.source if spec.source is not None else existing.source
    requirement = spec.requirement if spec.requirement is not None else existing.requirement
    if isinstance(source, WorkspaceSource):
        requirement = None
    return replace(
        existing,
        requirement=requirement,
        source=source,
        features=tuple(features),
        default_features=existing.default_features if spec.default_features is None else spec.default_features,
        optional=existing.optional if spec.optional is None else spec.optional,
    )


def new_entry(spec: DependencySpec, table: DepTable) -> DependencyEntry:
    features = []
    for feature in spec.features or ():
        if feature not in features:
            features.append(feature)
    source = spec.source if spec.source is not None else RegistrySource()
    return DependencyEntry(
        name=spec.name,
        rename=spec.rename,
        requirement=None if isinstance(source, WorkspaceSource) else spec.requirement,
        source=source,
        optional=bool(spec.optional),
        features=tuple(features),
        default_features=spec.default_features is not False,
        target=table.target,
    )


def _describe(entry: DependencyEntry) -> str:
    if entry.requirement is not None and isinstance(entry.source, RegistrySource):
        return str(entry.requirement)
    if entry.requirement is not None:
        return f"{entry.requirement} ({describe_source(entry.source)})"
    return describe_source(entry.source)


def add(
    document: Document,
    spec: DependencySpec,
    table: DepTable,
    manifest: str = "",
) -> list[ChangeRecord]:
    """Add ``spec`` to ``table``, merging into an existing declaration."""
    with document.transaction():
        dep = find(document, table, spec.key)
        if dep is None:
            entry = new_entry(spec, table)
            parent = ensure_table(document, table)
            document.insert_value(parent, spec.key, render_entry(entry))
            logger.info("added %s to %s", spec.key, table)
            return [ChangeRecord(manifest, entry.name, "dependency", None, _describe(entry))]

        existing = read_entry(document, dep)
        merged = merge_entry(existing, spec)
        changes = _diff(manifest, existing, merged)
        if not changes:
            logger.debug("%s is already up to date in %s", spec.key, table)
            return []
        if dep.form is DeclarationForm.SCALAR:
            document.set_scalar(dep.handle, render_entry(merged))
        else:
            _sync_fields(document, dep.path, existing, merged)
        return changes


def _diff(manifest: str, old: DependencyEntry, new: DependencyEntry) -> list[ChangeRecord]:
    changes = []

    def record(field: str, before: Any, after: Any) -> None:
        if before != after:
            changes.append(ChangeRecord(manifest, new.name, field, before, after))

    record(
        "requirement",
        str(old.requirement) if old.requirement is not None else None,
        str(new.requirement) if new.requirement is not None else None,
    )
    record("source", describe_source(old.source), describe_source(new.source))
    record(
        "features",
        ", ".join(old.features) or None,
        ", ".join(new.features) or None,
    )
    record("default-features", str(old.default_features).lower(), str(new.default_features).lower())
    record("optional", str(old.optional).lower(), str(new.optional).lower())
    return changes


def _sync_fields(document: Document, path: tuple[str, ...], old: DependencyEntry, new: DependencyEntry) -> None:
    if old.source != new.source:
        for name in _SOURCE_FIELDS:
            _drop(document, path, name)
        for name, value in source_fields(new.source).items():
            _put(document, path, name, value)

    if new.requirement is None:
        _drop(document, path, "version")
    elif str(old.requirement) != str(new.requirement):
        _put(document, path, "version", str(new.requirement))

    if old.features != new.features:
        added = [feature for feature in new.features if feature not in old.features]
        handle = _field(document, path, "features")
        if handle is not None and handle.node.kind == "array":
            document.extend_array(handle, added)
        else:
            _put(document, path, "features", list(new.features))

    if old.default_features != new.default_features:
        if new.default_features:
            _drop(document, path, "default-features", "default_features")
        else:
            _put(document, path, "default-features", False, "default_features")

    if old.optional != new.optional:
        if new.optional:
            _put(document, path, "optional", True)
        else:
            _drop(document, path, "optional")


def _field(document: Document, path: tuple[str, ...], *names: str) -> Handle | None:
    for name in names:
        for handle in document.declarations(path + (name,)):
            if handle.kind is HandleKind.VALUE:
                return handle
    return None


def _put(document: Document, path: tuple[str, ...], name: str, value: Any, *aliases: str) -> None:
    handle = _field(document, path, name, *aliases)
    if handle is None:
        document.insert_value(document.locate(path), name, value)
    elif document.value(handle) != value:
        document.set_scalar(handle, value)


def _drop(document: Document, path: tuple[str, ...], *names: str) -> None:
    handle = _field(document, path, *names)
    if handle is not None:
        document.remove(handle)


def remove(
    document: Document,
    name: str,
    table: DepTable,
    manifest: str = "",
) -> list[ChangeRecord]:
    """Remove ``name`` from ``table`` along with the feature activations that need it."""
    with document.transaction():
        dep = find(document, table, name)
        if dep is None:
            raise NotFoundError(f"the dependency `{name}` could not be found in `{table}`")
        entry = read_entry(document, dep)
        document.remove(dep.handle)
        changes = [ChangeRecord(manifest, entry.name, "dependency", _describe(entry), None)]
        changes.extend(_gc_features(document, dep.key, manifest))
        _drop_empty_table(document, table)
        logger.info("removed %s from %s", dep.key, table)
        return changes


def _feature_status(document: Document, key: str) -> str | None:
    status = None
    for dep in iter_dependencies(document):
        if dep.key != key or dep.table.kind is DepKind.DEVELOPMENT:
            continue
        if read_entry(document, dep).optional:
            return "optional"
        status = "required"
    return status


def _stale_activation(item: str, key: str, status: str | None) -> bool:
    if status == "optional":
        return False
    if item in (key, f"dep:{key}"):
        return True
    return status is None and (item.startswith(f"{key}/") or item.startswith(f"{key}?/"))


def _gc_features(document: Document, key: str, manifest: str) -> list[ChangeRecord]:
    status = _feature_status(document, key)
    changes = []
    for feature in document.keys(("features",)):
        path = ("features", feature)
        handle = document.locate(path)
        if handle is None or handle.kind is not HandleKind.VALUE or handle.node.kind != "array":
            continue
        items = document.value(handle)
        for index in reversed(range(len(items))):
            item = items[index]
            if isinstance(item, str) and _stale_activation(item, key, status):
                handle = document.remove_array_item(handle, index)
                changes.append(ChangeRecord(manifest, key, f"features.{feature}", item, None))
    return changes


def _drop_empty_table(document: Document, table: DepTable) -> None:
    handle = table_handle(document, table)
    if handle is None or handle.kind is not HandleKind.TABLE:
        return
    if not handle.table.entries and not document.keys(handle.path):
        document.remove(handle)


def set_version(
    document: Document,
    name: str,
    version: Version | None,
    policy: RequirementPolicy = RequirementPolicy.PRESERVE,
    table: DepTable | None = None,
    requirement: VersionReq | None = None,
    manifest: str = "",
) -> list[ChangeRecord]:
    """Rewrite the requirement of every declaration of package ``name``.

    ``requirement`` is written as given; otherwise it is computed from
    ``version`` under ``policy``. Source, features and rename are left alone,
    and declarations without a version (path, git, workspace) are skipped.
    """
    if requirement is None and version is None:
        raise ValueError("set_version needs a version or a requirement")
    with document.transaction():
        if table is not None:
            dep = find(document, table, name)
            if dep is None:
                raise NotFoundError(f"the dependency `{name}` could not be found in `{table}`")
            targets = [(dep.table, dep.key)]
        else:
            targets = [
                (dep.table, dep.key)
                for dep in iter_dependencies(document)
                if read_entry(document, dep).name == name
            ]

        changes = []
        for dep_table, key in targets:
            dep = find(document, dep_table, key)
            entry = read_entry(document, dep)
            if entry.requirement is None:
                logger.debug("skipping %s in %s: no version requirement", key, dep_table)
                continue
            new = requirement or compute_requirement(entry.requirement, version, policy)
            if str(new) == str(entry.requirement):
                continue
            if dep.form is DeclarationForm.SCALAR:
                document.set_scalar(dep.handle, str(new))
            else:
                _put(document, dep.path, "version", str(new))
            changes.append(ChangeRecord(manifest, entry.name, "requirement", str(entry.requirement), str(new)))
        return changes


def package_name(document: Document) -> str | None:
    name = document.get(("package", "name"))
    return name if isinstance(name, str) else None


def package_version(document: Document) -> Version | None:
    """The package's own version, or ``None`` when it is not set here."""
    value = document.get(("package", "version"))
    if value is None or isinstance(value, dict):
        return None
    if not isinstance(value, str):
        raise InvalidManifest("`package.version` must be a string")
    return Version.parse(value)


def set_package_version(
    document: Document,
    version: Version,
    propagator: "WorkspacePropagator | None" = None,
    manifest: str = "",
) -> list[ChangeRecord]:
    """Rewrite ``[package].version`` and let ``propagator`` update dependents."""
    name = package_name(document)
    with document.transaction():
        handle = document.locate(("package", "version"))
        if handle is None:
            raise InvalidManifest("the manifest has no `package.version`", path=manifest or None)
        if handle.kind is not HandleKind.VALUE or handle.node.kind != "string":
            raise InvalidManifest(
                "`package.version` is inherited from the workspace; set `workspace.package.version` instead",
                path=manifest or None,
            )
        old = Version.parse(document.value(handle))
        if str(old) == str(version):
            return []
        document.set_scalar(handle, str(version))
    logger.info("%s: %s -> %s", name, old, version)
    changes = [ChangeRecord(manifest, name or "", "version", str(old), str(version))]
    if propagator is not None and name is not None:
        changes.extend(propagator.propagate(name, old, version))
    return changes
