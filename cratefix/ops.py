"""Request-level operations: add, remove, upgrade and set-version.

Each operation loads the manifests it needs, applies its edits through the
mutator, and writes the results unless the request is a dry run. Failures
that only concern one target are collected in the result; the others
propagate.
"""

import asyncio
import logging
import os
from pathlib import Path

from . import mutator
from .crate_spec import CrateSpec
from .errors import (
    CratefixError,
    InvalidManifest,
    InvalidRequest,
    NetworkError,
    NotFoundError,
    OfflineError,
)
from .locator import find, iter_dependencies, read_entry
from .manifest import MANIFEST_NAME, LocalManifest, ManifestSet, find_manifest
from .models import (
    AddRequest,
    DependencyEntry,
    DependencySpec,
    DepKind,
    DepTable,
    OperationResult,
    PathSource,
    RegistrySource,
    RemoveRequest,
    SetVersionRequest,
    UpgradeMode,
    UpgradePolicy,
    UpgradeRequest,
    WorkspaceSource,
)
from .policy import (
    AvailableVersion,
    TargetVersion,
    is_pinned,
    select_compatible,
    select_latest,
    upgrade_requirement,
)
from .registry import CratesRegistry
from .reporter import ChangeReporter
from .semver import BumpLevel, Version, VersionReq
from .workspace import Workspace, WorkspacePropagator, load_workspace

logger = logging.getLogger(__name__)


def _lookup(
    registry: CratesRegistry | None,
    names: list[str],
) -> dict[str, list[AvailableVersion] | BaseException]:
    """Fetch published versions for ``names``; per-crate failures are returned, not raised."""
    if not names:
        return {}
    if registry is None:
        raise OfflineError(f"a registry lookup is needed for {', '.join(names)} but no registry is configured")
    results = asyncio.run(registry.get_many(names, return_exceptions=True))
    for result in results.values():
        # An unreachable registry fails the whole request.
        if isinstance(result, (NetworkError, OfflineError)):
            raise result
        if isinstance(result, BaseException) and not isinstance(result, CratefixError):
            raise result
    return results


def _open(manifest_path: Path | str | None) -> tuple[Workspace, LocalManifest]:
    path = find_manifest(manifest_path)
    workspace = load_workspace(path)
    manifest = workspace.manifest_for(path)
    if manifest is None:
        manifest = LocalManifest.load(path)
    return workspace, manifest


def _finish(result: OperationResult, manifests: ManifestSet, dry_run: bool, strict: bool = False) -> OperationResult:
    result.dry_run = dry_run
    if dry_run:
        logger.info("dry run: not writing %d manifest(s)", len(manifests.dirty()))
    else:
        result.written = manifests.commit(strict=strict)
    return result


# add


def _relative(target: Path, manifest: LocalManifest) -> str:
    return Path(os.path.relpath(target.resolve(), manifest.path.parent.resolve())).as_posix()


def _existing_dependency(document, name: str, table: DepTable) -> DependencyEntry | None:
    """The same dependency declared in another table of this manifest, if any."""
    for dep in iter_dependencies(document):
        if dep.table == table:
            continue
        entry = read_entry(document, dep)
        if entry.name == name and entry.rename is None:
            return entry
    return None


def _workspace_inherits(workspace: Workspace, manifest: LocalManifest, name: str) -> bool:
    if manifest is workspace.root:
        return False
    inherited = workspace.root.document.get(("workspace", "dependencies"), {})
    return name in inherited


def _plan_add(
    crate: CrateSpec,
    request: AddRequest,
    workspace: Workspace,
    manifest: LocalManifest,
) -> DependencySpec | str:
    """Return the spec to add, or the crate name when the registry must supply a version."""
    table = request.table
    omit_version = table.kind is DepKind.DEVELOPMENT
    common = dict(
        rename=request.rename,
        features=tuple(request.features) if request.features is not None else None,
        default_features=request.default_features,
        optional=request.optional,
    )

    if crate.path is not None:
        local = LocalManifest.load(crate.path / MANIFEST_NAME)
        name = mutator.package_name(local.document)
        if name is None:
            raise InvalidManifest("the manifest has no `package.name`", path=local.path)
        version = mutator.package_version(local.document)
        requirement = crate.requirement
        if requirement is None and version is not None and not omit_version:
            requirement = VersionReq.caret(version)
        return DependencySpec(
            name=name,
            requirement=requirement,
            source=PathSource(_relative(crate.path, manifest)),
            **common,
        )

    name = crate.name
    if name == mutator.package_name(manifest.document):
        raise InvalidRequest(f"cannot add `{name}` as a dependency to itself")

    source = request.source()
    if crate.requirement is None and find(manifest.document, table, request.rename or name) is not None:
        # Merge into the declaration already in this table and keep its requirement.
        logger.debug("merging into the existing %s declaration", name)
        return DependencySpec(name=name, source=source, **common)

    if source is not None:
        if isinstance(source, RegistrySource) and crate.requirement is None:
            return name
        return DependencySpec(name=name, requirement=crate.requirement, source=source, **common)

    existing = _existing_dependency(manifest.document, name, table)
    if existing is not None:
        logger.debug("reusing %s from another table", name)
        return DependencySpec(
            name=name,
            requirement=crate.requirement or existing.requirement,
            source=existing.source,
            **common,
        )

    if _workspace_inherits(workspace, manifest, name):
        return DependencySpec(name=name, source=WorkspaceSource(), **common)

    for member in workspace.packages():
        if member is not manifest and mutator.package_name(member.document) == name:
            version = mutator.package_version(member.document)
            requirement = crate.requirement
            if requirement is None and version is not None and not omit_version:
                requirement = VersionReq.caret(version)
            return DependencySpec(
                name=name,
                requirement=requirement,
                source=PathSource(_relative(member.path.parent, manifest)),
                **common,
            )

    if crate.requirement is not None:
        return DependencySpec(name=name, requirement=crate.requirement, **common)
    return name


def _check_features(name: str, features: list[str] | None, available: AvailableVersion) -> None:
    unknown = [feature for feature in features or () if feature not in available.features]
    if unknown and available.features:
        logger.warning("`%s` %s has no feature(s): %s", name, available.version, ", ".join(unknown))


def add_dependencies(
    request: AddRequest,
    manifest_path: Path | str | None = None,
    registry: CratesRegistry | None = None,
) -> OperationResult:
    """Add the crates named by ``request`` to one manifest."""
    crates = [CrateSpec.parse(name) for name in request.names]
    if not crates:
        raise InvalidRequest("no crates to add")
    if len(crates) > 1 and request.rename is not None:
        raise InvalidRequest("cannot rename more than one crate at a time")
    if len(crates) > 1 and request.features:
        raise InvalidRequest("cannot set features for more than one crate at a time")

    workspace, manifest = _open(manifest_path)
    result = OperationResult()
    reporter = ChangeReporter()
    planned: list[DependencySpec | str] = []
    for crate in crates:
        try:
            planned.append(_plan_add(crate, request, workspace, manifest))
        except CratefixError as exc:
            result.errors.append(exc.with_path(manifest.label))

    lookups = _lookup(registry, [item for item in planned if isinstance(item, str)])
    source = request.source()
    for item in planned:
        if isinstance(item, str):
            available = lookups[item]
            try:
                if isinstance(available, BaseException):
                    raise available
                latest = select_latest(available, name=item)
            except CratefixError as exc:
                result.errors.append(exc.with_path(manifest.label))
                continue
            _check_features(item, request.features, latest)
            item = DependencySpec(
                name=item,
                requirement=VersionReq.caret(latest.version),
                source=source,
                rename=request.rename,
                features=tuple(request.features) if request.features is not None else None,
                default_features=request.default_features,
                optional=request.optional,
            )
        try:
            reporter.extend(mutator.add(manifest.document, item, request.table, manifest.label))
        except CratefixError as exc:
            result.errors.append(exc.with_path(manifest.label))

    result.changes = list(reporter.all())
    return _finish(result, ManifestSet([manifest]), request.dry_run)


# remove


def remove_dependencies(request: RemoveRequest, manifest_path: Path | str | None = None) -> OperationResult:
    """Remove the named dependencies from one manifest."""
    _, manifest = _open(manifest_path)
    result = OperationResult()
    reporter = ChangeReporter()
    for name in request.names:
        try:
            reporter.extend(mutator.remove(manifest.document, name, request.table, manifest.label))
        except CratefixError as exc:
            result.errors.append(exc.with_path(manifest.label))
    result.changes = list(reporter.all())
    return _finish(result, ManifestSet([manifest]), request.dry_run)


# upgrade


def _choose_upgrade(
    name: str,
    current: VersionReq,
    available: list[AvailableVersion],
    policy: UpgradePolicy,
) -> Version | None:
    latest = select_latest(available, allow_prerelease=current.has_prerelease, name=name)
    if current.matches(latest.version):
        return latest.version if policy.compatible is UpgradeMode.ALLOW else None
    if policy.incompatible is UpgradeMode.ALLOW:
        return latest.version
    if policy.compatible is UpgradeMode.ALLOW:
        try:
            return select_compatible(available, current, name=name).version
        except NotFoundError:
            return None
    return None


def upgrade(
    request: UpgradeRequest,
    manifest_path: Path | str | None = None,
    registry: CratesRegistry | None = None,
) -> OperationResult:
    """Raise dependency requirements to newer published versions."""
    selected: dict[str, VersionReq | None] = {}
    for selector in request.selectors:
        crate = CrateSpec.parse(selector)
        if crate.name is None:
            raise InvalidRequest(f"`{selector}` is not a crate name")
        selected[crate.name] = crate.requirement
    excluded = set(request.excludes)
    policy = request.policy

    workspace, manifest = _open(manifest_path)
    manifests = workspace.manifests if request.workspace else [manifest]
    result = OperationResult()
    reporter = ChangeReporter()

    plan = []
    found = set()
    for local in manifests:
        document = local.document
        try:
            deps = list(iter_dependencies(document))
            for dep in deps:
                entry = read_entry(document, dep)
                if selected and entry.name not in selected:
                    continue
                found.add(entry.name)
                if entry.name in excluded:
                    logger.debug("%s: excluded", entry.name)
                    continue
                if entry.requirement is None or not isinstance(entry.source, RegistrySource):
                    logger.debug("%s: not a registry dependency", entry.name)
                    continue
                if policy.pinned is UpgradeMode.IGNORE and (entry.rename or is_pinned(entry.requirement)):
                    logger.info("%s: pinned at %s", entry.name, entry.requirement)
                    continue
                plan.append((local, dep.table, entry))
        except CratefixError as exc:
            result.errors.append(exc.with_path(local.label))

    for name in selected:
        if name not in found:
            result.errors.append(
                NotFoundError(f"the dependency `{name}` could not be found", path=manifest.label)
            )

    needed = [entry.name for _, _, entry in plan if selected.get(entry.name) is None]
    lookups = _lookup(registry, needed)

    for local, table, entry in plan:
        try:
            requirement = selected.get(entry.name)
            if requirement is None:
                available = lookups[entry.name]
                if isinstance(available, BaseException):
                    raise available
                version = _choose_upgrade(entry.name, entry.requirement, available, policy)
                if version is None:
                    continue
                requirement = upgrade_requirement(entry.requirement, version)
                if requirement is None:
                    continue
            changes = mutator.set_version(
                local.document,
                entry.name,
                None,
                table=table,
                requirement=requirement,
                manifest=local.label,
            )
            reporter.extend(changes)
        except CratefixError as exc:
            result.errors.append(exc.with_path(local.label))

    result.changes = list(reporter.all())
    return _finish(result, ManifestSet(list(manifests)), request.dry_run)


# set-version


def _target(request: SetVersionRequest) -> TargetVersion:
    if request.version is not None:
        return TargetVersion.absolute(Version.parse(request.version), request.metadata)
    if request.bump is not None:
        return TargetVersion.relative(request.bump, request.metadata)
    return TargetVersion.relative(BumpLevel.RELEASE, request.metadata)


def set_version(request: SetVersionRequest, manifest_path: Path | str | None = None) -> OperationResult:
    """Change package versions and update the workspace members that depend on them."""
    target = _target(request)
    workspace, manifest = _open(manifest_path)
    if request.workspace:
        packages = workspace.packages()
    elif request.package is not None:
        packages = [workspace.find_package(request.package)]
    else:
        if mutator.package_name(manifest.document) is None:
            raise InvalidManifest("the manifest has no `[package]`; pass --workspace or --package", path=manifest.label)
        packages = [manifest]

    reporter = ChangeReporter()
    documents = workspace.documents()
    propagator = WorkspacePropagator(workspace.graph(), documents)
    result = OperationResult()
    for local in sorted(packages, key=lambda item: item.label):
        name = mutator.package_name(local.document)
        if name in request.excludes:
            continue
        try:
            current = mutator.package_version(local.document)
            if current is None:
                raise InvalidManifest(f"`{name}` has no version of its own", path=local.label)
            version = target.apply(current)
            if version is None:
                logger.info("%s is already at %s", name, current)
                continue
            # Only members of the workspace can have dependents in it.
            use_propagator = propagator if local.label in documents else None
            reporter.extend(mutator.set_package_version(local.document, version, use_propagator, local.label))
        except CratefixError as exc:
            result.errors.append(exc.with_path(local.label))

    result.changes = list(reporter.all())
    manifests = workspace.manifest_set()
    manifests.add(manifest)
    return _finish(result, manifests, request.dry_run, strict=request.strict)
