"""Workspace discovery, the dependency graph between members, and propagation
of a member's version change to the manifests that depend on it."""

import logging
import os
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path

from .document import Document
from .errors import NotFoundError
from .locator import iter_dependencies, read_entry
from .manifest import MANIFEST_NAME, LocalManifest, ManifestSet, find_manifest
from .models import (
    PROPAGATION_POLICY,
    ChangeRecord,
    DepTable,
    GitSource,
    UpgradeMode,
    UpgradePolicy,
    WorkspaceSource,
)
from .mutator import package_name, set_version
from .policy import is_pinned, upgrade_requirement
from .semver import Version, VersionReq

logger = logging.getLogger(__name__)


class WorkspaceGraph:
    """Read-only snapshot of which workspace manifests depend on which members.

    Nodes are manifests ordered by their path relative to the workspace root;
    edges are stored as a reverse adjacency table from a package name to the
    indexes of the manifests that declare a dependency on it.
    """

    def __init__(self, paths: list[str], packages: list[str | None], reverse: dict[str, list[int]]):
        self.paths = paths
        self.packages = packages
        self._reverse = reverse

    @classmethod
    def build(cls, documents: dict[str, Document]) -> "WorkspaceGraph":
        paths = sorted(documents)
        packages = [package_name(documents[path]) for path in paths]
        members = {name for name in packages if name is not None}
        reverse: dict[str, list[int]] = {}
        for index, path in enumerate(paths):
            document = documents[path]
            for dep in iter_dependencies(document):
                name = read_entry(document, dep).name
                if name in members and name != packages[index]:
                    dependents = reverse.setdefault(name, [])
                    if index not in dependents:
                        dependents.append(index)
        return cls(paths, packages, reverse)

    def dependents(self, name: str, transitive: bool = False) -> list[str]:
        """Manifest paths that depend on ``name``, in path order."""
        found: set[int] = set()
        visited = {name}
        queue = deque([name])
        while queue:
            current = queue.popleft()
            for index in self._reverse.get(current, []):
                found.add(index)
                package = self.packages[index]
                if transitive and package is not None and package not in visited:
                    visited.add(package)
                    queue.append(package)
        return [self.paths[index] for index in sorted(found)]


class WorkspacePropagator:
    """Rewrites dependents' requirements after a member's version changes."""

    def __init__(self, graph: WorkspaceGraph, documents: dict[str, Document]):
        self.graph = graph
        self.documents = documents

    def propagate(
        self,
        name: str,
        old: Version,
        new: Version,
        policy: UpgradePolicy = PROPAGATION_POLICY,
    ) -> list[ChangeRecord]:
        changes = []
        for path in self.graph.dependents(name):
            document = self.documents[path]
            for table, requirement in self._updates(document, name, new, policy):
                changes.extend(
                    set_version(document, name, None, table=table, requirement=requirement, manifest=path)
                )
        logger.debug("propagated %s %s -> %s: %d change(s)", name, old, new, len(changes))
        return changes

    def _updates(
        self,
        document: Document,
        name: str,
        version: Version,
        policy: UpgradePolicy,
    ) -> list[tuple[DepTable, VersionReq]]:
        updates = []
        for dep in iter_dependencies(document):
            entry = read_entry(document, dep)
            if entry.name != name or entry.requirement is None:
                continue
            if isinstance(entry.source, (GitSource, WorkspaceSource)):
                continue
            if is_pinned(entry.requirement) and policy.pinned is UpgradeMode.IGNORE:
                continue
            compatible = entry.requirement.matches(version)
            mode = policy.compatible if compatible else policy.incompatible
            if mode is UpgradeMode.IGNORE:
                continue
            requirement = upgrade_requirement(entry.requirement, version)
            if requirement is not None:
                updates.append((dep.table, requirement))
        return updates


@dataclass
class Workspace:
    """A workspace root and its member manifests."""

    root_dir: Path
    root: LocalManifest
    members: list[LocalManifest] = field(default_factory=list)

    @property
    def manifests(self) -> list[LocalManifest]:
        """The root followed by every member, each listed once, in path order."""
        found = {manifest.label: manifest for manifest in [self.root, *self.members]}
        return [found[label] for label in sorted(found)]

    def documents(self) -> dict[str, Document]:
        return {manifest.label: manifest.document for manifest in self.manifests}

    def graph(self) -> WorkspaceGraph:
        return WorkspaceGraph.build(self.documents())

    def manifest_set(self) -> ManifestSet:
        return ManifestSet(list(self.manifests))

    def packages(self) -> list[LocalManifest]:
        return [manifest for manifest in self.manifests if package_name(manifest.document)]

    def find_package(self, name: str) -> LocalManifest:
        for manifest in self.packages():
            if package_name(manifest.document) == name:
                return manifest
        raise NotFoundError(f"package `{name}` is not a member of the workspace at `{self.root_dir}`")

    def manifest_for(self, path: Path) -> LocalManifest | None:
        path = path.resolve()
        for manifest in self.manifests:
            if manifest.path.resolve() == path:
                return manifest
        return None


def _label(path: Path, root_dir: Path) -> str:
    return Path(os.path.relpath(path, root_dir)).as_posix()


def _find_root(manifest_path: Path) -> Path:
    for directory in manifest_path.parent.resolve().parents:
        candidate = directory / MANIFEST_NAME
        if candidate.is_file() and LocalManifest.load(candidate).document.get(("workspace",)) is not None:
            return candidate
    return manifest_path


def load_workspace(manifest_path: Path | str | None = None) -> Workspace:
    """Load the workspace that ``manifest_path`` belongs to.

    A manifest outside any workspace is returned as a workspace of one.
    """
    manifest_path = find_manifest(manifest_path).resolve()
    start = LocalManifest.load(manifest_path)
    root_path = manifest_path if start.document.get(("workspace",)) is not None else _find_root(manifest_path)
    root_dir = root_path.parent
    root = LocalManifest.load(root_path, label=_label(root_path, root_dir))

    config = root.document.get(("workspace",), {})
    excluded = set()
    for pattern in config.get("exclude", []):
        excluded.update(path.resolve() for path in root_dir.glob(pattern))

    members = []
    for pattern in config.get("members", []):
        for directory in sorted(root_dir.glob(pattern)):
            manifest = directory / MANIFEST_NAME
            if directory.resolve() in excluded or not manifest.is_file():
                continue
            if manifest.resolve() == root_path:
                continue
            members.append(LocalManifest.load(manifest, label=_label(manifest, root_dir)))
    members.sort(key=lambda manifest: manifest.label)
    logger.debug("workspace at %s has %d member(s)", root_dir, len(members))
    return Workspace(root_dir=root_dir, root=root, members=members)
