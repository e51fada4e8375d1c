"""Core data models for cratefix."""

from dataclasses import asdict, dataclass, field
from enum import Enum

from .errors import CratefixError, InvalidRequest
from .semver import BumpLevel, VersionReq


class DepKind(Enum):
    """The kind of a dependency table."""

    NORMAL = "dependencies"
    DEVELOPMENT = "dev-dependencies"
    BUILD = "build-dependencies"
    WORKSPACE = "workspace.dependencies"

    @property
    def aliases(self) -> tuple[str, ...]:
        """Spellings Cargo accepts for this table, preferred first."""
        if self is DepKind.DEVELOPMENT:
            return ("dev-dependencies", "dev_dependencies")
        if self is DepKind.BUILD:
            return ("build-dependencies", "build_dependencies")
        return (self.value,)


@dataclass(frozen=True)
class DepTable:
    """A dependency table, optionally scoped to a target platform."""

    kind: DepKind = DepKind.NORMAL
    target: str | None = None

    def __post_init__(self):
        if self.kind is DepKind.WORKSPACE and self.target is not None:
            raise InvalidRequest("workspace dependencies cannot be target specific")

    @property
    def path(self) -> tuple[str, ...]:
        return self.paths()[0]

    def paths(self) -> list[tuple[str, ...]]:
        """Key paths this table may be declared under."""
        if self.kind is DepKind.WORKSPACE:
            return [("workspace", "dependencies")]
        if self.target is None:
            return [(alias,) for alias in self.kind.aliases]
        return [("target", self.target, alias) for alias in self.kind.aliases]

    def __str__(self) -> str:
        if self.target is None:
            return self.kind.value
        return f"{self.kind.value} for target `{self.target}`"


@dataclass(frozen=True)
class RegistrySource:
    registry: str | None = None  # None means the default registry


@dataclass(frozen=True)
class GitSource:
    url: str
    branch: str | None = None
    tag: str | None = None
    rev: str | None = None

    def __post_init__(self):
        pinned = [ref for ref in (self.branch, self.tag, self.rev) if ref is not None]
        if len(pinned) > 1:
            raise InvalidRequest(f"git dependency on {self.url} sets more than one of branch, tag, rev")


@dataclass(frozen=True)
class PathSource:
    path: str


@dataclass(frozen=True)
class WorkspaceSource:
    """``workspace = true``: the declaration lives in the workspace root."""


Source = RegistrySource | GitSource | PathSource | WorkspaceSource


def describe_source(source: Source) -> str:
    if isinstance(source, RegistrySource):
        return f"registry `{source.registry}`" if source.registry else "registry"
    if isinstance(source, GitSource):
        ref = source.branch or source.tag or source.rev
        return f"git {source.url}" + (f" ({ref})" if ref else "")
    if isinstance(source, PathSource):
        return f"path {source.path}"
    return "workspace"


class DeclarationForm(Enum):
    """How a dependency is spelled in the manifest."""

    SCALAR = "scalar"  # foo = "1.0"
    INLINE = "inline"  # foo = { version = "1.0" }
    TABLE = "table"  # [dependencies.foo]
    DOTTED = "dotted"  # foo.version = "1.0"


@dataclass(frozen=True)
class DependencyEntry:
    """One declared dependency."""

    name: str
    rename: str | None = None
    requirement: VersionReq | None = None
    source: Source = field(default_factory=RegistrySource)
    optional: bool = False
    features: tuple[str, ...] = ()
    default_features: bool = True
    target: str | None = None

    @property
    def key(self) -> str:
        """The key the entry is declared under."""
        return self.rename or self.name


@dataclass(frozen=True)
class DependencySpec:
    """Attributes requested for a dependency by an add operation.

    ``None`` means "not requested": the existing value (if any) is kept.
    """

    name: str
    requirement: VersionReq | None = None
    source: Source | None = None
    rename: str | None = None
    features: tuple[str, ...] | None = None
    default_features: bool | None = None
    optional: bool | None = None

    @property
    def key(self) -> str:
        return self.rename or self.name


@dataclass(frozen=True)
class ChangeRecord:
    """One mutation applied to one manifest."""

    manifest: str
    package: str
    field: str  # dependency, requirement, features, default-features, optional, source, version
    old: str | None
    new: str | None

    def as_dict(self) -> dict:
        return asdict(self)


class UpgradeMode(Enum):
    ALLOW = "allow"
    IGNORE = "ignore"


@dataclass(frozen=True)
class UpgradePolicy:
    """Which kinds of requirement changes an upgrade may make."""

    compatible: UpgradeMode = UpgradeMode.ALLOW
    incompatible: UpgradeMode = UpgradeMode.IGNORE
    pinned: UpgradeMode = UpgradeMode.IGNORE


# Dependents of a bumped workspace member always follow it.
PROPAGATION_POLICY = UpgradePolicy(
    compatible=UpgradeMode.ALLOW,
    incompatible=UpgradeMode.ALLOW,
    pinned=UpgradeMode.ALLOW,
)


@dataclass
class AddRequest:
    """Request to add (or merge into) one or more dependencies."""

    names: list[str]
    table: DepTable = field(default_factory=DepTable)
    rename: str | None = None
    features: list[str] | None = None
    default_features: bool | None = None
    optional: bool | None = None
    registry: str | None = None
    git: str | None = None
    branch: str | None = None
    tag: str | None = None
    rev: str | None = None
    path: str | None = None
    dry_run: bool = False

    def source(self) -> Source | None:
        if self.git is not None:
            if self.path is not None or self.registry is not None:
                raise InvalidRequest("a git dependency cannot also use a path or registry")
            return GitSource(self.git, self.branch, self.tag, self.rev)
        if any(ref is not None for ref in (self.branch, self.tag, self.rev)):
            raise InvalidRequest("branch, tag and rev require a git source")
        if self.path is not None:
            if self.registry is not None:
                raise InvalidRequest("a path dependency cannot also use a registry")
            return PathSource(self.path)
        if self.registry is not None:
            return RegistrySource(self.registry)
        return None


@dataclass
class RemoveRequest:
    names: list[str]
    table: DepTable = field(default_factory=DepTable)
    dry_run: bool = False


@dataclass
class UpgradeRequest:
    """Request to upgrade dependency requirements to newer versions."""

    selectors: list[str] = field(default_factory=list)  # name or name@requirement
    excludes: list[str] = field(default_factory=list)
    compatible: UpgradeMode = UpgradeMode.ALLOW
    incompatible: UpgradeMode = UpgradeMode.IGNORE
    pinned: UpgradeMode = UpgradeMode.IGNORE
    workspace: bool = False
    dry_run: bool = False

    @property
    def policy(self) -> UpgradePolicy:
        return UpgradePolicy(self.compatible, self.incompatible, self.pinned)


@dataclass
class SetVersionRequest:
    """Request to change package versions, by value or by bump level."""

    version: str | None = None
    bump: BumpLevel | None = None
    metadata: str | None = None
    excludes: list[str] = field(default_factory=list)
    package: str | None = None
    workspace: bool = False
    strict: bool = False
    dry_run: bool = False

    def __post_init__(self):
        if self.version is not None and self.bump is not None:
            raise InvalidRequest("give either an explicit version or a bump level, not both")


@dataclass
class OperationResult:
    """Outcome of one request: changes made and per-target failures."""

    changes: list[ChangeRecord] = field(default_factory=list)
    errors: list[CratefixError] = field(default_factory=list)
    written: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)
