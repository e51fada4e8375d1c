"""Requirement policy engine.

Derives the requirement to write for a concrete version, and picks the
version to write from what a registry has published.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum

from .errors import NoVersionsAvailable, UnsupportedRequirement, VersionDowngrade
from .semver import BumpLevel, Comparator, Op, Version, VersionReq

logger = logging.getLogger(__name__)


class RequirementPolicy(Enum):
    EXACT = "exact"  # =1.2.3
    COMPATIBLE = "compatible"  # 1.2.3, caret without the operator
    PATCH_LEVEL = "patch-level"  # ~1.2.3
    UNRESTRICTED = "unrestricted"  # *
    PRESERVE = "preserve-precision"


@dataclass(frozen=True)
class AvailableVersion:
    """One published version as reported by a registry."""

    version: Version
    yanked: bool = False
    features: dict = field(default_factory=dict, compare=False)


def compute_requirement(
    current: VersionReq | None,
    version: Version,
    policy: RequirementPolicy,
) -> VersionReq:
    """Return the requirement ``policy`` writes for ``version``.

    ``current`` is the requirement already in the manifest, if any. Caret and
    tilde policies keep its component count when it already has that shape.
    """
    version = version.without_build()
    single = current.comparators[0] if current and len(current.comparators) == 1 else None

    if policy is RequirementPolicy.EXACT:
        return VersionReq.exact(version)
    if policy is RequirementPolicy.COMPATIBLE:
        if single is not None and single.op is Op.CARET:
            return VersionReq((_assign(single, version),))
        return VersionReq.caret(version)
    if policy is RequirementPolicy.PATCH_LEVEL:
        if single is not None and single.op is Op.TILDE:
            return VersionReq((_assign(single, version),))
        return VersionReq.tilde(version)
    if policy is RequirementPolicy.UNRESTRICTED:
        return VersionReq()

    if current is None or current.is_star:
        return VersionReq.caret(version)
    return upgrade_requirement(current, version) or current


def upgrade_requirement(current: VersionReq, version: Version) -> VersionReq | None:
    """Rewrite ``current`` for ``version`` keeping its precision class.

    Returns ``None`` when the rewritten requirement would read the same.
    """
    version = version.without_build()
    if current.is_star:
        return None
    if len(current.comparators) > 1:
        if current.matches(version):
            return None
        raise UnsupportedRequirement(
            f"cannot rewrite the range `{current}` to admit {version}"
        )

    comparator = current.comparators[0]
    if comparator.op is Op.GREATER:
        return None
    if comparator.op is Op.LESS:
        new = _bump_bound(comparator, version)
    elif comparator.op is Op.WILDCARD:
        new = replace(
            comparator,
            major=version.major,
            minor=version.minor if comparator.minor is not None else None,
        )
    else:
        new = _assign(comparator, version)

    upgraded = VersionReq((new,))
    if str(upgraded) == str(current):
        return None
    logger.debug("requirement %s -> %s for %s", current, upgraded, version)
    return upgraded


def _assign(comparator: Comparator, version: Version) -> Comparator:
    """Put ``version`` into ``comparator`` at the same number of components."""
    if version.pre or comparator.components == 3:
        return replace(
            comparator,
            major=version.major,
            minor=version.minor,
            patch=version.patch,
            pre=version.pre,
        )
    return replace(
        comparator,
        major=version.major,
        minor=version.minor if comparator.components == 2 else None,
        patch=None,
        pre=(),
    )


def _bump_bound(comparator: Comparator, version: Version) -> Comparator:
    # An exclusive upper bound moves to just past ``version``.
    if comparator.components == 1:
        return replace(comparator, major=version.major + 1, pre=())
    if comparator.components == 2:
        return replace(comparator, major=version.major, minor=version.minor + 1, pre=())
    return replace(
        comparator,
        major=version.major,
        minor=version.minor,
        patch=version.patch + 1,
        pre=(),
    )


def is_pinned(req: VersionReq) -> bool:
    """Whether ``req`` deliberately holds a dependency back."""
    return any(
        comparator.op in (Op.EXACT, Op.LESS, Op.LESS_EQ, Op.WILDCARD)
        for comparator in req.comparators
    )


def select_latest(
    available: list[AvailableVersion],
    allow_prerelease: bool = False,
    name: str = "",
) -> AvailableVersion:
    """Return the newest version that is neither yanked nor an unwanted pre-release."""
    candidates = [
        item
        for item in available
        if not item.yanked and (allow_prerelease or not item.version.is_prerelease)
    ]
    if not candidates:
        raise NoVersionsAvailable(_no_versions(name, allow_prerelease))
    return max(candidates, key=lambda item: item.version)


def select_compatible(
    available: list[AvailableVersion],
    req: VersionReq,
    name: str = "",
) -> AvailableVersion:
    """Return the newest unyanked version that ``req`` admits."""
    candidates = [item for item in available if not item.yanked and req.matches(item.version)]
    if not candidates:
        raise NoVersionsAvailable(f"no published version of `{name}` matches `{req}`")
    return max(candidates, key=lambda item: item.version)


def _no_versions(name: str, allow_prerelease: bool) -> str:
    label = f"`{name}`" if name else "the package"
    if allow_prerelease:
        return f"no unyanked version of {label} is available"
    return f"no stable, unyanked version of {label} is available"


@dataclass(frozen=True)
class TargetVersion:
    """Where a package version should move: a bump level or a fixed version."""

    bump: BumpLevel | None = None
    version: Version | None = None
    metadata: str | None = None

    @classmethod
    def relative(cls, bump: BumpLevel, metadata: str | None = None) -> "TargetVersion":
        return cls(bump=bump, metadata=metadata)

    @classmethod
    def absolute(cls, version: Version, metadata: str | None = None) -> "TargetVersion":
        return cls(version=version, metadata=metadata)

    def apply(self, current: Version) -> Version | None:
        """Return the next version, or ``None`` when nothing changes."""
        if self.bump is not None:
            target = self.bump.apply(current, self.metadata)
        elif self.version is not None:
            if self.version < current:
                raise VersionDowngrade(f"cannot downgrade from {current} to {self.version}")
            target = self.version
            if self.metadata is not None:
                target = target.with_metadata(self.metadata)
        else:
            return None
        if str(target) == str(current):
            return None
        return target
