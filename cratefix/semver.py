"""Semantic versions and Cargo-flavoured version requirements."""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from functools import total_ordering

from .errors import InvalidRequirement, VersionDowngrade

_VERSION = re.compile(
    r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)
_COMPARATOR = re.compile(
    r"^(?P<op>\^|~|=|>=|<=|>|<)?\s*"
    r"(?P<major>\d+|[*xX])"
    r"(?:\.(?P<minor>\d+|[*xX]))?"
    r"(?:\.(?P<patch>\d+|[*xX]))?"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)


def _identifiers(text: str | None) -> tuple[str, ...]:
    return tuple(text.split(".")) if text else ()


def _pre_key(pre: tuple[str, ...]) -> tuple:
    # A release sorts after every pre-release of the same version.
    if not pre:
        return (1,)
    parts = []
    for ident in pre:
        if ident.isdigit():
            parts.append((0, int(ident), ""))
        else:
            parts.append((1, 0, ident))
    return (0, tuple(parts))


@total_ordering
@dataclass(frozen=True)
class Version:
    """A SemVer 2.0 version."""

    major: int
    minor: int
    patch: int
    pre: tuple[str, ...] = ()
    build: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> "Version":
        match = _VERSION.match(text.strip())
        if not match:
            raise InvalidRequirement(f"invalid version `{text}`")
        return cls(
            major=int(match["major"]),
            minor=int(match["minor"]),
            patch=int(match["patch"]),
            pre=_identifiers(match["pre"]),
            build=_identifiers(match["build"]),
        )

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre:
            text += "-" + ".".join(self.pre)
        if self.build:
            text += "+" + ".".join(self.build)
        return text

    @property
    def is_prerelease(self) -> bool:
        return bool(self.pre)

    def precedence(self) -> tuple:
        return (self.major, self.minor, self.patch, _pre_key(self.pre))

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.precedence() < other.precedence()

    def without_build(self) -> "Version":
        return replace(self, build=())

    def with_metadata(self, metadata: str) -> "Version":
        build = _identifiers(metadata)
        if not all(re.fullmatch(r"[0-9A-Za-z-]+", ident) for ident in build):
            raise InvalidRequirement(f"invalid build metadata `{metadata}`")
        return replace(self, build=build)

    def bump_major(self) -> "Version":
        return Version(self.major + 1, 0, 0)

    def bump_minor(self) -> "Version":
        return Version(self.major, self.minor + 1, 0)

    def bump_patch(self) -> "Version":
        return Version(self.major, self.minor, self.patch + 1)

    def release(self) -> "Version":
        return Version(self.major, self.minor, self.patch)

    def prerelease_parts(self) -> tuple[str, int | None] | None:
        """Split a ``label.N`` pre-release into ``(label, N)``."""
        if not self.pre:
            return None
        label = self.pre[0]
        number = int(self.pre[1]) if len(self.pre) > 1 and self.pre[1].isdigit() else None
        return label, number


class Op(Enum):
    EXACT = "="
    GREATER = ">"
    GREATER_EQ = ">="
    LESS = "<"
    LESS_EQ = "<="
    TILDE = "~"
    CARET = "^"
    WILDCARD = "*"


class Precision(Enum):
    EXACT = "exact"
    CARET = "caret"
    TILDE = "tilde"
    WILDCARD = "wildcard"
    RANGE = "range"


@dataclass(frozen=True)
class Comparator:
    """One comparator of a requirement, e.g. ``~1.2`` or ``1.*``."""

    op: Op
    major: int
    minor: int | None = None
    patch: int | None = None
    pre: tuple[str, ...] = ()
    implicit: bool = False  # a bare ``1.2`` is a caret comparator written without ``^``
    wildcard: str = "*"

    @classmethod
    def parse(cls, text: str) -> "Comparator":
        match = _COMPARATOR.match(text.strip())
        if not match:
            raise InvalidRequirement(f"invalid version requirement `{text}`")
        op_text = match["op"]
        raw = [match["major"], match["minor"], match["patch"]]
        wildcard_at = next((i for i, part in enumerate(raw) if part and part in "*xX"), None)

        if wildcard_at is not None:
            if op_text not in (None, "="):
                raise InvalidRequirement(f"wildcards cannot follow an operator in `{text}`")
            if any(part and part not in "*xX" for part in raw[wildcard_at:]) or match["pre"]:
                raise InvalidRequirement(f"invalid wildcard requirement `{text}`")
            if wildcard_at == 0:
                raise InvalidRequirement(f"`{text}` must be written on its own as `*`")
            numbers = [int(part) for part in raw[:wildcard_at]]
            return cls(
                op=Op.WILDCARD,
                major=numbers[0],
                minor=numbers[1] if len(numbers) > 1 else None,
                wildcard=raw[wildcard_at],
            )

        minor = int(raw[1]) if raw[1] is not None else None
        patch = int(raw[2]) if raw[2] is not None else None
        pre = _identifiers(match["pre"])
        if pre and patch is None:
            raise InvalidRequirement(f"a pre-release needs a full version in `{text}`")
        op = Op(op_text) if op_text else Op.CARET
        return cls(
            op=op,
            major=int(raw[0]),
            minor=minor,
            patch=patch,
            pre=pre,
            implicit=op_text is None,
        )

    @property
    def components(self) -> int:
        return 1 + (self.minor is not None) + (self.patch is not None)

    def __str__(self) -> str:
        if self.op is Op.WILDCARD:
            parts = [str(self.major)]
            if self.minor is not None:
                parts.append(str(self.minor))
            return ".".join(parts) + "." + self.wildcard
        text = str(self.major)
        if self.minor is not None:
            text += f".{self.minor}"
        if self.patch is not None:
            text += f".{self.patch}"
        if self.pre:
            text += "-" + ".".join(self.pre)
        if self.op is Op.CARET and self.implicit:
            return text
        return f"{self.op.value}{text}"

    def matches(self, version: Version) -> bool:
        if self.op is Op.EXACT:
            return self._exact(version)
        if self.op is Op.GREATER:
            return self._greater(version)
        if self.op is Op.GREATER_EQ:
            return self._exact(version) or self._greater(version)
        if self.op is Op.LESS:
            return self._less(version)
        if self.op is Op.LESS_EQ:
            return self._exact(version) or self._less(version)
        if self.op is Op.TILDE:
            return self._tilde(version)
        if self.op is Op.CARET:
            return self._caret(version)
        return self._wildcard(version)

    def _exact(self, v: Version) -> bool:
        if v.major != self.major:
            return False
        if self.minor is not None and v.minor != self.minor:
            return False
        if self.patch is not None and v.patch != self.patch:
            return False
        return v.pre == self.pre

    def _greater(self, v: Version) -> bool:
        if v.major != self.major:
            return v.major > self.major
        if self.minor is None:
            return False
        if v.minor != self.minor:
            return v.minor > self.minor
        if self.patch is None:
            return False
        if v.patch != self.patch:
            return v.patch > self.patch
        return _pre_key(v.pre) > _pre_key(self.pre)

    def _less(self, v: Version) -> bool:
        if v.major != self.major:
            return v.major < self.major
        if self.minor is None:
            return False
        if v.minor != self.minor:
            return v.minor < self.minor
        if self.patch is None:
            return False
        if v.patch != self.patch:
            return v.patch < self.patch
        return _pre_key(v.pre) < _pre_key(self.pre)

    def _tilde(self, v: Version) -> bool:
        if v.major != self.major:
            return False
        if self.minor is not None and v.minor != self.minor:
            return False
        if self.patch is not None and v.patch != self.patch:
            return v.patch > self.patch
        return _pre_key(v.pre) >= _pre_key(self.pre)

    def _caret(self, v: Version) -> bool:
        if v.major != self.major:
            return False
        if self.minor is None:
            return True
        if self.patch is None:
            return v.minor >= self.minor if self.major > 0 else v.minor == self.minor
        if self.major > 0:
            if v.minor != self.minor:
                return v.minor > self.minor
            if v.patch != self.patch:
                return v.patch > self.patch
        elif self.minor > 0:
            if v.minor != self.minor:
                return False
            if v.patch != self.patch:
                return v.patch > self.patch
        elif v.minor != self.minor or v.patch != self.patch:
            return False
        return _pre_key(v.pre) >= _pre_key(self.pre)

    def _wildcard(self, v: Version) -> bool:
        if v.major != self.major:
            return False
        return self.minor is None or v.minor == self.minor


@dataclass(frozen=True)
class VersionReq:
    """A comma-separated list of comparators; empty means ``*``."""

    comparators: tuple[Comparator, ...] = field(default_factory=tuple)

    @classmethod
    def parse(cls, text: str) -> "VersionReq":
        stripped = text.strip()
        if not stripped:
            raise InvalidRequirement("empty version requirement")
        if stripped == "*":
            return cls()
        parts = [part.strip() for part in stripped.split(",")]
        if any(not part for part in parts):
            raise InvalidRequirement(f"invalid version requirement `{text}`")
        return cls(tuple(Comparator.parse(part) for part in parts))

    @classmethod
    def exact(cls, version: Version) -> "VersionReq":
        return cls((_full(Op.EXACT, version),))

    @classmethod
    def caret(cls, version: Version, implicit: bool = True) -> "VersionReq":
        return cls((_full(Op.CARET, version, implicit=implicit),))

    @classmethod
    def tilde(cls, version: Version) -> "VersionReq":
        return cls((_full(Op.TILDE, version),))

    def __str__(self) -> str:
        if not self.comparators:
            return "*"
        return ", ".join(str(comparator) for comparator in self.comparators)

    @property
    def is_star(self) -> bool:
        return not self.comparators

    @property
    def has_prerelease(self) -> bool:
        return any(comparator.pre for comparator in self.comparators)

    @property
    def precision(self) -> Precision:
        if self.is_star:
            return Precision.WILDCARD
        if len(self.comparators) > 1:
            return Precision.RANGE
        return {
            Op.EXACT: Precision.EXACT,
            Op.CARET: Precision.CARET,
            Op.TILDE: Precision.TILDE,
            Op.WILDCARD: Precision.WILDCARD,
        }.get(self.comparators[0].op, Precision.RANGE)

    def matches(self, version: Version) -> bool:
        if not all(comparator.matches(version) for comparator in self.comparators):
            return False
        if not version.pre:
            return True
        # Pre-releases only match when a comparator names the same release with a pre tag.
        return any(
            comparator.pre
            and comparator.major == version.major
            and comparator.minor == version.minor
            and comparator.patch == version.patch
            for comparator in self.comparators
        )


def _full(op: Op, version: Version, implicit: bool = False) -> Comparator:
    return Comparator(
        op=op,
        major=version.major,
        minor=version.minor,
        patch=version.patch,
        pre=version.pre,
        implicit=implicit,
    )


class BumpLevel(Enum):
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    RELEASE = "release"
    RC = "rc"
    BETA = "beta"
    ALPHA = "alpha"

    def apply(self, version: Version, metadata: str | None = None) -> Version:
        if self is BumpLevel.MAJOR:
            bumped = version.bump_major()
        elif self is BumpLevel.MINOR:
            bumped = version.bump_minor()
        elif self is BumpLevel.PATCH:
            bumped = version.release() if version.is_prerelease else version.bump_patch()
        elif self is BumpLevel.RELEASE:
            bumped = replace(version, pre=())
        else:
            bumped = _bump_prerelease(version, self.value)
        if metadata is not None:
            bumped = bumped.with_metadata(metadata)
        return bumped


_PRE_ORDER = ("alpha", "beta", "rc")


def _bump_prerelease(version: Version, label: str) -> Version:
    parts = version.prerelease_parts()
    if parts is None:
        return replace(version.bump_patch(), pre=(label, "1"))
    current, number = parts
    if current in _PRE_ORDER and _PRE_ORDER.index(current) > _PRE_ORDER.index(label):
        raise VersionDowngrade(
            f"cannot move {version} back to a `{label}` pre-release"
        )
    next_number = (number or 0) + 1 if current == label else 1
    return replace(version, pre=(label, str(next_number)), build=())
