"""Parsing of user-supplied crate specs: ``name``, ``name@req`` or a path."""

from dataclasses import dataclass
from pathlib import Path

from .errors import InvalidRequest, InvalidRequirement
from .semver import VersionReq


def _is_name_char(char: str) -> bool:
    return char.isalnum() or char in "-_"


def _is_path_like(text: str) -> bool:
    return "/" in text or "\\" in text


@dataclass(frozen=True)
class CrateSpec:
    """A crate named on the command line.

    Either ``name`` (with an optional requirement) or ``path`` is set.
    """

    name: str | None = None
    requirement: VersionReq | None = None
    path: Path | None = None

    @classmethod
    def parse(cls, text: str) -> "CrateSpec":
        if _is_path_like(text) or Path(text).is_dir():
            return cls(path=Path(text))
        name, sep, requirement = text.partition("@")
        invalid = [char for char in name if not _is_name_char(char)]
        if not name or invalid:
            detail = ", ".join(dict.fromkeys(invalid)) or "empty name"
            raise InvalidRequest(f"invalid crate name `{name}`: {detail}")
        if not sep:
            return cls(name=name)
        try:
            return cls(name=name, requirement=VersionReq.parse(requirement))
        except InvalidRequirement as exc:
            raise InvalidRequirement(f"invalid version requirement `{requirement}` for `{name}`") from exc

    def __str__(self) -> str:
        if self.path is not None:
            return str(self.path)
        if self.requirement is not None:
            return f"{self.name}@{self.requirement}"
        return self.name or ""
