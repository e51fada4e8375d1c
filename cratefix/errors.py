"""Error taxonomy for cratefix."""

from pathlib import Path


class CratefixError(Exception):
    """Base class for every error raised by the manifest engine."""

    def __init__(
        self,
        message: str,
        *,
        path: str | Path | None = None,
        line: int | None = None,
        column: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.path = str(path) if path is not None else None
        self.line = line
        self.column = column

    def with_path(self, path: str | Path) -> "CratefixError":
        """Attach the manifest path unless one is already recorded."""
        if self.path is None:
            self.path = str(path)
        return self

    def location(self) -> str:
        parts = [self.path or "<manifest>"]
        if self.line is not None:
            parts.append(str(self.line))
            if self.column is not None:
                parts.append(str(self.column))
        return ":".join(parts)

    def __str__(self) -> str:
        if self.path is None and self.line is None:
            return self.message
        return f"{self.location()}: {self.message}"


class ParseError(CratefixError):
    """The manifest text does not follow the TOML grammar."""


class StaleHandle(CratefixError, RuntimeError):
    """A document handle was used after the document changed."""


class InvalidManifest(CratefixError):
    """The manifest is valid TOML but its contents make no sense."""


class NotFoundError(CratefixError, LookupError):
    """A dependency, table or package could not be found."""


class NoVersionsAvailable(NotFoundError):
    """Every published version was yanked or is a pre-release."""


class InvalidRequirement(CratefixError, ValueError):
    """A version or version requirement does not parse."""


class UnsupportedRequirement(CratefixError):
    """A requirement cannot be rewritten while keeping its shape."""


class AmbiguousDeclaration(CratefixError):
    """The same dependency is declared more than once in one scope."""


class VersionDowngrade(CratefixError):
    """An explicit target version is lower than the current one."""


class InvalidRequest(CratefixError, ValueError):
    """The requested operation combines incompatible options."""


class NetworkError(CratefixError):
    """The registry could not be reached."""


class OfflineError(CratefixError):
    """A registry lookup was required while running offline."""
