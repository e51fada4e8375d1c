"""Manifests on disk: discovery, loading and atomic writes."""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from .document import Document, parse
from .errors import CratefixError, NotFoundError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "Cargo.toml"


def find_manifest(start: Path | str | None = None) -> Path:
    """Return the nearest ``Cargo.toml`` at or above ``start``."""
    start = Path(start or Path.cwd()).resolve()
    if start.is_file():
        return start
    for directory in (start, *start.parents):
        candidate = directory / MANIFEST_NAME
        if candidate.is_file():
            return candidate
    raise NotFoundError(f"could not find `{MANIFEST_NAME}` in `{start}` or any parent directory")


def read_text(path: Path) -> str:
    # newline="" keeps CRLF line endings intact
    with open(path, encoding="utf-8", newline="") as handle:
        return handle.read()


def write_atomic(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` without ever exposing a partial file."""
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        if path.exists():
            os.chmod(temp_name, path.stat().st_mode & 0o7777)
        os.replace(temp_name, path)
    except BaseException:
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise


@dataclass
class LocalManifest:
    """One manifest file and its editable document."""

    path: Path
    document: Document
    original: str
    label: str = ""  # path shown in change records, relative to the workspace root

    @classmethod
    def load(cls, path: Path | str, label: str | None = None) -> "LocalManifest":
        path = Path(path)
        try:
            text = read_text(path)
        except FileNotFoundError as exc:
            raise NotFoundError(f"manifest `{path}` does not exist") from exc
        try:
            document = parse(text)
        except CratefixError as exc:
            raise exc.with_path(label or path)
        return cls(path=path, document=document, original=text, label=label or str(path))

    @property
    def is_dirty(self) -> bool:
        return self.document.render() != self.original

    def write(self) -> bool:
        """Write pending edits; returns whether anything was written."""
        if not self.is_dirty:
            return False
        text = self.document.render()
        write_atomic(self.path, text)
        logger.info("wrote %s", self.label)
        self.original = text
        return True


@dataclass
class ManifestSet:
    """The manifests touched by one operation, written together."""

    manifests: list[LocalManifest] = field(default_factory=list)

    def add(self, manifest: LocalManifest) -> None:
        if manifest not in self.manifests:
            self.manifests.append(manifest)

    def dirty(self) -> list[LocalManifest]:
        return sorted((m for m in self.manifests if m.is_dirty), key=lambda m: m.label)

    def commit(self, strict: bool = False) -> list[str]:
        """Write every changed manifest in path order.

        With ``strict`` a failed write puts back the manifests already written
        in this commit before the error propagates.
        """
        written: list[tuple[LocalManifest, str]] = []
        for manifest in self.dirty():
            previous = manifest.original
            try:
                manifest.write()
            except OSError as exc:
                if strict:
                    self._restore(written)
                raise CratefixError(f"failed to write manifest: {exc}", path=manifest.label) from exc
            written.append((manifest, previous))
        return [manifest.label for manifest, _ in written]

    @staticmethod
    def _restore(written: list[tuple[LocalManifest, str]]) -> None:
        for manifest, previous in reversed(written):
            logger.warning("restoring %s", manifest.label)
            write_atomic(manifest.path, previous)
            manifest.original = previous
