"""Ordered log of the changes made by one operation."""

from .models import ChangeRecord


def describe(change: ChangeRecord) -> str:
    """Render one change as a line of text."""
    if change.field == "dependency":
        if change.old is None:
            return f"{change.manifest}: added {change.package} {change.new}"
        return f"{change.manifest}: removed {change.package} {change.old}"
    if change.new is None:
        return f"{change.manifest}: {change.package} {change.field} dropped {change.old}"
    if change.old is None:
        return f"{change.manifest}: {change.package} {change.field} added {change.new}"
    return f"{change.manifest}: {change.package} {change.field} {change.old} -> {change.new}"


class ChangeReporter:
    """Collects change records in the order they were made.

    Recording has no side effects; printing is left to the caller.
    """

    def __init__(self, changes: list[ChangeRecord] | None = None):
        self._changes: list[ChangeRecord] = list(changes or ())

    def record(self, change: ChangeRecord) -> None:
        self._changes.append(change)

    def extend(self, changes: list[ChangeRecord]) -> None:
        for change in changes:
            self.record(change)

    def all(self) -> tuple[ChangeRecord, ...]:
        return tuple(self._changes)

    def for_manifest(self, path: str) -> list[ChangeRecord]:
        return [change for change in self._changes if change.manifest == path]

    def manifests(self) -> list[str]:
        """Paths of the manifests that changed, in first-change order."""
        return list(dict.fromkeys(change.manifest for change in self._changes))

    def lines(self) -> list[str]:
        """Text lines grouped by manifest."""
        return [describe(change) for path in self.manifests() for change in self.for_manifest(path)]

    def as_dicts(self) -> list[dict]:
        return [change.as_dict() for change in self._changes]

    def __len__(self) -> int:
        return len(self._changes)
