"""Common dataclasses shared across dump modules."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

ARTIFACT_SUFFIX = ".sql.gz"


@dataclass(frozen=True, slots=True)
class Artifact:
    """One dump stored in a backend namespace."""

    key: str
    modified: Optional[datetime] = None
    size_bytes: Optional[int] = None


def order_artifacts(artifacts: Iterable[Artifact]) -> List[Artifact]:
    """Sort oldest first by modification time, ties broken by key.

    Names are time ordered, so when any entry lacks a modification time the
    whole listing falls back to key order.
    """

    items = list(artifacts)
    if any(item.modified is None for item in items):
        return sorted(items, key=lambda item: item.key)
    return sorted(items, key=lambda item: (item.modified, item.key))


def is_artifact_name(name: str) -> bool:
    return name.endswith(ARTIFACT_SUFFIX) and not name.startswith(".")


@dataclass(frozen=True, slots=True)
class DumpOptions:
    """Flags handed to the dump producer; all enabled for scheduled dumps."""

    compress: bool = True
    drop_table_statements: bool = True
    hold_locks: bool = True
    include_events: bool = True
    include_routines: bool = True


@dataclass(slots=True)
class RetentionSummary:
    removed: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass(slots=True)
class RunSummary:
    artifact_key: str
    location: str
    size_bytes: int
    retention: RetentionSummary
    warnings: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "artifact": self.artifact_key,
            "location": self.location,
            "size_bytes": self.size_bytes,
            "removed": list(self.retention.removed),
            "kept": list(self.retention.kept),
            "errors": list(self.retention.errors),
            "warnings": list(self.warnings),
        }


__all__ = [
    "ARTIFACT_SUFFIX",
    "Artifact",
    "DumpOptions",
    "RetentionSummary",
    "RunSummary",
    "is_artifact_name",
    "order_artifacts",
]
