"""Retention policy enforcement for dump artifacts."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from .errors import DeletionError, EnumerationError
from .logs import DumpLogger, Phase
from .storage.base import StorageBackend
from .types import Artifact, RetentionSummary


@dataclass(frozen=True, slots=True)
class RetentionPolicy:
    keep: int = 3

    def select_for_deletion(self, ordered_artifacts: Sequence[Artifact]) -> List[str]:
        return select_for_deletion(ordered_artifacts, self.keep)


def select_for_deletion(ordered_artifacts: Sequence[Artifact], keep: int) -> List[str]:
    """Return the keys of the oldest artifacts beyond the newest *keep*.

    *ordered_artifacts* runs oldest to newest. The result is always a prefix of
    that order so an interrupted deletion loop never removes a newer dump
    before an older one.
    """

    if keep < 0:
        raise ValueError(f"keep must be >= 0, got {keep}")
    excess = len(ordered_artifacts) - keep
    if excess <= 0:
        return []
    return [artifact.key for artifact in ordered_artifacts[:excess]]


def apply_retention(backend: StorageBackend, policy: RetentionPolicy, *, logger: DumpLogger) -> RetentionSummary:
    """List the namespace and delete whatever falls outside the window.

    Listing and deletion failures are logged and recorded, never raised.
    """

    summary = RetentionSummary()
    try:
        artifacts = backend.list()
    except EnumerationError as exc:
        summary.errors.append(str(exc))
        logger.event(event="retention_list_failed", phase=Phase.RETENTION, ok=False, error=str(exc))
        return summary

    doomed = select_for_deletion(artifacts, policy.keep)
    for key in doomed:
        try:
            backend.delete(key)
        except DeletionError as exc:
            summary.errors.append(str(exc))
            logger.warning("artifact_delete_failed", phase=Phase.RETENTION, key=key, error=str(exc))
            continue
        summary.removed.append(key)
        logger.info("artifact_removed", phase=Phase.RETENTION, key=key)

    removed = set(summary.removed)
    summary.kept = [artifact.key for artifact in artifacts if artifact.key not in removed]
    logger.event(
        event="retention_applied",
        phase=Phase.RETENTION,
        ok=not summary.errors,
        removed=len(summary.removed),
        kept=len(summary.kept),
        failed=len(summary.errors),
    )
    return summary


__all__ = ["RetentionPolicy", "apply_retention", "select_for_deletion"]
