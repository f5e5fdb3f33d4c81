"""Storage backend interface for dump destinations."""
from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List

from ..types import Artifact


class StorageBackend(ABC):
    """A namespace holding dump artifacts (a directory or a bucket prefix).

    Keys are namespace relative: the value returned in :attr:`Artifact.key`
    by :meth:`list` is accepted as-is by :meth:`delete`.
    """

    kind = "abstract"

    @abstractmethod
    def staging_path(self, artifact_key: str) -> Path:
        """Local path the producer should write the dump for *artifact_key* to."""

    @abstractmethod
    def place(self, local_source_path: Path, artifact_key: str) -> None:
        """Durably store the file at *local_source_path* under *artifact_key*.

        Raises:
            PlacementError: when the artifact could not be stored.
        """

    @abstractmethod
    def list(self, prefix: str = "") -> List[Artifact]:
        """Return every artifact whose key starts with *prefix*, oldest first.

        Raises:
            EnumerationError: when the namespace cannot be listed.
        """

    @abstractmethod
    def delete(self, artifact_key: str) -> None:
        """Remove *artifact_key*.

        Raises:
            DeletionError: when the artifact could not be removed.
        """

    def discard_staged(self, local_source_path: Path) -> None:
        """Drop the local copy left behind by :meth:`place`, if any."""

    def location(self, artifact_key: str) -> str:
        return artifact_key


__all__ = ["StorageBackend"]
