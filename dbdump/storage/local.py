"""Local filesystem backend."""
from __future__ import annotations

import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from core.settings import LocalTarget

from ..errors import DeletionError, EnumerationError, PlacementError
from ..types import Artifact, is_artifact_name, order_artifacts
from .base import StorageBackend

_PARTIAL_SUFFIX = ".partial"


class LocalStorage(StorageBackend):
    """Keep dumps in a directory, created recursively on first use."""

    kind = "local"

    def __init__(self, target: LocalTarget) -> None:
        self._root = Path(target.path)

    @property
    def root(self) -> Path:
        return self._root

    def _ensure_root(self) -> None:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PlacementError(f"cannot create dump directory {self._root}: {exc}") from exc

    def staging_path(self, artifact_key: str) -> Path:
        self._ensure_root()
        # Hidden and suffixed so list() never reports a half written dump.
        return self._root / f".{artifact_key}{_PARTIAL_SUFFIX}"

    def place(self, local_source_path: Path, artifact_key: str) -> None:
        source = Path(local_source_path)
        self._ensure_root()
        destination = self._root / artifact_key
        try:
            if source.parent.resolve() == self._root.resolve():
                os.replace(source, destination)
            else:
                shutil.move(str(source), str(destination))
        except OSError as exc:
            raise PlacementError(f"cannot place {source} at {destination}: {exc}") from exc

    def list(self, prefix: str = "") -> List[Artifact]:
        if not self._root.exists():
            return []
        items: List[Artifact] = []
        try:
            for child in self._root.iterdir():
                name = child.name
                if not is_artifact_name(name) or not name.startswith(prefix):
                    continue
                if not child.is_file():
                    continue
                stat = child.stat()
                items.append(
                    Artifact(
                        key=name,
                        modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                        size_bytes=stat.st_size,
                    )
                )
        except OSError as exc:
            raise EnumerationError(f"cannot list {self._root}: {exc}") from exc
        return order_artifacts(items)

    def delete(self, artifact_key: str) -> None:
        path = self._root / artifact_key
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise DeletionError(f"{path} does not exist") from exc
        except OSError as exc:
            raise DeletionError(f"cannot delete {path}: {exc}") from exc

    def location(self, artifact_key: str) -> str:
        return str(self._root / artifact_key)


__all__ = ["LocalStorage"]
