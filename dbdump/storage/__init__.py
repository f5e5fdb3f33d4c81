"""Storage backends and the factory selecting one from the settings."""
from __future__ import annotations

from typing import Optional

from core.settings import DumpSettings, LocalTarget, S3Target

from ..logs import DumpLogger
from .base import StorageBackend
from .local import LocalStorage
from .s3 import S3Storage


def build_backend(settings: DumpSettings, *, logger: Optional[DumpLogger] = None, client=None) -> StorageBackend:
    target = settings.target
    if isinstance(target, LocalTarget):
        return LocalStorage(target)
    if isinstance(target, S3Target):
        return S3Storage(
            target,
            temp_dir=settings.temp_dir,
            policy=settings.upload,
            client=client,
            logger=logger,
        )
    raise TypeError(f"unsupported storage target: {target!r}")


__all__ = ["LocalStorage", "S3Storage", "StorageBackend", "build_backend"]
