"""Error hierarchy for dump runs.

Fatal errors (configuration, producer, placement, lock) unwind to the CLI and
set the process exit code. Non-fatal errors (enumeration, deletion, cleanup)
are caught where they happen and only reported.
"""
from __future__ import annotations

from typing import Optional

from core.settings import ConfigurationError


class DumpError(RuntimeError):
    """Base exception for dump related failures."""

    exit_code = 1


class ProducerError(DumpError):
    """Raised when the dump tool fails; no artifact exists afterwards."""

    exit_code = 3


class PlacementError(DumpError):
    """Raised when an artifact cannot be written to or uploaded into its backend."""

    exit_code = 4


class MultipartUploadError(PlacementError):
    """A single multipart attempt failed; ``state`` allows resuming it."""

    def __init__(self, message: str, *, state, resumable: bool = True, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.state = state
        self.resumable = resumable
        self.cause = cause


class UploadFailed(PlacementError):
    """Raised once the resumable upload gave up."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"upload failed after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class EnumerationError(DumpError):
    """Listing existing artifacts failed."""


class DeletionError(DumpError):
    """Removing an old artifact failed."""


class CleanupError(DumpError):
    """Removing the local temporary copy after an upload failed."""


class LockError(DumpError):
    """Another run holds the lock on this namespace."""

    exit_code = 5


def exit_code_for(exc: BaseException) -> int:
    if isinstance(exc, ConfigurationError):
        return 2
    if isinstance(exc, DumpError):
        return exc.exit_code
    return 1


__all__ = [
    "CleanupError",
    "ConfigurationError",
    "DeletionError",
    "DumpError",
    "EnumerationError",
    "LockError",
    "MultipartUploadError",
    "PlacementError",
    "ProducerError",
    "UploadFailed",
    "exit_code_for",
]
