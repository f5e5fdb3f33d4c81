"""Scheduled MySQL dumps with local or S3 storage and count based retention."""
from __future__ import annotations

from .errors import DumpError
from .naming import ArtifactNamer
from .pipeline import DumpService
from .retention import RetentionPolicy, select_for_deletion
from .types import Artifact, DumpOptions, RetentionSummary, RunSummary

__all__ = [
    "Artifact",
    "ArtifactNamer",
    "DumpError",
    "DumpOptions",
    "DumpService",
    "RetentionPolicy",
    "RetentionSummary",
    "RunSummary",
    "select_for_deletion",
]
