"""Run one dump cycle: produce, place, clean up, prune."""
from __future__ import annotations

import contextlib
from typing import ContextManager, Optional

from core.settings import DumpSettings

from .errors import CleanupError, PlacementError, ProducerError
from .lock import run_lock
from .logs import DumpLogger, Phase
from .naming import ArtifactNamer
from .producer import MysqlDumpProducer
from .retention import RetentionPolicy, apply_retention
from .storage import StorageBackend, build_backend
from .types import DumpOptions, RunSummary


class DumpService:
    """Coordinate a single run-to-completion dump for one configured backend."""

    def __init__(
        self,
        settings: DumpSettings,
        *,
        backend: Optional[StorageBackend] = None,
        producer: Optional[MysqlDumpProducer] = None,
        namer: Optional[ArtifactNamer] = None,
        logger: Optional[DumpLogger] = None,
        options: DumpOptions = DumpOptions(),
    ) -> None:
        self._settings = settings
        self._logger = logger or DumpLogger(settings.working_dir)
        self._backend = backend or build_backend(settings, logger=self._logger)
        self._producer = producer or MysqlDumpProducer(settings.mysqldump_bin, logger=self._logger)
        self._namer = namer or ArtifactNamer()
        self._options = options
        self._policy = RetentionPolicy(keep=settings.keep)

    # ------------------------------------------------------------------
    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def policy(self) -> RetentionPolicy:
        return self._policy

    def _guard(self) -> ContextManager:
        if self._settings.lock_path is None:
            return contextlib.nullcontext()
        return run_lock(self._settings.lock_path)

    # ------------------------------------------------------------------
    def run(self) -> RunSummary:
        with self._guard():
            return self._run_locked()

    def _run_locked(self) -> RunSummary:
        settings = self._settings
        name = self._namer.next_name()
        staged = self._backend.staging_path(name)
        self._logger.event(
            event="run_start",
            phase=Phase.PRODUCE,
            ok=True,
            artifact=name,
            storage=settings.storage,
            keep=settings.keep,
        )

        try:
            size = self._producer.produce(settings.connection, staged, self._options)
        except ProducerError as exc:
            self._logger.event(event="dump_failed", phase=Phase.PRODUCE, ok=False, error=str(exc))
            raise

        try:
            self._backend.place(staged, name)
        except PlacementError as exc:
            # staged file is kept for a manual retry
            self._logger.event(
                event="place_failed",
                phase=Phase.PLACE,
                ok=False,
                artifact=name,
                staged=str(staged),
                error=str(exc),
            )
            raise
        location = self._backend.location(name)
        self._logger.event(event="artifact_placed", phase=Phase.PLACE, ok=True, artifact=name, location=location, size=size)

        warnings = []
        try:
            self._backend.discard_staged(staged)
        except CleanupError as exc:
            warnings.append(str(exc))
            self._logger.warning("cleanup_failed", phase=Phase.CLEANUP, staged=str(staged), error=str(exc))

        retention = apply_retention(self._backend, self._policy, logger=self._logger)
        summary = RunSummary(
            artifact_key=name,
            location=location,
            size_bytes=size,
            retention=retention,
            warnings=warnings,
        )
        self._logger.event(
            event="run_complete",
            phase=Phase.TERMINATE,
            ok=True,
            artifact=name,
            removed=len(retention.removed),
            warnings=len(warnings) + len(retention.errors),
        )
        return summary


__all__ = ["DumpService"]
