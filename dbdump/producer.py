"""Minimal mysqldump wrapper producing gzip-compressed SQL dumps."""
from __future__ import annotations

import gzip
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

from core.settings import ConnectionParams

from .errors import ProducerError
from .logs import DumpLogger, Phase
from .types import DumpOptions

_CHUNK_BYTES = 1024 * 1024
_STDERR_TAIL_BYTES = 4096


def _flag(enabled: bool, on: str, off: str) -> str:
    return on if enabled else off


def build_command(binary: str, connection: ConnectionParams, options: DumpOptions) -> List[str]:
    """Return the mysqldump argv; the password travels in ``MYSQL_PWD`` instead."""

    return [
        binary,
        f"--host={connection.host}",
        f"--port={connection.port}",
        f"--user={connection.user}",
        _flag(options.drop_table_statements, "--add-drop-table", "--skip-add-drop-table"),
        _flag(options.hold_locks, "--add-locks", "--skip-add-locks"),
        _flag(options.hold_locks, "--lock-tables", "--skip-lock-tables"),
        _flag(options.include_events, "--events", "--skip-events"),
        _flag(options.include_routines, "--routines", "--skip-routines"),
        connection.name,
    ]


def _read_tail(handle) -> str:
    handle.seek(0, os.SEEK_END)
    size = handle.tell()
    handle.seek(max(0, size - _STDERR_TAIL_BYTES))
    return handle.read().decode("utf-8", errors="replace").strip()


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:  # pragma: no cover - best effort removal of a partial dump
        pass


class MysqlDumpProducer:
    """Run ``mysqldump`` and stream its output into *output_path*."""

    def __init__(self, binary: str = "mysqldump", *, logger: Optional[DumpLogger] = None) -> None:
        self._binary = binary
        self._logger = logger

    @property
    def binary(self) -> str:
        return self._binary

    def available(self) -> bool:
        return shutil.which(self._binary) is not None

    def produce(
        self,
        connection: ConnectionParams,
        output_path: Path,
        options: DumpOptions = DumpOptions(),
    ) -> int:
        """Write the dump and return its size in bytes.

        Any failure removes the partial output and raises :class:`ProducerError`.
        """

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        command = build_command(self._binary, connection, options)
        env = dict(os.environ)
        env["MYSQL_PWD"] = connection.password
        if self._logger:
            self._logger.info("dump_start", phase=Phase.PRODUCE, database=connection.name, host=connection.host, path=str(output_path))

        with tempfile.TemporaryFile() as stderr:
            try:
                process = subprocess.Popen(command, stdout=subprocess.PIPE, stderr=stderr, env=env)
            except OSError as exc:
                raise ProducerError(f"cannot start {self._binary}: {exc}") from exc
            try:
                opener = gzip.open if options.compress else open
                with process.stdout, opener(output_path, "wb") as sink:
                    shutil.copyfileobj(process.stdout, sink, _CHUNK_BYTES)
            except OSError as exc:
                process.kill()
                process.wait()
                _discard(output_path)
                raise ProducerError(f"writing dump to {output_path} failed: {exc}") from exc
            returncode = process.wait()
            if returncode != 0:
                _discard(output_path)
                detail = _read_tail(stderr)
                raise ProducerError(f"{self._binary} exited with status {returncode}: {detail}")

        size = output_path.stat().st_size
        if self._logger:
            self._logger.info("dump_complete", phase=Phase.PRODUCE, database=connection.name, path=str(output_path), size=size)
        return size


__all__ = ["MysqlDumpProducer", "build_command"]
