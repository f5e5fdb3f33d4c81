"""Structured JSONL records for dump runs."""
from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Union

from core.paths import get_logs_dir

LOGGER = logging.getLogger("dbdump.run")


class Phase(str, Enum):
    """Pipeline stage a record belongs to."""

    PRODUCE = "produce"
    PLACE = "place"
    CLEANUP = "cleanup"
    RETENTION = "retention"
    TERMINATE = "terminate"


def record_for(
    event: str,
    *,
    run_id: str,
    ok: bool,
    phase: Union[Phase, str, None] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build one log record; unknown phase names raise ``ValueError``."""

    record: Dict[str, Any] = dict(extra)
    record.update(
        ts=datetime.now(timezone.utc).isoformat(),
        run_id=run_id,
        event=event,
        ok=bool(ok),
    )
    if phase is not None:
        record["phase"] = Phase(phase).value
    return record


class DumpLogger:
    """Append one JSON line per run event to ``logs/dump.jsonl``.

    Every record carries the run id so lines from repeated runs can be told
    apart, and is mirrored to the ``dbdump.run`` logger at a matching level.
    """

    def __init__(self, working_dir: Path, *, run_id: Optional[str] = None) -> None:
        self._run_id = run_id or uuid.uuid4().hex[:12]
        self._log_path = get_logs_dir(Path(working_dir)) / "dump.jsonl"
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._log_path

    @property
    def run_id(self) -> str:
        return self._run_id

    def _append(self, record: Dict[str, Any], level: int) -> None:
        line = json.dumps(record, sort_keys=True, default=str)
        with self._lock, self._log_path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        LOGGER.log(level, "%s", line)

    def event(self, *, event: str, phase: Union[Phase, str], ok: bool, **extra: Any) -> None:
        """Record a stage transition; failures are logged at ERROR."""
        record = record_for(event, run_id=self._run_id, ok=ok, phase=phase, **extra)
        self._append(record, logging.INFO if ok else logging.ERROR)

    def info(self, event: str, *, phase: Union[Phase, str, None] = None, **extra: Any) -> None:
        self._append(record_for(event, run_id=self._run_id, ok=True, phase=phase, **extra), logging.INFO)

    def warning(self, event: str, *, phase: Union[Phase, str, None] = None, **extra: Any) -> None:
        self._append(record_for(event, run_id=self._run_id, ok=False, phase=phase, **extra), logging.WARNING)

    def error(self, event: str, *, phase: Union[Phase, str, None] = None, **extra: Any) -> None:
        self._append(record_for(event, run_id=self._run_id, ok=False, phase=phase, **extra), logging.ERROR)


__all__ = ["DumpLogger", "Phase", "record_for"]
