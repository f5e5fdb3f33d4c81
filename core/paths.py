from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional

__all__ = [
    "get_lock_path",
    "get_logs_dir",
    "get_temp_dir",
    "resolve_working_dir",
]


def _expand_path(value: str) -> Path:
    expanded = os.path.expandvars(os.path.expanduser(value))
    return Path(expanded).resolve()


def _ensure_writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    test_file = path / f".write_test_{os.getpid()}"
    try:
        with open(test_file, "w", encoding="utf-8") as handle:
            handle.write("ok")
        test_file.unlink(missing_ok=True)
        return True
    except OSError:
        try:
            if test_file.exists():
                test_file.unlink()
        except OSError:  # pragma: no cover - cleanup of the write-check file
            pass
        return False


def _prepare_working_dir(candidate: Path) -> Optional[Path]:
    if not _ensure_writable_dir(candidate):
        return None
    try:
        get_logs_dir(candidate).mkdir(parents=True, exist_ok=True)
        return candidate
    except OSError:
        return None


def resolve_working_dir(environ: Optional[dict] = None) -> Path:
    """Resolve the dbdump working directory (logs, lock file), creating it if required."""

    env = os.environ if environ is None else environ
    env_home = env.get("DBDUMP_HOME")
    if env_home:
        prepared = _prepare_working_dir(_expand_path(env_home))
        if prepared is not None:
            return prepared

    xdg_state = env.get("XDG_STATE_HOME")
    if xdg_state:
        prepared = _prepare_working_dir(_expand_path(xdg_state) / "dbdump")
        if prepared is not None:
            return prepared

    prepared = _prepare_working_dir(Path.home() / ".dbdump")
    if prepared is not None:
        return prepared

    fallback = Path(tempfile.gettempdir()) / "dbdump"
    get_logs_dir(fallback).mkdir(parents=True, exist_ok=True)
    return fallback


def get_logs_dir(working_dir: Path) -> Path:
    return working_dir / "logs"


def get_lock_path(working_dir: Path) -> Path:
    return working_dir / "dbdump.lock"


def get_temp_dir(override: Optional[str] = None) -> Path:
    """Return the directory used to stage dumps before a remote upload."""

    if override:
        return _expand_path(override)
    return Path(tempfile.gettempdir())
