"""Lock file serialising runs that share a dump namespace."""
from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import time
from pathlib import Path
from typing import Iterator

from .errors import LockError

LOGGER = logging.getLogger("dbdump.lock")


def _read_pid(lockfile: Path) -> int:
    try:
        return int(lockfile.read_text(encoding="utf-8").strip() or 0)
    except (OSError, ValueError):
        return 0


def _same_file(fd: int, lockfile: Path) -> bool:
    try:
        on_disk = os.stat(lockfile)
    except FileNotFoundError:
        return False
    held = os.fstat(fd)
    return (held.st_dev, held.st_ino) == (on_disk.st_dev, on_disk.st_ino)


def _try_acquire(lockfile: Path) -> int | None:
    fd = os.open(str(lockfile), os.O_CREAT | os.O_RDWR, 0o640)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        os.close(fd)
        return None
    except OSError:
        os.close(fd)
        raise
    # a releasing run may have unlinked the path between open and flock
    if not _same_file(fd, lockfile):
        os.close(fd)
        return -1
    return fd


@contextlib.contextmanager
def run_lock(lockfile: Path, timeout_s: float = 0.0, poll_s: float = 0.2) -> Iterator[Path]:
    """Hold an exclusive ``flock`` on *lockfile* for the duration of the block.

    The kernel drops the lock when the holding process dies, so a file left
    behind by a crashed run is simply locked again. The PID written into the
    file is informational. Raises :class:`LockError` when another live run
    keeps the lock past *timeout_s*.
    """

    lockfile = Path(lockfile)
    lockfile.parent.mkdir(parents=True, exist_ok=True)
    start = time.monotonic()
    while True:
        try:
            fd = _try_acquire(lockfile)
        except OSError as exc:
            raise LockError(f"cannot open lock {lockfile}: {exc}") from exc
        if fd == -1:
            continue
        if fd is not None:
            break
        if time.monotonic() - start >= timeout_s:
            holder = _read_pid(lockfile)
            raise LockError(f"another dump run holds {lockfile} (pid {holder or 'unknown'})")
        time.sleep(poll_s)

    previous = _read_pid(lockfile)
    if previous and previous != os.getpid():
        LOGGER.info("Reusing lock %s left by pid %s", lockfile, previous)
    os.ftruncate(fd, 0)
    os.write(fd, str(os.getpid()).encode("ascii"))
    LOGGER.debug("Acquired lock %s", lockfile)
    try:
        yield lockfile
    finally:
        try:
            if _same_file(fd, lockfile):
                with contextlib.suppress(FileNotFoundError):
                    lockfile.unlink()
        finally:
            os.close(fd)
        LOGGER.debug("Released lock %s", lockfile)


__all__ = ["run_lock"]
