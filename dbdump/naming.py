"""Time ordered names for dump artifacts."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from .types import ARTIFACT_SUFFIX

NAME_FORMAT = "%Y-%m-%d %H_%M_%S"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ArtifactNamer:
    """Derive ``YYYY-MM-DD HH_mm_ss.sql.gz`` names from the wall clock.

    Names are rendered in UTC so they never step backwards across a daylight
    saving change. Zero padded fields make lexical order match chronological
    order, which is what retention falls back to when a backend reports no
    modification time.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None, *, suffix: str = ARTIFACT_SUFFIX) -> None:
        self._clock = clock or _utc_now
        self._suffix = suffix

    def next_name(self) -> str:
        moment = self._clock()
        if moment.tzinfo is not None:
            moment = moment.astimezone(timezone.utc)
        return moment.strftime(NAME_FORMAT) + self._suffix


__all__ = ["ArtifactNamer", "NAME_FORMAT"]
