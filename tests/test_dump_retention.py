from datetime import datetime, timedelta, timezone

import pytest

from dbdump.errors import DeletionError, EnumerationError
from dbdump.retention import RetentionPolicy, apply_retention, select_for_deletion
from dbdump.types import Artifact, order_artifacts

from fakes import StubLogger

_BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _artifacts(count: int):
    return [Artifact(key=f"dump-{index:02d}.sql.gz", modified=_BASE + timedelta(hours=index)) for index in range(count)]


class StubBackend:
    def __init__(self, artifacts, *, failing=(), list_error=None) -> None:
        self.artifacts = list(artifacts)
        self.failing = set(failing)
        self.list_error = list_error
        self.deleted = []

    def list(self, prefix: str = ""):
        if self.list_error is not None:
            raise self.list_error
        return order_artifacts(item for item in self.artifacts if item.key.startswith(prefix))

    def delete(self, artifact_key: str) -> None:
        if artifact_key in self.failing:
            raise DeletionError(f"cannot delete {artifact_key}")
        self.deleted.append(artifact_key)
        self.artifacts = [item for item in self.artifacts if item.key != artifact_key]


def test_select_for_deletion_keeps_short_listings() -> None:
    assert select_for_deletion([], 3) == []
    assert select_for_deletion(_artifacts(3), 3) == []


def test_select_for_deletion_returns_oldest_prefix() -> None:
    for length in range(0, 7):
        items = _artifacts(length)
        for keep in range(0, 7):
            selected = select_for_deletion(items, keep)
            assert len(selected) == max(0, length - keep)
            assert selected == [item.key for item in items[: len(selected)]]


def test_select_for_deletion_rejects_negative_window() -> None:
    with pytest.raises(ValueError):
        select_for_deletion(_artifacts(2), -1)


def test_order_artifacts_breaks_ties_by_key() -> None:
    same = _BASE
    items = [
        Artifact(key="b.sql.gz", modified=same),
        Artifact(key="a.sql.gz", modified=same),
        Artifact(key="c.sql.gz", modified=same - timedelta(seconds=1)),
    ]

    assert [item.key for item in order_artifacts(items)] == ["c.sql.gz", "a.sql.gz", "b.sql.gz"]


def test_order_artifacts_falls_back_to_names_without_timestamps() -> None:
    items = [
        Artifact(key="2024-01-02 00_00_00.sql.gz", modified=_BASE),
        Artifact(key="2024-01-01 00_00_00.sql.gz", modified=None),
    ]

    assert [item.key for item in order_artifacts(items)] == [
        "2024-01-01 00_00_00.sql.gz",
        "2024-01-02 00_00_00.sql.gz",
    ]


def test_apply_retention_deletes_oldest_first() -> None:
    items = _artifacts(5)
    backend = StubBackend(reversed(items))
    logger = StubLogger()

    summary = apply_retention(backend, RetentionPolicy(keep=3), logger=logger)

    assert backend.deleted == [items[0].key, items[1].key]
    assert summary.removed == backend.deleted
    assert summary.kept == [item.key for item in items[2:]]
    assert summary.errors == []
    assert "retention_applied" in logger.names()


def test_apply_retention_continues_after_delete_failure_and_converges() -> None:
    items = _artifacts(6)
    backend = StubBackend(items, failing={items[1].key})
    logger = StubLogger()

    first = apply_retention(backend, RetentionPolicy(keep=3), logger=logger)

    assert first.removed == [items[0].key, items[2].key]
    assert first.kept == [item.key for item in items if item.key not in first.removed]
    assert len(first.errors) == 1
    assert "artifact_delete_failed" in logger.names()

    backend.failing.clear()
    second = apply_retention(backend, RetentionPolicy(keep=3), logger=logger)

    assert second.removed == [items[1].key]
    assert [item.key for item in backend.list()] == [item.key for item in items[3:]]


def test_apply_retention_reports_listing_failure() -> None:
    backend = StubBackend(_artifacts(5), list_error=EnumerationError("listing timed out"))
    logger = StubLogger()

    summary = apply_retention(backend, RetentionPolicy(keep=3), logger=logger)

    assert summary.removed == []
    assert summary.errors == ["listing timed out"]
    assert backend.deleted == []


def test_apply_retention_reports_undeleted_artifacts_as_kept() -> None:
    items = _artifacts(5)
    backend = StubBackend(items, failing={item.key for item in items})
    logger = StubLogger()

    summary = apply_retention(backend, RetentionPolicy(keep=3), logger=logger)

    assert summary.removed == []
    assert summary.kept == [item.key for item in items]
    assert len(summary.errors) == 2
