import gzip
import json
import os
import runpy
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

import db_dumper
from core.settings import ConnectionParams, DumpSettings, LocalTarget, S3Target, UploadPolicy
from dbdump.errors import CleanupError, LockError, PlacementError, ProducerError
from dbdump.logs import DumpLogger
from dbdump.naming import ArtifactNamer
from dbdump.pipeline import DumpService
from dbdump.storage.s3 import S3Storage

from fakes import FakeS3Client, client_error

CONNECTION = ConnectionParams(host="localhost", port=3306, name="shop", user="backup", password="pw")


class FakeProducer:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.calls = []
        self.error = error

    def produce(self, connection, output_path, options) -> int:
        self.calls.append((connection, Path(output_path), options))
        if self.error is not None:
            raise self.error
        with gzip.open(output_path, "wb") as handle:
            handle.write(b"-- dump\n")
        return Path(output_path).stat().st_size


class SteppingClock:
    def __init__(self) -> None:
        self._now = datetime(2024, 1, 1, 3, 0, 0)

    def __call__(self) -> datetime:
        self._now += timedelta(days=1)
        return self._now


def _settings(tmp_path: Path, target, *, keep: int = 3, lock: bool = True) -> DumpSettings:
    working_dir = tmp_path / "work"
    return DumpSettings(
        connection=CONNECTION,
        target=target,
        working_dir=working_dir,
        keep=keep,
        upload=UploadPolicy(part_size_bytes=8, max_attempts=2, backoff_base_s=0.0),
        temp_dir=tmp_path / "tmp",
        lock_path=working_dir / "dbdump.lock" if lock else None,
    )


def _s3_target() -> S3Target:
    return S3Target(bucket="backups", region="eu-west-1", access_key="AKIA", secret_key="secret", prefix="dumps")


def test_local_runs_keep_exactly_the_newest_three(tmp_path) -> None:
    root = tmp_path / "dumps"
    settings = _settings(tmp_path, LocalTarget(path=root))
    producer = FakeProducer()
    clock = SteppingClock()
    produced = []

    for run in range(6):
        service = DumpService(settings, producer=producer, namer=ArtifactNamer(clock=clock))
        summary = service.run()
        produced.append(summary.artifact_key)
        on_disk = sorted(path.name for path in root.iterdir())
        assert on_disk == produced[-3:]

    assert summary.location == str(root / produced[-1])
    assert not settings.lock_path.exists()


def test_s3_run_uploads_cleans_temp_and_prunes(tmp_path) -> None:
    client = FakeS3Client()
    for day in range(1, 4):
        client.put(f"dumps/2020-01-0{day} 00_00_00.sql.gz", modified=datetime(2020, 1, day, tzinfo=timezone.utc))
    settings = _settings(tmp_path, _s3_target())
    logger = DumpLogger(settings.working_dir)
    backend = S3Storage(settings.target, temp_dir=settings.temp_dir, policy=settings.upload, client=client, logger=logger)
    namer = ArtifactNamer(clock=lambda: datetime(2024, 6, 1, 12, 0, 0))

    summary = DumpService(settings, backend=backend, producer=FakeProducer(), namer=namer, logger=logger).run()

    assert summary.artifact_key == "2024-06-01 12_00_00.sql.gz"
    assert summary.location == "s3://backups/dumps/2024-06-01 12_00_00.sql.gz"
    assert summary.retention.removed == ["2020-01-01 00_00_00.sql.gz"]
    assert sorted(client.objects) == [
        "dumps/2020-01-02 00_00_00.sql.gz",
        "dumps/2020-01-03 00_00_00.sql.gz",
        "dumps/2024-06-01 12_00_00.sql.gz",
    ]
    assert list(settings.temp_dir.iterdir()) == []
    records = [json.loads(line) for line in logger.path.read_text(encoding="utf-8").splitlines()]
    assert records[-1]["event"] == "run_complete"
    assert {record["run_id"] for record in records} == {logger.run_id}


def test_failed_upload_aborts_before_pruning(tmp_path) -> None:
    client = FakeS3Client()
    client.put("dumps/2020-01-01 00_00_00.sql.gz", modified=datetime(2020, 1, 1, tzinfo=timezone.utc))
    client.part_failures[1] = [client_error("AccessDenied", status=403)]
    settings = _settings(tmp_path, _s3_target(), keep=1)
    backend = S3Storage(settings.target, temp_dir=settings.temp_dir, policy=settings.upload, client=client)

    with pytest.raises(PlacementError):
        DumpService(settings, backend=backend, producer=FakeProducer()).run()

    assert client.calls_named("list_objects_v2") == []
    assert client.calls_named("delete_object") == []
    assert len(list(settings.temp_dir.iterdir())) == 1
    assert not settings.lock_path.exists()


def test_producer_failure_has_no_side_effects(tmp_path) -> None:
    root = tmp_path / "dumps"
    root.mkdir()
    old = root / "2020-01-01 00_00_00.sql.gz"
    old.write_bytes(b"old")
    settings = _settings(tmp_path, LocalTarget(path=root), keep=1)

    with pytest.raises(ProducerError):
        DumpService(settings, producer=FakeProducer(error=ProducerError("access denied"))).run()

    assert [path.name for path in root.iterdir()] == [old.name]


def test_cleanup_failure_is_reported_not_fatal(tmp_path) -> None:
    class StickyS3Storage(S3Storage):
        def discard_staged(self, local_source_path):
            raise CleanupError(f"cannot remove {local_source_path}")

    client = FakeS3Client()
    settings = _settings(tmp_path, _s3_target())
    backend = StickyS3Storage(settings.target, temp_dir=settings.temp_dir, policy=settings.upload, client=client)

    summary = DumpService(settings, backend=backend, producer=FakeProducer()).run()

    assert len(summary.warnings) == 1
    assert f"dumps/{summary.artifact_key}" in client.objects


def test_run_refuses_to_start_while_another_holds_the_lock(tmp_path) -> None:
    settings = _settings(tmp_path, LocalTarget(path=tmp_path / "dumps"))
    settings.lock_path.parent.mkdir(parents=True, exist_ok=True)
    settings.lock_path.write_text(str(os.getpid()), encoding="utf-8")
    producer = FakeProducer()

    with pytest.raises(LockError):
        DumpService(settings, producer=producer).run()

    assert producer.calls == []
    assert settings.lock_path.exists()


def test_cli_exits_with_configuration_error_before_dumping(tmp_path, monkeypatch, capsys) -> None:
    env_file = tmp_path / "dump.env"
    env_file.write_text(
        "\n".join(
            [
                "DB_HOST=localhost",
                "DB_NAME=shop",
                "DB_USER=backup",
                "DB_PASS=pw",
                "DB_PORT=3306",
                "DUMP_STORAGE=s3",
                "DUMP_PATH=dumps",
                "AWS_KEY=AKIA",
                "AWS_SECRET=secret",
                "AWS_REGION=eu-west-1",
                "AWS_BUCKET=",
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.delenv("AWS_BUCKET", raising=False)
    monkeypatch.setattr(db_dumper, "DumpService", pytest.fail)

    code = db_dumper.main(["--env-file", str(env_file)])

    assert code == 2
    assert "AWS_BUCKET" in capsys.readouterr().err


def test_module_entry_point_runs_the_cli(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setattr("sys.argv", ["dbdump", "--env-file", str(tmp_path / "missing.env")])

    with pytest.raises(SystemExit) as excinfo:
        runpy.run_module("dbdump", run_name="__main__")

    assert excinfo.value.code == 2
    assert "Configuration error" in capsys.readouterr().err
