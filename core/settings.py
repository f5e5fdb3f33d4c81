from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Dict, Mapping, Optional, Union

from dotenv import dotenv_values, find_dotenv

from .logging_utils import redact_secret
from .paths import get_lock_path, get_temp_dir, resolve_working_dir
from .settings_schema import SETTINGS_VALIDATOR, STORAGE_KINDS

__all__ = [
    "DEFAULT_KEEP",
    "ConfigurationError",
    "ConnectionParams",
    "DumpSettings",
    "LocalTarget",
    "S3Target",
    "UploadPolicy",
    "load_settings",
    "read_environment",
]

DEFAULT_KEEP = 3
_MIN_PART_SIZE_MB = 5
_DEFAULT_PART_SIZE_MB = 8


class ConfigurationError(ValueError):
    """Raised when a required setting is missing, empty, or malformed."""


@dataclass(frozen=True, slots=True)
class ConnectionParams:
    host: str
    port: int
    name: str
    user: str
    password: str = field(repr=False)

    def describe(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "name": self.name,
            "user": self.user,
            "password": redact_secret(self.password),
        }


@dataclass(frozen=True, slots=True)
class LocalTarget:
    kind: ClassVar[str] = "local"

    path: Path

    def describe(self) -> Dict[str, Any]:
        return {"kind": self.kind, "path": str(self.path)}


@dataclass(frozen=True, slots=True)
class S3Target:
    kind: ClassVar[str] = "s3"

    bucket: str
    region: str
    access_key: str
    secret_key: str = field(repr=False)
    prefix: str = ""
    endpoint_url: Optional[str] = None

    def describe(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "bucket": self.bucket,
            "region": self.region,
            "prefix": self.prefix,
            "access_key": redact_secret(self.access_key),
            "secret_key": redact_secret(self.secret_key),
            "endpoint_url": self.endpoint_url,
        }


BackendConfig = Union[LocalTarget, S3Target]


@dataclass(frozen=True, slots=True)
class UploadPolicy:
    part_size_bytes: int = _DEFAULT_PART_SIZE_MB * 1024 * 1024
    max_attempts: int = 5
    backoff_base_s: float = 1.0
    backoff_max_s: float = 60.0


@dataclass(frozen=True, slots=True)
class DumpSettings:
    """Immutable run configuration, built once at startup."""

    connection: ConnectionParams
    target: BackendConfig
    working_dir: Path
    keep: int = DEFAULT_KEEP
    upload: UploadPolicy = field(default_factory=UploadPolicy)
    temp_dir: Path = field(default_factory=get_temp_dir)
    lock_path: Optional[Path] = None
    mysqldump_bin: str = "mysqldump"

    @property
    def storage(self) -> str:
        return self.target.kind

    def describe(self) -> Dict[str, Any]:
        return {
            "connection": self.connection.describe(),
            "target": self.target.describe(),
            "keep": self.keep,
            "temp_dir": str(self.temp_dir),
            "lock_path": str(self.lock_path) if self.lock_path else None,
            "part_size_bytes": self.upload.part_size_bytes,
            "max_attempts": self.upload.max_attempts,
        }


def read_environment(
    env_file: str | os.PathLike[str] | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Merge a dotenv file with the process environment.

    Variables already present in the environment win over the file. When an
    explicit *environ* mapping is given and no *env_file*, no dotenv file is
    searched for.
    """

    if env_file is None and environ is None:
        found = find_dotenv(usecwd=True)
        env_file = found or None
    values: Dict[str, str] = {}
    if env_file is not None:
        path = Path(env_file)
        if not path.is_file():
            raise ConfigurationError(f"Environment file not found: {path}")
        for key, value in dotenv_values(path).items():
            if value is not None:
                values[key] = value
    source = os.environ if environ is None else environ
    values.update({key: value for key, value in source.items() if value is not None})
    return values


def _text(values: Mapping[str, str], key: str, default: str = "") -> str:
    return str(values.get(key) or default).strip()


def _int(values: Mapping[str, str], key: str, default: int, *, minimum: int) -> int:
    raw = _text(values, key)
    if not raw:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc
    if parsed < minimum:
        raise ConfigurationError(f"{key} must be >= {minimum}, got {parsed}")
    return parsed


def _float(values: Mapping[str, str], key: str, default: float) -> float:
    raw = _text(values, key)
    if not raw:
        return default
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc
    if parsed < 0:
        raise ConfigurationError(f"{key} must not be negative, got {parsed}")
    return parsed


def _build_target(values: Mapping[str, str], storage: str) -> BackendConfig:
    dump_path = _text(values, "DUMP_PATH")
    if storage == "local":
        return LocalTarget(path=Path(os.path.expandvars(os.path.expanduser(dump_path))))
    endpoint = _text(values, "AWS_ENDPOINT_URL") or None
    return S3Target(
        bucket=_text(values, "AWS_BUCKET"),
        region=_text(values, "AWS_REGION"),
        access_key=_text(values, "AWS_KEY"),
        secret_key=_text(values, "AWS_SECRET"),
        prefix=dump_path.strip("/"),
        endpoint_url=endpoint,
    )


def load_settings(
    env_file: str | os.PathLike[str] | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> DumpSettings:
    """Validate the environment and build the run configuration.

    Raises :class:`ConfigurationError` before anything else happens when a
    required key is absent or blank.
    """

    values = read_environment(env_file, environ)

    storage = _text(values, "DUMP_STORAGE").lower()
    if storage and storage not in STORAGE_KINDS:
        raise ConfigurationError(
            f"DUMP_STORAGE must be one of {', '.join(STORAGE_KINDS)}, got {storage!r}"
        )
    missing = list(SETTINGS_VALIDATOR.missing_keys(values))
    if missing:
        raise ConfigurationError(f"Missing or empty required settings: {', '.join(missing)}")

    port = _int(values, "DB_PORT", 3306, minimum=1)
    if port > 65535:
        raise ConfigurationError(f"DB_PORT out of range: {port}")
    connection = ConnectionParams(
        host=_text(values, "DB_HOST"),
        port=port,
        name=_text(values, "DB_NAME"),
        user=_text(values, "DB_USER"),
        password=str(values.get("DB_PASS") or ""),
    )

    part_size_mb = _int(values, "DUMP_UPLOAD_PART_SIZE_MB", _DEFAULT_PART_SIZE_MB, minimum=_MIN_PART_SIZE_MB)
    upload = UploadPolicy(
        part_size_bytes=part_size_mb * 1024 * 1024,
        max_attempts=_int(values, "DUMP_UPLOAD_MAX_ATTEMPTS", 5, minimum=1),
        backoff_base_s=_float(values, "DUMP_UPLOAD_BACKOFF_S", 1.0),
    )

    working_dir = resolve_working_dir(dict(values))
    lock_file = _text(values, "DUMP_LOCK_FILE")
    lock_path = Path(lock_file).expanduser() if lock_file else get_lock_path(working_dir)

    return DumpSettings(
        connection=connection,
        target=_build_target(values, storage),
        working_dir=working_dir,
        keep=_int(values, "DUMP_KEEP", DEFAULT_KEEP, minimum=1),
        upload=upload,
        temp_dir=get_temp_dir(_text(values, "DUMP_TMP_DIR") or None),
        lock_path=lock_path,
        mysqldump_bin=_text(values, "MYSQLDUMP_BIN", "mysqldump"),
    )
