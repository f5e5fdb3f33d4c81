"""S3 (and S3-compatible) object storage backend."""
from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from core.settings import S3Target, UploadPolicy

from ..errors import CleanupError, DeletionError, EnumerationError, PlacementError
from ..logs import DumpLogger
from ..types import Artifact, is_artifact_name, order_artifacts
from .base import StorageBackend
from .multipart import upload_with_resume


def create_s3_client(target: S3Target):
    session = boto3.session.Session(
        aws_access_key_id=target.access_key,
        aws_secret_access_key=target.secret_key,
        region_name=target.region,
    )
    return session.client("s3", endpoint_url=target.endpoint_url)


class S3Storage(StorageBackend):
    """Store dumps under ``s3://<bucket>/<prefix>/``.

    Dumps are staged in a local temp directory, uploaded with a resumable
    multipart upload, and the staged copy is dropped afterwards.
    """

    kind = "s3"

    def __init__(
        self,
        target: S3Target,
        *,
        temp_dir: Path,
        policy: UploadPolicy = UploadPolicy(),
        client=None,
        logger: Optional[DumpLogger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._target = target
        self._prefix = target.prefix.strip("/")
        self._temp_dir = Path(temp_dir)
        self._policy = policy
        self._client = client
        self._logger = logger
        self._sleep = sleep

    @property
    def client(self):
        if self._client is None:
            self._client = create_s3_client(self._target)
        return self._client

    def object_key(self, artifact_key: str) -> str:
        return f"{self._prefix}/{artifact_key}" if self._prefix else artifact_key

    def _namespace_prefix(self) -> str:
        return f"{self._prefix}/" if self._prefix else ""

    # ------------------------------------------------------------------
    def staging_path(self, artifact_key: str) -> Path:
        try:
            self._temp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PlacementError(f"cannot create temp directory {self._temp_dir}: {exc}") from exc
        return self._temp_dir / artifact_key

    def place(self, local_source_path: Path, artifact_key: str) -> None:
        upload_with_resume(
            self.client,
            Path(local_source_path),
            bucket=self._target.bucket,
            key=self.object_key(artifact_key),
            policy=self._policy,
            logger=self._logger,
            sleep=self._sleep,
        )

    def list(self, prefix: str = "") -> List[Artifact]:
        base = self._namespace_prefix()
        items: List[Artifact] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._target.bucket, Prefix=base + prefix):
                for entry in page.get("Contents", []) or []:
                    relative = str(entry["Key"])[len(base):]
                    # Objects in nested "folders" belong to another namespace.
                    if "/" in relative or not is_artifact_name(relative):
                        continue
                    items.append(
                        Artifact(
                            key=relative,
                            modified=entry.get("LastModified"),
                            size_bytes=entry.get("Size"),
                        )
                    )
        except (BotoCoreError, ClientError) as exc:
            raise EnumerationError(f"cannot list s3://{self._target.bucket}/{base}: {exc}") from exc
        return order_artifacts(items)

    def delete(self, artifact_key: str) -> None:
        key = self.object_key(artifact_key)
        try:
            self.client.delete_object(Bucket=self._target.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise DeletionError(f"cannot delete s3://{self._target.bucket}/{key}: {exc}") from exc

    def discard_staged(self, local_source_path: Path) -> None:
        try:
            Path(local_source_path).unlink(missing_ok=True)
        except OSError as exc:
            raise CleanupError(f"cannot remove staged dump {local_source_path}: {exc}") from exc

    def location(self, artifact_key: str) -> str:
        return f"s3://{self._target.bucket}/{self.object_key(artifact_key)}"


__all__ = ["S3Storage", "create_s3_client"]
