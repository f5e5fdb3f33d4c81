"""Resumable S3 multipart uploads.

An :class:`UploadState` records the upload id and the ETag of every part S3
acknowledged. When an attempt fails the state travels inside the raised
:class:`MultipartUploadError`, and the next :class:`MultipartUploader` built
from it only sends the parts that are still missing.
"""
from __future__ import annotations

import math
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, ParamValidationError

from core.settings import UploadPolicy

from ..errors import MultipartUploadError, UploadFailed
from ..logs import DumpLogger, Phase

_TRANSIENT_CODES = {
    "InternalError",
    "RequestTimeout",
    "RequestTimeoutException",
    "ServiceUnavailable",
    "SlowDown",
    "Throttling",
    "ThrottlingException",
}


@dataclass(slots=True)
class UploadState:
    bucket: str
    key: str
    part_size: int
    upload_id: Optional[str] = None
    parts: Dict[int, str] = field(default_factory=dict)

    def completed_parts(self) -> List[Dict[str, Any]]:
        return [{"PartNumber": number, "ETag": self.parts[number]} for number in sorted(self.parts)]


def is_resumable(exc: BaseException) -> bool:
    """Return True for failures worth retrying with the same upload state."""

    if isinstance(exc, (NoCredentialsError, ParamValidationError)):
        return False
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {}) or {}
        status = (exc.response.get("ResponseMetadata", {}) or {}).get("HTTPStatusCode") or 0
        return error.get("Code") in _TRANSIENT_CODES or int(status) >= 500
    return isinstance(exc, BotoCoreError)


def part_count(size_bytes: int, part_size: int) -> int:
    # S3 needs at least one part even for an empty object.
    return max(1, math.ceil(size_bytes / part_size))


class MultipartUploader:
    def __init__(
        self,
        client,
        source: Path,
        *,
        bucket: Optional[str] = None,
        key: Optional[str] = None,
        part_size: int = 8 * 1024 * 1024,
        state: Optional[UploadState] = None,
    ) -> None:
        if state is None:
            if not bucket or not key:
                raise ValueError("bucket and key are required without a resume state")
            state = UploadState(bucket=bucket, key=key, part_size=part_size)
        self._client = client
        self._source = Path(source)
        self._state = state

    @property
    def state(self) -> UploadState:
        return self._state

    def upload(self) -> Dict[str, Any]:
        state = self._state
        try:
            size = self._source.stat().st_size
        except OSError as exc:
            raise MultipartUploadError(
                f"cannot read {self._source}: {exc}", state=state, resumable=False, cause=exc
            ) from exc

        part_number: Optional[int] = None
        try:
            if state.upload_id is None:
                response = self._client.create_multipart_upload(Bucket=state.bucket, Key=state.key)
                state.upload_id = response["UploadId"]
            with self._source.open("rb") as handle:
                for part_number in range(1, part_count(size, state.part_size) + 1):
                    if part_number in state.parts:
                        continue
                    handle.seek((part_number - 1) * state.part_size)
                    body = handle.read(state.part_size)
                    response = self._client.upload_part(
                        Bucket=state.bucket,
                        Key=state.key,
                        UploadId=state.upload_id,
                        PartNumber=part_number,
                        Body=body,
                    )
                    state.parts[part_number] = response["ETag"]
                part_number = None
            return self._client.complete_multipart_upload(
                Bucket=state.bucket,
                Key=state.key,
                UploadId=state.upload_id,
                MultipartUpload={"Parts": state.completed_parts()},
            )
        except (BotoCoreError, ClientError) as exc:
            where = f"part {part_number}" if part_number else "upload"
            raise MultipartUploadError(
                f"{where} of s3://{state.bucket}/{state.key} failed: {exc}",
                state=state,
                resumable=is_resumable(exc),
                cause=exc,
            ) from exc
        except OSError as exc:
            raise MultipartUploadError(
                f"reading {self._source} failed: {exc}", state=state, resumable=False, cause=exc
            ) from exc

    def abort(self) -> None:
        state = self._state
        if state.upload_id is None:
            return
        self._client.abort_multipart_upload(Bucket=state.bucket, Key=state.key, UploadId=state.upload_id)


def backoff_delay(attempt: int, policy: UploadPolicy, rng: Callable[[], float] = random.random) -> float:
    """Exponential backoff with full jitter for the given 1-based *attempt*."""

    ceiling = min(policy.backoff_max_s, policy.backoff_base_s * (2 ** (attempt - 1)))
    return ceiling * rng()


def upload_with_resume(
    client,
    source: Path,
    *,
    bucket: str,
    key: str,
    policy: UploadPolicy,
    logger: Optional[DumpLogger] = None,
    sleep: Callable[[float], None] = time.sleep,
    rng: Callable[[], float] = random.random,
) -> int:
    """Upload *source* to ``s3://bucket/key`` and return the number of attempts used.

    Raises:
        UploadFailed: after ``policy.max_attempts`` resumable failures or on the
            first non-resumable one. The unfinished multipart upload is aborted.
    """

    uploader = MultipartUploader(client, source, bucket=bucket, key=key, part_size=policy.part_size_bytes)
    attempt = 0
    while True:
        attempt += 1
        try:
            uploader.upload()
            if logger:
                logger.info("upload_complete", phase=Phase.PLACE, key=key, attempts=attempt, parts=len(uploader.state.parts))
            return attempt
        except MultipartUploadError as exc:
            last_error = exc
            if not exc.resumable or attempt >= policy.max_attempts:
                break
            delay = backoff_delay(attempt, policy, rng)
            if logger:
                logger.warning(
                    "upload_retry",
                    phase=Phase.PLACE,
                    key=key,
                    attempt=attempt,
                    acknowledged_parts=len(exc.state.parts),
                    delay_s=round(delay, 3),
                    error=str(exc),
                )
            sleep(delay)
            uploader = MultipartUploader(client, source, state=exc.state)

    try:
        uploader.abort()
    except (BotoCoreError, ClientError) as exc:
        if logger:
            logger.warning("upload_abort_failed", phase=Phase.PLACE, key=key, upload_id=uploader.state.upload_id, error=str(exc))
    if logger:
        logger.error("upload_failed", phase=Phase.PLACE, key=key, attempts=attempt, error=str(last_error))
    raise UploadFailed(attempt, last_error.cause or last_error) from last_error


__all__ = [
    "MultipartUploader",
    "UploadState",
    "backoff_delay",
    "is_resumable",
    "part_count",
    "upload_with_resume",
]
