"""S3 object storage for uploaded source PDFs."""
from __future__ import annotations

import logging
import re
import time
from typing import Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

from extensions import db
from models import StorageCleanup, utcnow

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when object storage rejects or cannot complete a call."""


def _client():
    config = current_app.config
    return boto3.client(
        "s3",
        region_name=config.get("AWS_REGION"),
        aws_access_key_id=config.get("AWS_ACCESS_KEY_ID"),
        aws_secret_access_key=config.get("AWS_SECRET_ACCESS_KEY"),
    )


def _bucket() -> str:
    return current_app.config["AWS_S3_BUCKET_NAME"]


def generate_key(filename: str, source_id: Optional[int] = None) -> str:
    safe_name = re.sub(r"[^a-zA-Z0-9.-]", "_", filename or "document.pdf")
    prefix = f"sources/{source_id}" if source_id else "sources/temp"
    return f"{prefix}/{int(time.time() * 1000)}_{safe_name}"


def upload_file(data: bytes, key: str, content_type: str = "application/pdf") -> str:
    try:
        _client().put_object(
            Bucket=_bucket(),
            Key=key,
            Body=data,
            ContentType=content_type,
            Metadata={"uploadedAt": utcnow().isoformat()},
        )
    except (BotoCoreError, ClientError) as exc:
        raise StorageError(f"Upload of {key} failed: {exc}") from exc
    return key


def download_file(key: str) -> bytes:
    try:
        response = _client().get_object(Bucket=_bucket(), Key=key)
        return response["Body"].read()
    except (BotoCoreError, ClientError) as exc:
        raise StorageError(f"Download of {key} failed: {exc}") from exc


def generate_presigned_url(key: str, ttl_seconds: Optional[int] = None) -> str:
    ttl = ttl_seconds or current_app.config.get("PRESIGNED_URL_TTL", 3600)
    try:
        return _client().generate_presigned_url(
            "get_object",
            Params={"Bucket": _bucket(), "Key": key},
            ExpiresIn=ttl,
        )
    except (BotoCoreError, ClientError) as exc:
        raise StorageError(f"Could not sign a download URL for {key}: {exc}") from exc


def delete_file(key: str) -> None:
    try:
        _client().delete_object(Bucket=_bucket(), Key=key)
    except (BotoCoreError, ClientError) as exc:
        raise StorageError(f"Delete of {key} failed: {exc}") from exc


def remove_file_best_effort(key: Optional[str]) -> bool:
    """Delete ``key`` now, or queue it for ``flask storage sweep``.

    The queue row is added to the session; the caller commits it.
    """
    if not key:
        return True
    try:
        delete_file(key)
        return True
    except StorageError as exc:
        logger.warning("Queueing %s for later deletion: %s", key, exc)
        db.session.add(StorageCleanup(s3_key=key, last_error=str(exc)))
        return False


def sweep_pending_deletions(limit: Optional[int] = None) -> Tuple[int, int]:
    query = db.session.query(StorageCleanup).order_by(StorageCleanup.created_at, StorageCleanup.id)
    if limit:
        query = query.limit(limit)
    removed = failed = 0
    for entry in query.all():
        try:
            delete_file(entry.s3_key)
        except StorageError as exc:
            entry.failures += 1
            entry.last_error = str(exc)
            failed += 1
            logger.warning("Deletion of %s failed again (%s attempts)", entry.s3_key, entry.failures)
            continue
        db.session.delete(entry)
        removed += 1
    db.session.commit()
    return removed, failed
