"""S3 storage for downloaded attachments.

All boto3 calls are wrapped with ``asyncio.to_thread()`` to avoid blocking.
"""

from __future__ import annotations

import asyncio
import hashlib
import re

import boto3
import structlog

from .config import S3Config
from .models import AttachmentRecord

logger = structlog.get_logger()


class S3AttachmentSink:
    """Upload attachment payloads under ``<prefix>/<emailId>/<hash>_<name>``."""

    def __init__(self, config: S3Config) -> None:
        self._config = config
        self._client = None  # type: ignore[assignment]

    async def start(self) -> None:
        """Create the boto3 S3 client."""
        kwargs: dict = {"region_name": self._config.region}
        if self._config.endpoint_url:
            kwargs["endpoint_url"] = self._config.endpoint_url
        self._client = await asyncio.to_thread(boto3.client, "s3", **kwargs)
        logger.info("s3_sink_started", bucket=self._config.bucket)

    async def stop(self) -> None:
        self._client = None
        logger.info("s3_sink_stopped")

    async def put(self, record: AttachmentRecord, payload: bytes) -> str:
        """Upload one attachment.  Returns the ``s3://`` URI."""
        assert self._client is not None, "S3 client not started"
        content_hash = hashlib.sha256(payload).hexdigest()[:12]
        key = (
            f"{self._config.attachments_prefix}/{_sanitize(record.email_id)}/"
            f"{content_hash}_{_sanitize(record.file_name)}"
        )
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self._config.bucket,
            Key=key,
            Body=payload,
            ContentType=record.mime_type,
        )
        uri = f"s3://{self._config.bucket}/{key}"
        logger.debug("attachment_uploaded", email_id=record.email_id, file_name=record.file_name, uri=uri)
        return uri


def _sanitize(name: str) -> str:
    """Remove characters unsafe for S3 keys."""
    return re.sub(r"[^\w.\-]", "_", name)
