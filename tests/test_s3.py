"""Tests for umbrella_jmap.s3."""

from __future__ import annotations

import hashlib
from unittest.mock import MagicMock, patch

import pytest

from umbrella_jmap.config import S3Config
from umbrella_jmap.models import AttachmentRecord
from umbrella_jmap.s3 import S3AttachmentSink, _sanitize


@pytest.fixture
def s3_config() -> S3Config:
    return S3Config(bucket="test-bucket", attachments_prefix="raw/jmap/attachments")


@pytest.fixture
def sink(s3_config: S3Config) -> S3AttachmentSink:
    return S3AttachmentSink(s3_config)


def _record(**overrides) -> AttachmentRecord:
    values = dict(
        email_id="e1",
        attachment_index=0,
        file_name="report 2025.pdf",
        mime_type="application/pdf",
        file_size=4,
    )
    values.update(overrides)
    return AttachmentRecord(**values)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_creates_client(self, sink: S3AttachmentSink):
        with patch("umbrella_jmap.s3.boto3") as mock_boto3:
            mock_boto3.client.return_value = MagicMock()
            await sink.start()
            mock_boto3.client.assert_called_once_with("s3", region_name="us-east-1")

    @pytest.mark.asyncio
    async def test_start_with_endpoint_url(self):
        sink = S3AttachmentSink(S3Config(bucket="b", endpoint_url="http://minio:9000"))
        with patch("umbrella_jmap.s3.boto3") as mock_boto3:
            mock_boto3.client.return_value = MagicMock()
            await sink.start()
            mock_boto3.client.assert_called_once_with(
                "s3", region_name="us-east-1", endpoint_url="http://minio:9000"
            )

    @pytest.mark.asyncio
    async def test_stop(self, sink: S3AttachmentSink):
        with patch("umbrella_jmap.s3.boto3") as mock_boto3:
            mock_boto3.client.return_value = MagicMock()
            await sink.start()
            await sink.stop()
            assert sink._client is None


class TestPut:
    @pytest.mark.asyncio
    async def test_put(self, sink: S3AttachmentSink):
        mock_client = MagicMock()
        with patch("umbrella_jmap.s3.boto3") as mock_boto3:
            mock_boto3.client.return_value = mock_client
            await sink.start()

            uri = await sink.put(_record(), b"%PDF")

        digest = hashlib.sha256(b"%PDF").hexdigest()[:12]
        key = f"raw/jmap/attachments/e1/{digest}_report_2025.pdf"
        assert uri == f"s3://test-bucket/{key}"
        mock_client.put_object.assert_called_once_with(
            Bucket="test-bucket",
            Key=key,
            Body=b"%PDF",
            ContentType="application/pdf",
        )

    @pytest.mark.asyncio
    async def test_put_without_start(self, sink: S3AttachmentSink):
        with pytest.raises(AssertionError, match="not started"):
            await sink.put(_record(), b"x")


class TestSanitize:
    def test_replaces_unsafe(self):
        assert _sanitize("a/b c?.txt") == "a_b_c_.txt"

    def test_keeps_safe(self):
        assert _sanitize("report-1.final.pdf") == "report-1.final.pdf"
