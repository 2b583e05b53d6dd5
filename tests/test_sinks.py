"""Tests for umbrella_jmap.sinks."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest

from umbrella_jmap.config import KafkaConfig
from umbrella_jmap.sinks import DeadLetterEnvelope, KafkaRecordSink


@pytest.fixture
def sink() -> KafkaRecordSink:
    return KafkaRecordSink(KafkaConfig(bootstrap_servers="kafka:9092", records_topic="emails"))


class TestKafkaRecordSink:
    @pytest.mark.asyncio
    async def test_start_creates_producer(self, sink: KafkaRecordSink):
        with patch("umbrella_jmap.sinks.AIOKafkaProducer") as MockProducer:
            mock_instance = AsyncMock()
            MockProducer.return_value = mock_instance
            await sink.start()
            MockProducer.assert_called_once_with(
                bootstrap_servers="kafka:9092", acks="all", compression_type="gzip"
            )
            mock_instance.start.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self, sink: KafkaRecordSink):
        await sink.stop()

    @pytest.mark.asyncio
    async def test_send_keys_by_email_id(self, sink: KafkaRecordSink):
        with patch("umbrella_jmap.sinks.AIOKafkaProducer") as MockProducer:
            mock_instance = AsyncMock()
            MockProducer.return_value = mock_instance
            await sink.start()

            await sink.send([{"id": "e1", "subject": "a"}, {"id": "e2", "subject": "b"}])

            assert mock_instance.send_and_wait.await_count == 2
            first = mock_instance.send_and_wait.call_args_list[0]
            assert first[0][0] == "emails"
            assert first[1]["key"] == b"e1"
            assert json.loads(first[1]["value"]) == {"id": "e1", "subject": "a"}

    @pytest.mark.asyncio
    async def test_send_without_start(self, sink: KafkaRecordSink):
        with pytest.raises(AssertionError, match="not started"):
            await sink.send([{"id": "e1"}])

    @pytest.mark.asyncio
    async def test_send_dead_letter(self, sink: KafkaRecordSink):
        with patch("umbrella_jmap.sinks.AIOKafkaProducer") as MockProducer:
            mock_instance = AsyncMock()
            MockProducer.return_value = mock_instance
            await sink.start()

            envelope = DeadLetterEnvelope(
                records=[{"id": "e1"}], connector_name="jmap-test", error="boom", attempts=3
            )
            await sink.send_dead_letter(envelope)

            call = mock_instance.send_and_wait.call_args
            assert call[0][0] == "dead-letter"
            assert call[1]["key"] == b"jmap-test"
            payload = json.loads(call[1]["value"])
            assert payload["records"] == [{"id": "e1"}]
            assert payload["attempts"] == 3
