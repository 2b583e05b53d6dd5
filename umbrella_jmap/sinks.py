"""Destinations for email records emitted by the poller."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog
from aiokafka import AIOKafkaProducer
from pydantic import BaseModel, Field

from .config import KafkaConfig

logger = structlog.get_logger()


class DeadLetterEnvelope(BaseModel):
    """Wrapper for a record batch that failed delivery after retry exhaustion."""

    records: list[dict[str, Any]] = Field(description="The records that could not be delivered")
    connector_name: str = Field(description="Connector that produced the records")
    error: str = Field(description="Final error message")
    attempts: int = Field(description="Total delivery attempts made")
    failed_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Timestamp when the batch was routed to dead-letter (UTC)",
    )


class RecordSink(Protocol):
    """Host sink accepting one record batch per poll cycle."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def send(self, records: list[dict[str, Any]]) -> None: ...

    async def send_dead_letter(self, envelope: DeadLetterEnvelope) -> None: ...


class KafkaRecordSink:
    """Publishes each record to the records topic, keyed by email ID."""

    def __init__(self, config: KafkaConfig) -> None:
        self._config = config
        self._producer: AIOKafkaProducer | None = None

    async def start(self) -> None:
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self._config.bootstrap_servers,
            acks=self._config.producer_acks,
            compression_type=self._config.producer_compression,
        )
        await self._producer.start()
        logger.info("kafka_sink_started", servers=self._config.bootstrap_servers)

    async def stop(self) -> None:
        if self._producer is not None:
            await self._producer.stop()
            self._producer = None
            logger.info("kafka_sink_stopped")

    async def send(self, records: list[dict[str, Any]]) -> None:
        assert self._producer is not None, "Producer not started"
        for record in records:
            key = str(record.get("id", "")).encode("utf-8")
            await self._producer.send_and_wait(
                self._config.records_topic,
                value=json.dumps(record, default=str).encode("utf-8"),
                key=key,
            )
        logger.debug("records_sent", topic=self._config.records_topic, count=len(records))

    async def send_dead_letter(self, envelope: DeadLetterEnvelope) -> None:
        assert self._producer is not None, "Producer not started"
        await self._producer.send_and_wait(
            self._config.dead_letter_topic,
            value=envelope.model_dump_json().encode("utf-8"),
            key=envelope.connector_name.encode("utf-8"),
        )
        logger.warning(
            "dead_letter_sent",
            topic=self._config.dead_letter_topic,
            count=len(envelope.records),
            error=envelope.error,
        )
