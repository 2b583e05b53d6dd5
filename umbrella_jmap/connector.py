"""JmapConnector: run poll cycles on an interval and deliver each batch."""

from __future__ import annotations

import asyncio
import signal
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from .auth import TokenProvider
from .client import open_client
from .config import ConnectorConfig
from .errors import JmapError
from .logging import setup_logging
from .models import PollResult
from .poller import Poller
from .retry import with_retry
from .sinks import DeadLetterEnvelope, KafkaRecordSink, RecordSink
from .state import JsonFileStateStore, StateStore

logger = structlog.get_logger()


def install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    """Set *shutdown_event* on SIGTERM / SIGINT.  Call from the running loop."""
    loop = asyncio.get_running_loop()

    def _handle(sig: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _handle, sig)


class JmapConnector:
    """Polls the JMAP server for new mail until shut down.

    Each cycle opens a fresh client (and so a fresh session), runs one
    :class:`Poller` cycle and hands the batch to the sink.  Delivery is
    retried; a batch that still fails is dead-lettered.  The watermark is
    saved only after the batch was delivered or dead-lettered.
    """

    def __init__(
        self,
        config: ConnectorConfig,
        *,
        sink: RecordSink | None = None,
        store: StateStore | None = None,
        token_provider: TokenProvider | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._sink = sink or KafkaRecordSink(config.kafka)
        self._store = store or JsonFileStateStore(config.poller.state_path)
        self._poller = Poller(self._store, config.poller)
        self._token_provider = token_provider
        self._http_transport = http_transport
        self._shutdown_event = asyncio.Event()
        self._last_poll_time: datetime | None = None
        self._cycles: int = 0
        self._emails_emitted: int = 0

    @property
    def poller(self) -> Poller:
        return self._poller

    def stop(self) -> None:
        self._shutdown_event.set()

    async def _deliver(self, records: list[dict[str, Any]]) -> None:
        @with_retry(self.config.retry)
        async def _send() -> None:
            await self._sink.send(records)

        try:
            await _send()
        except Exception as exc:
            logger.error("record_delivery_failed_permanently", count=len(records), error=str(exc))
            await self._sink.send_dead_letter(
                DeadLetterEnvelope(
                    records=records,
                    connector_name=self.config.name,
                    error=str(exc),
                    attempts=self.config.retry.max_attempts,
                )
            )

    async def run_cycle(self) -> PollResult:
        """One poll cycle with a fresh client."""
        async with open_client(
            self.config.jmap,
            token_provider=self._token_provider,
            http_transport=self._http_transport,
        ) as client:
            result = await self._poller.poll_once(client, emit=self._deliver)

        self._cycles += 1
        self._last_poll_time = datetime.now(UTC)
        self._emails_emitted += len(result.records)
        return result

    async def run(self) -> None:
        """Poll until SIGTERM / SIGINT.  Failed cycles are logged and retried next interval."""
        setup_logging(json=self.config.log_json, level=self.config.log_level)
        install_signal_handlers(self._shutdown_event)

        logger.info(
            "connector_starting",
            connector=self.config.name,
            server_url=self.config.jmap.server_url,
            mailbox=self.config.poller.mailbox,
        )
        await self._sink.start()
        try:
            await self._poll_loop()
        finally:
            await self._sink.stop()
            logger.info("connector_stopped", connector=self.config.name)

    async def _poll_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await self.run_cycle()
            except JmapError as exc:
                logger.error("poll_cycle_failed", connector=self.config.name, error=str(exc))

            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.config.poller.interval_seconds,
                )
            except TimeoutError:
                pass

    async def health_check(self) -> dict[str, object]:
        return {
            "jmap_server_url": self.config.jmap.server_url,
            "mailbox": self.config.poller.mailbox,
            "poller_state": self._poller.state.value,
            "last_poll_time": (
                self._last_poll_time.isoformat() if self._last_poll_time else None
            ),
            "watermark": await self._store.get(self.config.poller.watermark_key),
            "cycles": self._cycles,
            "emails_emitted": self._emails_emitted,
        }
