"""Incremental new-mail polling with a ``receivedAt`` watermark.

One cycle::

    Idle -> Querying -> Fetching -> Deduplicating -> Emitting -> Idle
                  \\-> NoNewData <-/          \\-> NoNewData

A cycle either emits nothing and leaves the watermark alone, or emits one
batch and moves the watermark forward.  Only the watermark is carried
between cycles, through the injected :class:`StateStore`.  The host must
not run two cycles for the same store at once.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import structlog

from .client import JmapClient
from .config import PollerConfig
from .mail import MailOperations
from .methods import RECEIVED_DESC, EmailFilter
from .models import PollResult
from .state import StateStore

logger = structlog.get_logger()

BASE_PROPERTIES = [
    "id",
    "blobId",
    "threadId",
    "mailboxIds",
    "keywords",
    "receivedAt",
    "from",
    "to",
    "cc",
    "subject",
    "preview",
    "hasAttachment",
]
BODY_PROPERTIES = ["bodyValues", "textBody", "htmlBody", "bodyStructure"]

Emit = Callable[[list[dict[str, Any]]], Awaitable[None]]


class PollState(str, Enum):
    IDLE = "idle"
    QUERYING = "querying"
    FETCHING = "fetching"
    DEDUPLICATING = "deduplicating"
    EMITTING = "emitting"
    NO_NEW_DATA = "no_new_data"


def parse_utc_date(value: str) -> datetime:
    """Parse a JMAP ``UTCDate``; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _received_at(email: dict[str, Any]) -> datetime | None:
    value = email.get("receivedAt")
    if not isinstance(value, str) or not value:
        return None
    try:
        return parse_utc_date(value)
    except ValueError:
        return None


def simplify(email: dict[str, Any]) -> dict[str, Any]:
    """Compact projection of an email record."""
    keywords = email.get("keywords") or {}
    return {
        "id": email.get("id"),
        "threadId": email.get("threadId"),
        "from": email.get("from"),
        "to": email.get("to"),
        "cc": email.get("cc"),
        "subject": email.get("subject"),
        "preview": email.get("preview"),
        "receivedAt": email.get("receivedAt"),
        "hasAttachment": email.get("hasAttachment"),
        "isRead": bool(keywords.get("$seen")),
        "isFlagged": bool(keywords.get("$flagged")),
    }


class Poller:
    """Detects new mail since the stored watermark."""

    def __init__(self, store: StateStore, config: PollerConfig) -> None:
        self._store = store
        self._config = config
        self._state = PollState.IDLE

    @property
    def state(self) -> PollState:
        return self._state

    def properties(self) -> list[str]:
        properties = list(BASE_PROPERTIES)
        if not self._config.simple:
            properties += BODY_PROPERTIES
        if self._config.include_attachments:
            properties.append("attachments")
        return properties

    async def poll_once(self, client: JmapClient, emit: Emit | None = None) -> PollResult:
        """Run one cycle.

        With *emit*, the batch is handed over before the watermark is
        saved, so a failing *emit* leaves the watermark untouched and the
        same emails are picked up again next cycle.
        """
        if self._state is not PollState.IDLE:
            raise RuntimeError(f"Poll cycle already running (state={self._state.value})")

        try:
            return await self._cycle(MailOperations(client), emit)
        finally:
            self._state = PollState.IDLE

    async def _cycle(self, mail: MailOperations, emit: Emit | None) -> PollResult:
        key = self._config.watermark_key
        watermark: str | None = await self._store.get(key)

        self._state = PollState.QUERYING
        query = await mail.query_emails(
            EmailFilter(in_mailbox=self._config.mailbox, after=watermark),
            RECEIVED_DESC,
            limit=self._config.page_size,
        )
        if not query.ids:
            return self._no_data(watermark, "empty_query")

        self._state = PollState.FETCHING
        emails = await mail.get_emails(
            query.ids,
            self.properties(),
            fetch_text_body_values=not self._config.simple,
            fetch_html_body_values=not self._config.simple,
        )
        dated: list[tuple[datetime, dict[str, Any]]] = []
        undated: list[str | None] = []
        for email in emails:
            received_at = _received_at(email)
            if received_at is None:
                undated.append(email.get("id"))
            else:
                dated.append((received_at, email))
        if undated:
            # missing or unparseable receivedAt
            logger.warning("poll_emails_without_received_at", dropped=len(undated), email_ids=undated)
        if not dated:
            return self._no_data(watermark, "empty_fetch")

        self._state = PollState.DEDUPLICATING
        newest_at, newest = max(dated, key=lambda pair: pair[0])
        if watermark is None:
            fresh = [email for _, email in dated]
            new_watermark = newest["receivedAt"]
        else:
            watermark_at = parse_utc_date(watermark)
            fresh = [email for received_at, email in dated if received_at > watermark_at]
            new_watermark = newest["receivedAt"] if newest_at > watermark_at else watermark
        if not fresh:
            return self._no_data(watermark, "only_seen_emails")

        self._state = PollState.EMITTING
        records = [simplify(e) for e in fresh] if self._config.simple else fresh
        if emit is not None:
            await emit(records)
        await self._store.set(key, new_watermark)

        logger.info(
            "poll_cycle_emitted",
            count=len(records),
            fetched=len(emails),
            previous_watermark=watermark,
            watermark=new_watermark,
        )
        return PollResult(records=records, watermark=new_watermark, previous_watermark=watermark)

    def _no_data(self, watermark: str | None, reason: str) -> PollResult:
        self._state = PollState.NO_NEW_DATA
        logger.debug("poll_cycle_no_new_data", reason=reason, watermark=watermark)
        return PollResult(records=[], watermark=watermark, previous_watermark=watermark)
