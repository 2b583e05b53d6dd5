"""Attachment retrieval: metadata lookup, inline/MIME filtering, blob download."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

import structlog
from pydantic import BaseModel, Field, field_validator

from .client import JmapClient
from .errors import error_context
from .mail import MailOperations
from .models import Attachment, AttachmentRecord

logger = structlog.get_logger()

DEFAULT_ATTACHMENT_NAME = "attachment"


def matches_mime_type(mime_type: str, pattern: str) -> bool:
    """Case-insensitive match of *mime_type* against ``type/subtype`` or ``type/*``."""
    mime_type = mime_type.lower()
    pattern = pattern.strip().lower()
    if pattern.endswith("/*"):
        return mime_type.startswith(pattern[:-1])
    return mime_type == pattern


def parse_mime_filter(value: str | Sequence[str] | None) -> list[str]:
    """``"image/*, application/pdf"`` (or a list) to a clean list of patterns."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [item.strip() for item in value if item.strip()]


class AttachmentOptions(BaseModel):
    """Selection policy.  An empty ``mime_type_filter`` lets everything through."""

    include_inline: bool = False
    mime_type_filter: list[str] = Field(default_factory=list)

    @field_validator("mime_type_filter", mode="before")
    @classmethod
    def _parse_filter(cls, value: str | Sequence[str] | None) -> list[str]:
        return parse_mime_filter(value)


def select_attachments(
    attachments: Iterable[Attachment],
    options: AttachmentOptions | None = None,
) -> list[Attachment]:
    options = options or AttachmentOptions()
    selected: list[Attachment] = []
    for attachment in attachments:
        if attachment.inline and not options.include_inline:
            continue
        if options.mime_type_filter and not any(
            matches_mime_type(attachment.type, pattern) for pattern in options.mime_type_filter
        ):
            continue
        selected.append(attachment)
    return selected


class AttachmentSink(Protocol):
    """Host-side store for downloaded attachment payloads."""

    async def put(self, record: AttachmentRecord, payload: bytes) -> str:
        """Store *payload* and return its URI."""
        ...


class AttachmentPipeline:
    """Downloads an email's attachments one after another.

    Any failed download fails the whole call for that email; callers that
    want per-attachment tolerance must drive :meth:`download_blob` themselves.
    """

    def __init__(self, client: JmapClient) -> None:
        self._client = client
        self._mail = MailOperations(client)

    async def list_attachments(self, email_id: str) -> list[Attachment]:
        email = await self._mail.get_email(email_id, ["id", "attachments"])
        return [Attachment.model_validate(a) for a in email.get("attachments") or []]

    async def download_blob(self, account_id: str, blob_id: str, name: str, type: str) -> bytes:
        session = await self._client.session()
        url = session.download_url_for(account_id, blob_id, name, type)
        payload = await self._client.download(url)
        logger.debug("attachment_downloaded", blob_id=blob_id, name=name, size=len(payload))
        return payload

    async def fetch_attachments(
        self,
        email_id: str,
        options: AttachmentOptions | None = None,
        sink: AttachmentSink | None = None,
    ) -> list[tuple[AttachmentRecord, bytes]]:
        """Download the selected attachments of *email_id* as ``(record, payload)`` pairs.

        With a *sink*, each payload is also stored and its URI recorded.
        """
        with error_context("fetch_attachments", email_id=email_id):
            email = await self._mail.get_email(email_id, ["id", "subject", "attachments"])
            attachments = [Attachment.model_validate(a) for a in email.get("attachments") or []]
            selected = select_attachments(attachments, options)
            account_id = await self._client.account_id()

            results: list[tuple[AttachmentRecord, bytes]] = []
            for index, attachment in enumerate(selected):
                name = attachment.name or DEFAULT_ATTACHMENT_NAME
                payload = await self.download_blob(account_id, attachment.blob_id, name, attachment.type)
                record = AttachmentRecord(
                    email_id=email["id"],
                    email_subject=email.get("subject"),
                    attachment_index=index,
                    file_name=name,
                    mime_type=attachment.type,
                    file_size=attachment.size,
                    is_inline=attachment.inline,
                )
                if sink is not None:
                    record.uri = await sink.put(record, payload)
                results.append((record, payload))

            logger.info(
                "attachments_fetched",
                email_id=email_id,
                available=len(attachments),
                downloaded=len(results),
            )
            return results
