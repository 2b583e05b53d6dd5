"""Data models for JMAP mail objects and connector output."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JmapObject(BaseModel):
    """Server object: camelCase on the wire, unknown properties kept."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Mailbox(JmapObject):
    """A mailbox (folder or label).  ``role`` is e.g. ``inbox`` or ``drafts``."""

    id: str
    name: str
    role: str | None = None
    parent_id: str | None = None
    total_emails: int = 0
    unread_emails: int = 0


class Identity(JmapObject):
    """A sender identity used for ``EmailSubmission``."""

    id: str
    name: str = ""
    email: str


class Thread(JmapObject):
    id: str
    email_ids: list[str] = Field(default_factory=list)


class Attachment(JmapObject):
    """Blob descriptor from an email's ``attachments`` property."""

    blob_id: str
    type: str = "application/octet-stream"
    name: str | None = None
    size: int = 0
    cid: str | None = None
    is_inline: bool = False
    disposition: str | None = None
    part_id: str | None = None

    @property
    def inline(self) -> bool:
        """Flagged inline by the server, or sent with ``Content-Disposition: inline``."""
        return self.is_inline or (self.disposition or "").lower() == "inline"


class AttachmentRecord(BaseModel):
    """Metadata emitted alongside each downloaded attachment payload."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email_id: str
    email_subject: str | None = None
    attachment_index: int
    file_name: str
    mime_type: str
    file_size: int
    is_inline: bool = False
    uri: str | None = Field(default=None, description="Storage URI when an attachment sink was used")


class QueryResult(BaseModel):
    """``Email/query`` result: matching IDs in sort order and the total count."""

    ids: list[str]
    total: int | None = None


class EmailAddress(BaseModel):
    name: str | None = None
    email: str


class PollResult(BaseModel):
    """Outcome of one poll cycle: either no data, or one batch and a new watermark."""

    records: list[dict[str, Any]] = Field(default_factory=list)
    watermark: str | None = Field(description="Watermark in effect after the cycle")
    previous_watermark: str | None = None
    polled_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def has_data(self) -> bool:
        return bool(self.records)
