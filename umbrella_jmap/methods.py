"""Typed argument records for the JMAP methods this client issues.

Each record knows its method name and the capabilities it needs; the
closed set of records is the only way to build a :class:`MethodCall`.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, ClassVar

from pydantic import Field, field_validator, model_validator

from .protocol import Capability, CreationRef, MethodArguments, Patch, Reference, WireModel

MAIL_CAPABILITIES = (Capability.CORE, Capability.MAIL)
SUBMISSION_CAPABILITIES = (Capability.CORE, Capability.MAIL, Capability.SUBMISSION)

MAX_BODY_VALUE_BYTES = 1024 * 1024


def utc_date(value: datetime) -> str:
    """Format *value* as a JMAP ``UTCDate`` (``2025-06-01T12:00:00Z``)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class Comparator(WireModel):
    property: str
    is_ascending: bool = False


RECEIVED_DESC = [Comparator(property="receivedAt", is_ascending=False)]


class EmailFilter(WireModel):
    """``Email/query`` filter condition.  All set predicates must hold.

    ``after`` / ``before`` are passed to the server verbatim: their
    boundary inclusiveness is whatever the server implements.
    """

    in_mailbox: str | None = None
    in_mailbox_other_than: list[str] | None = None
    before: str | None = None
    after: str | None = None
    min_size: int | None = None
    max_size: int | None = None
    has_keyword: str | None = None
    not_keyword: str | None = None
    has_attachment: bool | None = None
    text: str | None = None
    from_: str | None = Field(default=None, alias="from")
    to: str | None = None
    cc: str | None = None
    bcc: str | None = None
    subject: str | None = None
    body: str | None = None

    unread_only: bool = Field(default=False, exclude=True)
    flagged_only: bool = Field(default=False, exclude=True)

    @field_validator("before", "after", mode="before")
    @classmethod
    def _format_dates(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return utc_date(value)
        return value

    @model_validator(mode="after")
    def _apply_shortcuts(self) -> EmailFilter:
        if self.unread_only and self.not_keyword is None:
            self.not_keyword = "$seen"
        if self.flagged_only and self.has_keyword is None:
            self.has_keyword = "$flagged"
        return self


class MailboxGet(MethodArguments):
    method: ClassVar[str] = "Mailbox/get"
    capabilities: ClassVar[tuple[str, ...]] = MAIL_CAPABILITIES

    account_id: str
    ids: list[str] | Reference | None = None
    properties: list[str] | None = None


class IdentityGet(MethodArguments):
    method: ClassVar[str] = "Identity/get"
    capabilities: ClassVar[tuple[str, ...]] = (Capability.CORE, Capability.SUBMISSION)

    account_id: str
    ids: list[str] | Reference | None = None
    properties: list[str] | None = None


class EmailQuery(MethodArguments):
    method: ClassVar[str] = "Email/query"
    capabilities: ClassVar[tuple[str, ...]] = MAIL_CAPABILITIES

    account_id: str
    filter: EmailFilter | None = None
    sort: list[Comparator] | None = None
    limit: int | None = None
    position: int | None = None
    collapse_threads: bool | None = None
    calculate_total: bool | None = None


class EmailGet(MethodArguments):
    method: ClassVar[str] = "Email/get"
    capabilities: ClassVar[tuple[str, ...]] = MAIL_CAPABILITIES

    account_id: str
    ids: list[str] | Reference
    properties: list[str] | None = None
    fetch_text_body_values: bool | None = None
    fetch_html_body_values: bool | None = Field(default=None, alias="fetchHTMLBodyValues")
    max_body_value_bytes: int | None = None


class EmailSet(MethodArguments):
    method: ClassVar[str] = "Email/set"
    capabilities: ClassVar[tuple[str, ...]] = MAIL_CAPABILITIES

    account_id: str
    if_in_state: str | None = None
    create: dict[str, dict[str, Any]] | None = None
    update: dict[str, Patch] | None = None
    destroy: list[str] | Reference | None = None


class EmailSubmissionCreate(WireModel):
    email_id: str | CreationRef
    identity_id: str


class EmailSubmissionSet(MethodArguments):
    method: ClassVar[str] = "EmailSubmission/set"
    capabilities: ClassVar[tuple[str, ...]] = SUBMISSION_CAPABILITIES

    account_id: str
    create: dict[str, EmailSubmissionCreate] | None = None
    on_success_destroy_email: list[str | CreationRef] | None = None


class ThreadGet(MethodArguments):
    method: ClassVar[str] = "Thread/get"
    capabilities: ClassVar[tuple[str, ...]] = MAIL_CAPABILITIES

    account_id: str
    ids: list[str] | Reference
