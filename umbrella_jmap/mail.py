"""Mail operations composed from one or two batched JMAP calls.

Every operation aborts on the first ``error`` method response: a mixed
success/error envelope is never reported as success.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

import structlog
from pydantic import BaseModel, Field, field_validator

from .client import JmapClient
from .errors import JmapSetError, NoDraftsMailboxError, NotFoundError, error_context
from .methods import (
    MAX_BODY_VALUE_BYTES,
    RECEIVED_DESC,
    SUBMISSION_CAPABILITIES,
    Comparator,
    EmailFilter,
    EmailGet,
    EmailQuery,
    EmailSet,
    EmailSubmissionCreate,
    EmailSubmissionSet,
    IdentityGet,
    MailboxGet,
    ThreadGet,
)
from .models import EmailAddress, Identity, Mailbox, QueryResult, Thread
from .protocol import Batch, CreationRef, Patch, ResponseEnvelope

logger = structlog.get_logger()

DEFAULT_EMAIL_PROPERTIES = [
    "id",
    "blobId",
    "threadId",
    "mailboxIds",
    "keywords",
    "size",
    "receivedAt",
    "messageId",
    "inReplyTo",
    "references",
    "from",
    "to",
    "cc",
    "bcc",
    "replyTo",
    "subject",
    "sentAt",
    "hasAttachment",
    "preview",
    "bodyStructure",
    "bodyValues",
    "textBody",
    "htmlBody",
    "attachments",
]

DRAFT_CREATION_ID = "draft"
SUBMISSION_CREATION_ID = "send"


def parse_addresses(value: str | Iterable[str | dict[str, Any] | EmailAddress] | None) -> list[EmailAddress]:
    """Parse ``"a@x.com, b@y.com"`` (or a list) into address objects."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    addresses: list[EmailAddress] = []
    for item in value:
        if isinstance(item, EmailAddress):
            addresses.append(item)
        elif isinstance(item, dict):
            addresses.append(EmailAddress.model_validate(item))
        elif item.strip():
            addresses.append(EmailAddress(email=item.strip()))
    return addresses


class EmailDraft(BaseModel):
    """A message to compose.  Address fields accept comma-separated strings."""

    to: list[EmailAddress]
    subject: str = ""
    body: str = ""
    html: bool = False
    cc: list[EmailAddress] = Field(default_factory=list)
    bcc: list[EmailAddress] = Field(default_factory=list)
    from_: list[EmailAddress] = Field(default_factory=list, alias="from")
    in_reply_to: list[str] | None = None
    references: list[str] | None = None
    thread_id: str | None = None

    model_config = {"populate_by_name": True}

    @field_validator("to", "cc", "bcc", "from_", mode="before")
    @classmethod
    def _parse_addresses(cls, value: Any) -> Any:
        return parse_addresses(value)

    def to_create(self, drafts_mailbox_id: str) -> dict[str, Any]:
        """``Email/set`` create object, filed in Drafts with ``$draft`` set."""
        part_type = "text/html" if self.html else "text/plain"
        email: dict[str, Any] = {
            "to": [a.model_dump(exclude_none=True) for a in self.to],
            "subject": self.subject,
            "bodyValues": {
                "body": {"value": self.body, "isEncodingProblem": False, "isTruncated": False},
            },
            "htmlBody" if self.html else "textBody": [{"partId": "body", "type": part_type}],
            "mailboxIds": {drafts_mailbox_id: True},
            "keywords": {"$draft": True},
        }
        for key, addresses in (("cc", self.cc), ("bcc", self.bcc), ("from", self.from_)):
            if addresses:
                email[key] = [a.model_dump(exclude_none=True) for a in addresses]
        if self.in_reply_to:
            email["inReplyTo"] = self.in_reply_to
        if self.references:
            email["references"] = self.references
        if self.thread_id:
            email["threadId"] = self.thread_id
        return email


def _raise_set_errors(
    response: ResponseEnvelope,
    call_id: str,
    kind: str,
    object_ids: Iterable[str],
) -> None:
    """Raise :class:`JmapSetError` if any targeted object is in ``notCreated``/``notUpdated``/``notDestroyed``."""
    result = response.result(call_id)
    rejected = result.get(kind) or {}
    for object_id in object_ids:
        error = rejected.get(object_id)
        if error is not None:
            raise JmapSetError(
                str(error.get("type", "unknown")),
                error.get("description"),
                object_id=object_id,
                payload=error,
                call_id=call_id,
                method=response.get(call_id).name,
                response=response,
            )


class MailOperations:
    """Domain-level mail operations over one :class:`JmapClient`."""

    def __init__(self, client: JmapClient) -> None:
        self._client = client

    # ------------------------------------------------------------------
    # Mailboxes and identities
    # ------------------------------------------------------------------

    async def list_mailboxes(self) -> list[Mailbox]:
        with error_context("list_mailboxes"):
            batch = Batch()
            call = batch.add(MailboxGet(account_id=await self._client.account_id()))
            response = await self._client.call(batch)
            return [Mailbox.model_validate(m) for m in response.result(call)["list"]]

    async def find_mailbox_by_name(self, name: str) -> Mailbox | None:
        for mailbox in await self.list_mailboxes():
            if mailbox.name == name:
                return mailbox
        return None

    async def find_mailbox_by_role(self, role: str) -> Mailbox | None:
        for mailbox in await self.list_mailboxes():
            if mailbox.role == role:
                return mailbox
        return None

    async def get_mailbox(self, mailbox_id: str) -> Mailbox:
        for mailbox in await self.list_mailboxes():
            if mailbox.id == mailbox_id:
                return mailbox
        raise NotFoundError("Mailbox", mailbox_id)

    async def list_identities(self) -> list[Identity]:
        with error_context("list_identities"):
            batch = Batch()
            call = batch.add(IdentityGet(account_id=await self._client.account_id()))
            response = await self._client.call(batch)
            return [Identity.model_validate(i) for i in response.result(call)["list"]]

    async def find_identity(self, email: str) -> Identity | None:
        for identity in await self.list_identities():
            if identity.email.lower() == email.lower():
                return identity
        return None

    # ------------------------------------------------------------------
    # Query and fetch
    # ------------------------------------------------------------------

    async def query_emails(
        self,
        filter: EmailFilter | None = None,
        sort: Sequence[Comparator] | None = None,
        limit: int = 50,
        position: int = 0,
    ) -> QueryResult:
        with error_context("query_emails"):
            batch = Batch()
            call = batch.add(
                EmailQuery(
                    account_id=await self._client.account_id(),
                    filter=filter or EmailFilter(),
                    sort=list(sort) if sort is not None else RECEIVED_DESC,
                    limit=limit,
                    position=position,
                )
            )
            response = await self._client.call(batch)
            result = response.result(call)
            return QueryResult(ids=result["ids"], total=result.get("total"))

    async def get_emails(
        self,
        ids: Sequence[str],
        properties: Sequence[str] | None = None,
        *,
        fetch_text_body_values: bool = True,
        fetch_html_body_values: bool = True,
    ) -> list[dict[str, Any]]:
        """Fetch emails by ID.  Unknown IDs are left out of the result."""
        if not ids:
            return []
        with error_context("get_emails", count=len(ids)):
            batch = Batch()
            call = batch.add(
                EmailGet(
                    account_id=await self._client.account_id(),
                    ids=list(ids),
                    properties=list(properties or DEFAULT_EMAIL_PROPERTIES),
                    fetch_text_body_values=fetch_text_body_values,
                    fetch_html_body_values=fetch_html_body_values,
                    max_body_value_bytes=MAX_BODY_VALUE_BYTES,
                )
            )
            response = await self._client.call(batch)
            result = response.result(call)
            if result.get("notFound"):
                logger.debug("jmap_emails_not_found", ids=result["notFound"])
            return list(result["list"])

    async def get_email(self, email_id: str, properties: Sequence[str] | None = None) -> dict[str, Any]:
        """Fetch one email; raises :class:`NotFoundError` if it does not exist."""
        emails = await self.get_emails([email_id], properties)
        if not emails:
            raise NotFoundError("Email", email_id)
        return emails[0]

    async def list_emails(
        self,
        filter: EmailFilter | None = None,
        limit: int = 50,
        properties: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Query, then fetch the matching emails in query order."""
        query = await self.query_emails(filter, limit=limit)
        if not query.ids:
            return []
        return await self.get_emails(query.ids, properties)

    # ------------------------------------------------------------------
    # Compose and send
    # ------------------------------------------------------------------

    async def _drafts_mailbox_id(self) -> str:
        drafts = await self.find_mailbox_by_role("drafts")
        if drafts is None:
            raise NoDraftsMailboxError("Drafts mailbox not found")
        return drafts.id

    async def create_draft(self, draft: EmailDraft) -> dict[str, Any]:
        """Store *draft* in the Drafts mailbox; returns the created object."""
        with error_context("create_draft"):
            drafts_id = await self._drafts_mailbox_id()
            batch = Batch()
            call = batch.add(
                EmailSet(
                    account_id=await self._client.account_id(),
                    create={DRAFT_CREATION_ID: draft.to_create(drafts_id)},
                )
            )
            response = await self._client.call(batch)
            _raise_set_errors(response, call, "notCreated", [DRAFT_CREATION_ID])
            created: dict[str, Any] = response.result(call)["created"][DRAFT_CREATION_ID]
            logger.info("jmap_draft_created", email_id=created.get("id"))
            return created

    async def send_email(self, draft: EmailDraft, identity_id: str) -> dict[str, Any]:
        """Create *draft* and submit it in one request.

        The submission refers to the draft as ``#draft`` and destroys it on
        success.  If the submission is rejected the draft stays in Drafts;
        the :class:`JmapMethodError` then carries the envelope, and
        ``exc.response.created_id("c1", "draft")`` gives the draft ID.
        """
        with error_context("send_email", identity_id=identity_id):
            drafts_id = await self._drafts_mailbox_id()
            account_id = await self._client.account_id()

            batch = Batch(using=SUBMISSION_CAPABILITIES)
            draft_call = batch.add(
                EmailSet(
                    account_id=account_id,
                    create={DRAFT_CREATION_ID: draft.to_create(drafts_id)},
                )
            )
            submit_call = batch.add(
                EmailSubmissionSet(
                    account_id=account_id,
                    create={
                        SUBMISSION_CREATION_ID: EmailSubmissionCreate(
                            email_id=CreationRef(DRAFT_CREATION_ID),
                            identity_id=identity_id,
                        )
                    },
                    on_success_destroy_email=[CreationRef(SUBMISSION_CREATION_ID)],
                )
            )
            response = await self._client.call(batch)
            response.raise_for_errors()
            _raise_set_errors(response, draft_call, "notCreated", [DRAFT_CREATION_ID])
            _raise_set_errors(response, submit_call, "notCreated", [SUBMISSION_CREATION_ID])

            result = response.result(submit_call, EmailSubmissionSet.method)
            logger.info(
                "jmap_email_sent",
                draft_id=response.created_id(draft_call, DRAFT_CREATION_ID),
                submission_id=response.created_id(submit_call, SUBMISSION_CREATION_ID),
            )
            return result

    async def reply(
        self,
        email_id: str,
        body: str,
        identity_id: str,
        *,
        html: bool = False,
    ) -> dict[str, Any]:
        """Reply to the sender (``replyTo``, else ``from``) of *email_id*."""
        with error_context("reply", email_id=email_id):
            original = await self.get_email(
                email_id,
                ["id", "threadId", "subject", "from", "replyTo", "messageId", "references"],
            )
            recipients = original.get("replyTo") or original.get("from") or []
            subject = original.get("subject") or ""
            if not subject.lower().startswith("re:"):
                subject = f"Re: {subject}"

            message_ids = original.get("messageId") or []
            references = [*(original.get("references") or []), *message_ids]

            draft = EmailDraft(
                to=recipients,
                subject=subject,
                body=body,
                html=html,
                in_reply_to=message_ids or None,
                references=references or None,
                thread_id=original.get("threadId"),
            )
            return await self.send_email(draft, identity_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _update(self, operation: str, email_id: str, patch: Patch) -> dict[str, Any]:
        with error_context(operation, email_id=email_id):
            batch = Batch()
            call = batch.add(
                EmailSet(account_id=await self._client.account_id(), update={email_id: patch})
            )
            response = await self._client.call(batch)
            _raise_set_errors(response, call, "notUpdated", [email_id])
            logger.debug("jmap_email_updated", operation=operation, email_id=email_id)
            return response.result(call)

    async def update_keywords(self, email_id: str, keywords: dict[str, bool]) -> dict[str, Any]:
        """Replace the whole keyword set of an email."""
        present = {k: True for k, v in keywords.items() if v}
        return await self._update("update_keywords", email_id, Patch().set("keywords", value=present))

    async def mark_as_read(self, email_id: str) -> dict[str, Any]:
        return await self._update("mark_as_read", email_id, Patch().set("keywords", "$seen", value=True))

    async def mark_as_unread(self, email_id: str) -> dict[str, Any]:
        return await self._update("mark_as_unread", email_id, Patch().remove("keywords", "$seen"))

    async def set_flagged(self, email_id: str, flagged: bool = True) -> dict[str, Any]:
        patch = Patch().set("keywords", "$flagged", value=True) if flagged else Patch().remove("keywords", "$flagged")
        return await self._update("set_flagged", email_id, patch)

    async def move_email(self, email_id: str, target_mailbox_id: str) -> dict[str, Any]:
        """Make *target_mailbox_id* the only mailbox of the email."""
        return await self._update(
            "move_email", email_id, Patch().set("mailboxIds", value={target_mailbox_id: True})
        )

    async def add_label(self, email_id: str, mailbox_id: str) -> dict[str, Any]:
        return await self._update("add_label", email_id, Patch().set("mailboxIds", mailbox_id, value=True))

    async def remove_label(self, email_id: str, mailbox_id: str) -> dict[str, Any]:
        return await self._update("remove_label", email_id, Patch().remove("mailboxIds", mailbox_id))

    async def get_labels(self, email_id: str) -> list[dict[str, Any]]:
        """Mailboxes of an email.

        IDs missing from the mailbox list are reported with ``name`` and
        ``role`` set to ``None`` instead of failing the operation.
        """
        with error_context("get_labels", email_id=email_id):
            account_id = await self._client.account_id()
            batch = Batch()
            email_call = batch.add(EmailGet(account_id=account_id, ids=[email_id], properties=["id", "mailboxIds"]))
            mailbox_call = batch.add(MailboxGet(account_id=account_id))
            response = await self._client.call(batch)

            emails = response.result(email_call)["list"]
            if not emails:
                raise NotFoundError("Email", email_id)
            mailbox_ids = emails[0].get("mailboxIds") or {}
            if not mailbox_ids:
                return []

            by_id = {
                m.id: m for m in (Mailbox.model_validate(raw) for raw in response.result(mailbox_call)["list"])
            }
            labels: list[dict[str, Any]] = []
            for mailbox_id in mailbox_ids:
                mailbox = by_id.get(mailbox_id)
                if mailbox is None:
                    labels.append({"id": mailbox_id, "name": None, "role": None})
                    continue
                labels.append(
                    {
                        "id": mailbox.id,
                        "name": mailbox.name,
                        "role": mailbox.role,
                        "totalEmails": mailbox.total_emails,
                        "unreadEmails": mailbox.unread_emails,
                    }
                )
            return labels

    async def delete_emails(self, email_ids: Sequence[str]) -> dict[str, Any]:
        with error_context("delete_emails", email_ids=",".join(email_ids)):
            batch = Batch()
            call = batch.add(EmailSet(account_id=await self._client.account_id(), destroy=list(email_ids)))
            response = await self._client.call(batch)
            _raise_set_errors(response, call, "notDestroyed", email_ids)
            logger.info("jmap_emails_deleted", count=len(email_ids))
            return response.result(call)

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    async def get_threads(self, thread_ids: Sequence[str]) -> list[Thread]:
        """Fetch threads by ID.  Unknown IDs are left out of the result."""
        with error_context("get_threads", count=len(thread_ids)):
            batch = Batch()
            call = batch.add(ThreadGet(account_id=await self._client.account_id(), ids=list(thread_ids)))
            response = await self._client.call(batch)
            return [Thread.model_validate(t) for t in response.result(call)["list"]]

    async def get_thread(self, thread_id: str) -> Thread:
        threads = await self.get_threads([thread_id])
        if not threads:
            raise NotFoundError("Thread", thread_id)
        return threads[0]

    async def get_thread_emails(
        self,
        thread_id: str,
        properties: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Emails of a thread in thread order; ``[]`` for an unknown thread.

        One request: ``Email/get`` takes its IDs from the ``Thread/get``
        result by reference.
        """
        with error_context("get_thread_emails", thread_id=thread_id):
            account_id = await self._client.account_id()
            batch = Batch()
            thread_call = batch.add(ThreadGet(account_id=account_id, ids=[thread_id]))
            email_call = batch.add(
                EmailGet(
                    account_id=account_id,
                    ids=batch.ref(thread_call, "/list/*/emailIds"),
                    properties=list(properties or DEFAULT_EMAIL_PROPERTIES),
                    fetch_text_body_values=True,
                    fetch_html_body_values=True,
                    max_body_value_bytes=MAX_BODY_VALUE_BYTES,
                )
            )
            response = await self._client.call(batch)
            if not response.result(thread_call)["list"]:
                return []
            return list(response.result(email_call)["list"])
