"""Shared test fixtures for the JMAP connector test suite."""

from __future__ import annotations

import copy
import itertools
import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest
import pytest_asyncio
import respx

from umbrella_jmap.client import JmapClient, open_client
from umbrella_jmap.config import JmapConfig, PollerConfig, RetryConfig

SERVER_URL = "https://jmap.test/jmap"
API_URL = "https://jmap.test/jmap/api/"
DOWNLOAD_URL = "https://jmap.test/jmap/download/{accountId}/{blobId}/{name}?accept={type}"
ACCOUNT_ID = "acc-1"

MAIL = "urn:ietf:params:jmap:mail"


def make_session(**overrides: Any) -> dict[str, Any]:
    session = {
        "capabilities": {
            "urn:ietf:params:jmap:core": {"maxCallsInRequest": 16},
            MAIL: {},
            "urn:ietf:params:jmap:submission": {},
        },
        "accounts": {
            ACCOUNT_ID: {
                "name": "alice@example.com",
                "isPersonal": True,
                "isReadOnly": False,
                "accountCapabilities": {MAIL: {}},
            }
        },
        "primaryAccounts": {MAIL: ACCOUNT_ID},
        "username": "alice@example.com",
        "apiUrl": API_URL,
        "downloadUrl": DOWNLOAD_URL,
        "uploadUrl": "https://jmap.test/jmap/upload/{accountId}/",
        "eventSourceUrl": "https://jmap.test/jmap/eventsource/",
        "state": "s1",
    }
    session.update(overrides)
    return session


def make_email(
    email_id: str,
    received_at: str,
    *,
    mailbox_ids: dict[str, bool] | None = None,
    keywords: dict[str, bool] | None = None,
    subject: str | None = None,
    thread_id: str | None = None,
    attachments: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "id": email_id,
        "blobId": f"blob-{email_id}",
        "threadId": thread_id or f"t-{email_id}",
        "mailboxIds": mailbox_ids if mailbox_ids is not None else {"mb-inbox": True},
        "keywords": keywords or {},
        "receivedAt": received_at,
        "messageId": [f"<{email_id}@example.com>"],
        "references": None,
        "from": [{"name": "Bob", "email": "bob@example.com"}],
        "replyTo": None,
        "to": [{"name": "Alice", "email": "alice@example.com"}],
        "cc": [],
        "subject": subject if subject is not None else f"Subject {email_id}",
        "preview": f"Preview of {email_id}",
        "hasAttachment": bool(attachments),
        "attachments": attachments or [],
        "bodyValues": {},
        "textBody": [],
        "htmlBody": [],
        "bodyStructure": {},
    }


def _unescape(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


def _evaluate_pointer(value: Any, tokens: list[str]) -> Any:
    if not tokens:
        return value
    head, rest = tokens[0], tokens[1:]
    if head == "*":
        out: list[Any] = []
        for item in value:
            resolved = _evaluate_pointer(item, rest)
            if isinstance(resolved, list):
                out.extend(resolved)
            else:
                out.append(resolved)
        return out
    return _evaluate_pointer(value[_unescape(head)], rest)


class FakeJmapServer:
    """In-memory JMAP server behind respx.

    Implements just enough of RFC 8620/8621 to exercise the client:
    result references, creation IDs, sparse patches and the implicit
    ``Email/set`` after a submission with ``onSuccessDestroyEmail``.
    ``Email/query`` treats ``after`` as inclusive.
    """

    def __init__(self) -> None:
        self.session = make_session()
        self.mailboxes: dict[str, dict[str, Any]] = {
            "mb-inbox": {"id": "mb-inbox", "name": "Inbox", "role": "inbox", "totalEmails": 2, "unreadEmails": 1},
            "mb-drafts": {"id": "mb-drafts", "name": "Drafts", "role": "drafts", "totalEmails": 0, "unreadEmails": 0},
            "mb-archive": {"id": "mb-archive", "name": "Archive", "role": "archive", "totalEmails": 0, "unreadEmails": 0},
            "mb-work": {"id": "mb-work", "name": "Work", "role": None, "totalEmails": 0, "unreadEmails": 0},
        }
        self.identities = [{"id": "id-1", "name": "Alice", "email": "alice@example.com"}]
        self.emails: dict[str, dict[str, Any]] = {}
        self.blobs: dict[str, bytes] = {}
        self.submissions: dict[str, dict[str, Any]] = {}
        self.requests: list[dict[str, Any]] = []
        self.downloads: list[str] = []
        self.failures: dict[str, dict[str, Any]] = {}
        self.http_status: int | None = None
        self._ids = itertools.count(1)

    # -- setup helpers -------------------------------------------------

    def add_email(self, email: dict[str, Any]) -> dict[str, Any]:
        self.emails[email["id"]] = email
        return email

    def fail(self, method: str, error_type: str, description: str | None = None) -> None:
        payload: dict[str, Any] = {"type": error_type}
        if description:
            payload["description"] = description
        self.failures[method] = payload

    def calls(self, method: str | None = None) -> list[list[Any]]:
        out = [call for body in self.requests for call in body["methodCalls"]]
        return [c for c in out if method is None or c[0] == method]

    def install(self, router: respx.MockRouter) -> None:
        router.get(f"{SERVER_URL}/session").mock(side_effect=self._session_handler)
        router.post(API_URL).mock(side_effect=self._api_handler)
        router.get(url__startswith=f"{SERVER_URL}/download/").mock(side_effect=self._download_handler)

    # -- HTTP handlers ---------------------------------------------------

    def _session_handler(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=self.session)

    def _download_handler(self, request: httpx.Request) -> httpx.Response:
        self.downloads.append(str(request.url))
        blob_id = request.url.path.split("/")[4]
        if blob_id not in self.blobs:
            return httpx.Response(404, json={"type": "about:blank", "status": 404})
        return httpx.Response(200, content=self.blobs[blob_id])

    def _api_handler(self, request: httpx.Request) -> httpx.Response:
        if self.http_status is not None:
            return httpx.Response(self.http_status, json={"type": "about:blank", "status": self.http_status})
        body = json.loads(request.content)
        self.requests.append(body)
        responses: list[list[Any]] = []
        created_ids: dict[str, str] = {}

        for name, args, call_id in body["methodCalls"]:
            args = self._resolve_references(args, responses)
            if name in self.failures:
                responses.append(["error", self.failures[name], call_id])
                continue
            handler = getattr(self, "_" + name.replace("/", "_").lower(), None)
            if handler is None:
                responses.append(["error", {"type": "unknownMethod"}, call_id])
                continue
            for response_name, result in handler(args, created_ids):
                responses.append([response_name, result, call_id])

        return httpx.Response(200, json={"methodResponses": responses, "sessionState": "s1"})

    def _resolve_references(self, args: dict[str, Any], responses: list[list[Any]]) -> dict[str, Any]:
        resolved: dict[str, Any] = {}
        for key, value in args.items():
            if not key.startswith("#"):
                resolved[key] = value
                continue
            source = next(r for r in responses if r[2] == value["resultOf"] and r[0] == value["name"])
            tokens = value["path"].lstrip("/").split("/")
            resolved[key[1:]] = _evaluate_pointer(source[1], tokens)
        return resolved

    # -- methods ---------------------------------------------------------

    def _mailbox_get(self, args: dict[str, Any], created: dict[str, str]):
        yield "Mailbox/get", {"accountId": ACCOUNT_ID, "state": "m1", "list": list(self.mailboxes.values()), "notFound": []}

    def _identity_get(self, args: dict[str, Any], created: dict[str, str]):
        yield "Identity/get", {"accountId": ACCOUNT_ID, "state": "i1", "list": self.identities, "notFound": []}

    def _email_query(self, args: dict[str, Any], created: dict[str, str]):
        conditions = args.get("filter") or {}
        matches = []
        for email in self.emails.values():
            if "inMailbox" in conditions and conditions["inMailbox"] not in email["mailboxIds"]:
                continue
            if "after" in conditions and (email["receivedAt"] or "") < conditions["after"]:
                continue
            if "notKeyword" in conditions and conditions["notKeyword"] in email["keywords"]:
                continue
            if "hasKeyword" in conditions and conditions["hasKeyword"] not in email["keywords"]:
                continue
            matches.append(email)
        matches.sort(key=lambda e: e["receivedAt"] or "", reverse=True)
        position = args.get("position") or 0
        limit = args.get("limit") or len(matches)
        ids = [e["id"] for e in matches[position : position + limit]]
        yield "Email/query", {"accountId": ACCOUNT_ID, "ids": ids, "total": len(matches), "position": position}

    def _email_get(self, args: dict[str, Any], created: dict[str, str]):
        properties = args.get("properties")
        found, not_found = [], []
        for email_id in args["ids"]:
            email = self.emails.get(email_id)
            if email is None:
                not_found.append(email_id)
                continue
            if properties is None:
                found.append(copy.deepcopy(email))
            else:
                found.append({p: copy.deepcopy(email.get(p)) for p in {"id", *properties}})
        yield "Email/get", {"accountId": ACCOUNT_ID, "state": "e1", "list": found, "notFound": not_found}

    def _email_set(self, args: dict[str, Any], created_ids: dict[str, str]):
        result: dict[str, Any] = {"accountId": ACCOUNT_ID, "oldState": "e1", "newState": "e2"}

        created, not_created = {}, {}
        for creation_id, obj in (args.get("create") or {}).items():
            if not obj.get("mailboxIds"):
                not_created[creation_id] = {"type": "invalidProperties", "properties": ["mailboxIds"]}
                continue
            email_id = f"e-new-{next(self._ids)}"
            self.emails[email_id] = {
                **obj,
                "id": email_id,
                "threadId": f"t-{email_id}",
                "blobId": f"blob-{email_id}",
                "receivedAt": "2025-06-01T12:00:00Z",
            }
            created_ids[creation_id] = email_id
            created[creation_id] = {"id": email_id, "threadId": f"t-{email_id}", "blobId": f"blob-{email_id}"}

        updated, not_updated = {}, {}
        for email_id, patch in (args.get("update") or {}).items():
            email = self.emails.get(email_id)
            if email is None:
                not_updated[email_id] = {"type": "notFound"}
                continue
            candidate = copy.deepcopy(email)
            for key, value in patch.items():
                tokens = [_unescape(t) for t in key.split("/")]
                target = candidate
                for token in tokens[:-1]:
                    target = target.setdefault(token, {})
                if value is None:
                    target.pop(tokens[-1], None)
                else:
                    target[tokens[-1]] = value
            if not candidate.get("mailboxIds"):
                not_updated[email_id] = {"type": "invalidProperties", "properties": ["mailboxIds"]}
                continue
            self.emails[email_id] = candidate
            updated[email_id] = None

        destroyed, not_destroyed = [], {}
        for email_id in args.get("destroy") or []:
            if self.emails.pop(email_id, None) is None:
                not_destroyed[email_id] = {"type": "notFound"}
            else:
                destroyed.append(email_id)

        result.update(
            created=created or None,
            notCreated=not_created or None,
            updated=updated or None,
            notUpdated=not_updated or None,
            destroyed=destroyed or None,
            notDestroyed=not_destroyed or None,
        )
        yield "Email/set", result

    def _emailsubmission_set(self, args: dict[str, Any], created_ids: dict[str, str]):
        created, not_created = {}, {}
        for creation_id, obj in (args.get("create") or {}).items():
            email_id = obj["emailId"]
            if email_id.startswith("#"):
                email_id = created_ids.get(email_id[1:], "")
            if email_id not in self.emails:
                not_created[creation_id] = {"type": "invalidProperties", "properties": ["emailId"]}
                continue
            submission_id = f"sub-{next(self._ids)}"
            self.submissions[submission_id] = {**obj, "id": submission_id, "emailId": email_id}
            created_ids[creation_id] = submission_id
            created[creation_id] = {"id": submission_id, "undoStatus": "final"}

        yield "EmailSubmission/set", {
            "accountId": ACCOUNT_ID,
            "created": created or None,
            "notCreated": not_created or None,
        }

        destroy = []
        for ref in args.get("onSuccessDestroyEmail") or []:
            submission_id = created_ids.get(ref[1:]) if ref.startswith("#") else ref
            if submission_id in self.submissions:
                destroy.append(self.submissions[submission_id]["emailId"])
        if destroy:
            yield from self._email_set({"destroy": destroy}, created_ids)

    def _thread_get(self, args: dict[str, Any], created: dict[str, str]):
        threads: dict[str, list[str]] = {}
        for email in sorted(self.emails.values(), key=lambda e: e["receivedAt"] or ""):
            threads.setdefault(email["threadId"], []).append(email["id"])
        found = [{"id": t, "emailIds": threads[t]} for t in args["ids"] if t in threads]
        not_found = [t for t in args["ids"] if t not in threads]
        yield "Thread/get", {"accountId": ACCOUNT_ID, "state": "t1", "list": found, "notFound": not_found}


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def jmap_config() -> JmapConfig:
    return JmapConfig(
        server_url=SERVER_URL + "/",
        email="alice@example.com",
        password="s3cret",
        timeout_seconds=5.0,
    )


@pytest.fixture
def poller_config() -> PollerConfig:
    return PollerConfig(state_path="unused.json", page_size=100)


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        initial_wait_seconds=0.01,
        max_wait_seconds=0.1,
        multiplier=2.0,
    )


@pytest.fixture
def fake_server() -> FakeJmapServer:
    return FakeJmapServer()


@pytest_asyncio.fixture
async def client(jmap_config: JmapConfig, fake_server: FakeJmapServer) -> AsyncIterator[JmapClient]:
    with respx.mock(assert_all_called=False) as router:
        fake_server.install(router)
        async with open_client(jmap_config) as jmap_client:
            yield jmap_client
