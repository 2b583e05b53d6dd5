"""JMAP session discovery (RFC 8620 section 2)."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .errors import NoAccountError, ProtocolError, SessionError, TransportError
from .protocol import Capability
from .transport import JmapTransport

logger = structlog.get_logger()


class Account(BaseModel):
    """An account the authenticated user can access."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str
    is_personal: bool = True
    is_read_only: bool = False
    account_capabilities: dict[str, Any] = Field(default_factory=dict)


class Session(BaseModel):
    """Immutable snapshot of the session resource.  Re-fetched, never mutated."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    accounts: dict[str, Account]
    primary_accounts: dict[str, str] = Field(default_factory=dict)
    api_url: str
    download_url: str
    upload_url: str = ""
    event_source_url: str = ""
    state: str = ""
    username: str = ""
    capabilities: dict[str, Any] = Field(default_factory=dict)

    def primary_account_id(self, capability: str = Capability.MAIL) -> str:
        """Account for *capability*, falling back to the first listed account.

        Some servers omit ``primaryAccounts``; the first account is then the
        best guess.
        """
        account_id = self.primary_accounts.get(capability)
        if account_id:
            return account_id
        for account_id in self.accounts:
            return account_id
        raise NoAccountError("No JMAP account found")

    def download_url_for(self, account_id: str, blob_id: str, name: str, type: str) -> str:
        """Expand the ``downloadUrl`` template for one blob."""
        return (
            self.download_url.replace("{accountId}", quote(account_id, safe=""))
            .replace("{blobId}", quote(blob_id, safe=""))
            .replace("{name}", quote(name, safe=""))
            .replace("{type}", quote(type, safe=""))
        )


class SessionResolver:
    """Fetches the session resource through the transport."""

    def __init__(self, transport: JmapTransport, session_path: str = "/session") -> None:
        self._transport = transport
        self._session_path = session_path

    async def get_session(self) -> Session:
        try:
            data = await self._transport.send("GET", self._session_path)
        except (TransportError, ProtocolError) as exc:
            raise SessionError(f"Failed to get JMAP session: {exc.message}") from exc

        try:
            session = Session.model_validate(data)
        except ValidationError as exc:
            raise SessionError(f"Malformed JMAP session: {exc.error_count()} invalid fields") from exc

        logger.debug(
            "jmap_session_fetched",
            accounts=len(session.accounts),
            api_url=session.api_url,
            state=session.state,
        )
        return session

    async def get_primary_account_id(self) -> str:
        session = await self.get_session()
        return session.primary_account_id()
