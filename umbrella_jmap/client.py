"""Per-operation JMAP client: transport + session + batch calls."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

import httpx

from .auth import TokenProvider
from .config import JmapConfig
from .protocol import Batch, BatchClient, MethodCall, RequestEnvelope, ResponseEnvelope
from .session import Session, SessionResolver
from .transport import JmapTransport


class JmapClient:
    """Everything one logical operation needs to talk to the server.

    The session is fetched on first use and reused for the lifetime of the
    client, so build one client per operation (or per poll cycle) rather
    than keeping one around indefinitely.
    """

    def __init__(self, transport: JmapTransport, *, session_path: str = "/session") -> None:
        self.transport = transport
        self._resolver = SessionResolver(transport, session_path)
        self._session: Session | None = None

    async def session(self) -> Session:
        if self._session is None:
            self._session = await self._resolver.get_session()
        return self._session

    async def account_id(self) -> str:
        return (await self.session()).primary_account_id()

    async def call(
        self,
        request: Batch | RequestEnvelope | Sequence[MethodCall],
        using: Sequence[str] | None = None,
    ) -> ResponseEnvelope:
        """Send one request envelope to the session's ``apiUrl``."""
        if isinstance(request, Batch):
            request = request.envelope()
        session = await self.session()
        return await BatchClient(self.transport, session.api_url).call(request, using)

    async def download(self, url: str) -> bytes:
        """Authenticated binary GET."""
        data: bytes = await self.transport.send("GET", url, binary=True)
        return data


@asynccontextmanager
async def open_client(
    config: JmapConfig,
    *,
    token_provider: TokenProvider | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[JmapClient]:
    """Start a transport for *config* and yield a fresh :class:`JmapClient`.

    Usage::

        async with open_client(config.jmap) as client:
            mail = MailOperations(client)
            ...
    """
    async with JmapTransport(
        config,
        token_provider=token_provider,
        http_transport=http_transport,
    ) as transport:
        yield JmapClient(transport, session_path=config.session_path)
