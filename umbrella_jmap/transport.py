"""Authenticated async HTTP transport for the JMAP server."""

from __future__ import annotations

from types import TracebackType
from typing import Any

import httpx
import structlog

from .auth import TokenProvider, build_auth
from .config import JmapConfig
from .errors import ProtocolError, TransportError, TransportTimeoutError

logger = structlog.get_logger()


class JmapTransport:
    """Issues authenticated requests against the JMAP server.

    Relative paths are resolved against ``server_url``; absolute URLs (the
    session's ``apiUrl`` and ``downloadUrl``) are used as-is.  No retry is
    performed here: a failed request surfaces immediately as
    :class:`TransportError`.
    """

    def __init__(
        self,
        config: JmapConfig,
        *,
        token_provider: TokenProvider | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._auth = build_auth(config, token_provider)
        self._http_transport = http_transport
        self._client: httpx.AsyncClient | None = None

    @property
    def server_url(self) -> str:
        return self._config.server_url

    async def start(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._config.server_url,
            auth=self._auth,
            timeout=httpx.Timeout(self._config.timeout_seconds),
            verify=self._config.verify_tls,
            transport=self._http_transport,
        )
        logger.debug("jmap_transport_started", server_url=self._config.server_url)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.debug("jmap_transport_stopped")

    async def __aenter__(self) -> JmapTransport:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def send(
        self,
        method: str,
        url: str,
        body: Any = None,
        *,
        binary: bool = False,
    ) -> Any:
        """Send a request and return the decoded JSON body, or raw bytes if *binary*.

        Raises :class:`TransportError` on network failure or a non-2xx status.
        """
        if self._client is None:
            raise AssertionError("Transport not started")

        headers = {"Accept": "*/*" if binary else "application/json"}
        try:
            response = await self._client.request(
                method,
                url,
                json=body,
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            raise TransportTimeoutError(f"{method} {url} timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        if not response.is_success:
            raise TransportError(
                f"HTTP {response.status_code} from {method} {url}",
                status_code=response.status_code,
                server_body=_error_body(response),
            )

        logger.debug(
            "jmap_http_response",
            method=method,
            url=str(response.url),
            status_code=response.status_code,
            size=len(response.content),
        )

        if binary:
            return response.content

        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError(f"{method} {url} returned a non-JSON body") from exc


def _error_body(response: httpx.Response) -> Any:
    """Server error payload: RFC 7807 problem JSON when present, else text."""
    try:
        return response.json()
    except ValueError:
        return response.text
