"""Credential strategies for the JMAP transport.

Each strategy is an :class:`httpx.Auth`, so the transport never branches
on the credential type once the client is built.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from typing import Protocol, runtime_checkable

import httpx
import structlog

from .config import AuthMethod, JmapConfig

logger = structlog.get_logger()


@runtime_checkable
class TokenProvider(Protocol):
    """External OAuth2 token manager.

    Owns the authorization-code / refresh-token exchange.  The transport
    only asks it for a current access token, and for a fresh one after
    the server rejects a request with 401.
    """

    async def get_token(self, *, force_refresh: bool = False) -> str: ...


class BearerAuth(httpx.Auth):
    """Static bearer token in the ``Authorization`` header."""

    def __init__(self, token: str) -> None:
        self._token = token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._token}"
        yield request


class OAuth2Auth(httpx.Auth):
    """Bearer auth whose token is owned by a :class:`TokenProvider`.

    A 401 triggers exactly one forced refresh and replay of the request.
    """

    def __init__(self, provider: TokenProvider) -> None:
        self._provider = provider

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("OAuth2Auth requires an async HTTP client")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self._provider.get_token()
        request.headers["Authorization"] = f"Bearer {token}"
        response = yield request

        if response.status_code == 401:
            logger.info("oauth2_token_rejected", url=str(request.url))
            token = await self._provider.get_token(force_refresh=True)
            request.headers["Authorization"] = f"Bearer {token}"
            yield request


def build_auth(config: JmapConfig, token_provider: TokenProvider | None = None) -> httpx.Auth:
    """Return the :class:`httpx.Auth` for the configured strategy."""
    if config.auth_method is AuthMethod.BASIC:
        assert config.email is not None and config.password is not None
        return httpx.BasicAuth(config.email, config.password.get_secret_value())

    if config.auth_method is AuthMethod.BEARER:
        assert config.access_token is not None
        return BearerAuth(config.access_token.get_secret_value())

    if token_provider is None:
        raise ValueError("oauth2 auth requires a token provider")
    return OAuth2Auth(token_provider)
