"""Exception hierarchy for the JMAP client.

Every error raised by this package derives from :class:`JmapError`, so a
caller that only needs "did the JMAP operation fail" can catch that one
type.  Operation context (which operation, which entity IDs) is attached
by :func:`error_context` at the mail-operation boundary.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .protocol import ResponseEnvelope


class JmapError(Exception):
    """Base class for all JMAP client errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.operation: str | None = None
        self.context: dict[str, Any] = {}

    def __str__(self) -> str:
        if self.operation is None:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        suffix = f" ({details})" if details else ""
        return f"{self.operation} failed{suffix}: {self.message}"


class TransportError(JmapError):
    """Non-2xx HTTP response or network failure.  Never retried internally."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        server_body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.server_body = server_body


class TransportTimeoutError(TransportError):
    """The request timed out.

    For mutating calls the server may or may not have applied the change:
    treat this as an unknown outcome, not a failure.
    """


class SessionError(JmapError):
    """The session resource was unreachable or malformed."""


class NoAccountError(JmapError):
    """The session lists no accounts at all."""


class NoDraftsMailboxError(JmapError):
    """No mailbox has the ``drafts`` role."""


class ProtocolError(JmapError):
    """A request or response envelope is malformed."""


class UnknownMethodError(ProtocolError):
    """A method name outside the supported set was used."""


class NotFoundError(JmapError):
    """An entity (email, mailbox, thread) does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class JmapMethodError(JmapError):
    """The server answered a method call with an ``error`` response.

    ``response`` holds the whole (partial) response envelope so that the
    results of calls that *did* succeed in the same request, e.g. the draft
    created before a rejected submission, remain available.
    """

    def __init__(
        self,
        error_type: str,
        description: str | None = None,
        *,
        payload: dict[str, Any] | None = None,
        call_id: str | None = None,
        method: str | None = None,
        response: ResponseEnvelope | None = None,
    ) -> None:
        message = f"JMAP error {error_type}"
        if description:
            message += f": {description}"
        super().__init__(message)
        self.error_type = error_type
        self.description = description
        self.payload = payload or {}
        self.call_id = call_id
        self.method = method
        self.response = response


class JmapSetError(JmapMethodError):
    """A ``*/set`` call succeeded overall but rejected a targeted object."""

    def __init__(
        self,
        error_type: str,
        description: str | None = None,
        *,
        object_id: str,
        **kwargs: Any,
    ) -> None:
        super().__init__(error_type, description, **kwargs)
        self.object_id = object_id


@contextmanager
def error_context(operation: str, **context: Any) -> Iterator[None]:
    """Attach operation name and entity IDs to any :class:`JmapError` raised inside.

    Usage::

        with error_context("move_email", email_id=email_id):
            ...
    """
    try:
        yield
    except JmapError as exc:
        if exc.operation is None:
            exc.operation = operation
            exc.context = {k: v for k, v in context.items() if v is not None}
        raise
