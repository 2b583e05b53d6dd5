"""JMAP request/response batching (RFC 8620 section 3).

A request is an ordered list of method calls plus the capabilities they
use.  Calls later in the list may refer to results of earlier ones, so
order is significant and always preserved.  Responses are matched back to
their calls by call ID, never by position.
"""

from __future__ import annotations

import itertools
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from .errors import JmapMethodError, ProtocolError, UnknownMethodError
from .transport import JmapTransport

logger = structlog.get_logger()


class Capability:
    """Capability URIs."""

    CORE = "urn:ietf:params:jmap:core"
    MAIL = "urn:ietf:params:jmap:mail"
    SUBMISSION = "urn:ietf:params:jmap:submission"
    VACATION_RESPONSE = "urn:ietf:params:jmap:vacationresponse"
    JAMES_SHARES = "urn:apache:james:params:jmap:mail:shares"
    JAMES_QUOTA = "urn:apache:james:params:jmap:mail:quota"


ERROR_METHOD = "error"


# ----------------------------------------------------------------------
# Argument values with special wire encodings
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class Reference:
    """Result reference: the value of *path* in the result of an earlier call.

    Resolved by the server only.  Encoded as ``{"#<arg>": {"resultOf",
    "name", "path"}}`` on the argument that holds it.
    """

    result_of: str
    name: str
    path: str

    def to_wire(self) -> dict[str, str]:
        return {"resultOf": self.result_of, "name": self.name, "path": self.path}


@dataclass(frozen=True)
class CreationRef:
    """ID of an object created earlier in the same request, e.g. ``#draft``."""

    creation_id: str

    def to_wire(self) -> str:
        return f"#{self.creation_id}"


class _Remove:
    def __repr__(self) -> str:
        return "REMOVE"


REMOVE: Any = _Remove()
"""Patch value that deletes the addressed key (encoded as JSON ``null``)."""


def _escape_pointer(token: str) -> str:
    return token.replace("~", "~0").replace("/", "~1")


@dataclass(frozen=True)
class PatchOp:
    """Set (or with :data:`REMOVE`, delete) one value inside an object.

    ``PatchOp(("mailboxIds", "M1"), True)`` encodes as
    ``{"mailboxIds/M1": true}``.  Path tokens are JSON-pointer escaped, so
    IDs containing ``/`` cannot be confused with nested paths.
    """

    path: tuple[str, ...]
    value: Any

    @property
    def key(self) -> str:
        return "/".join(_escape_pointer(token) for token in self.path)


@dataclass
class Patch:
    """A sparse ``*/set`` update for one object."""

    ops: list[PatchOp] = field(default_factory=list)

    def set(self, *path: str, value: Any) -> Patch:
        self.ops.append(PatchOp(tuple(path), value))
        return self

    def remove(self, *path: str) -> Patch:
        self.ops.append(PatchOp(tuple(path), REMOVE))
        return self

    def to_wire(self) -> dict[str, Any]:
        return {op.key: encode(op.value) for op in self.ops}


def encode(value: Any) -> Any:
    """Encode an argument value to its JSON wire form."""
    if value is REMOVE:
        return None
    if isinstance(value, (CreationRef, Patch)):
        return value.to_wire()
    if isinstance(value, WireModel):
        return value.to_wire()
    if isinstance(value, Reference):
        raise ProtocolError("Result references are only valid as top-level method arguments")
    if isinstance(value, dict):
        return {key: encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode(item) for item in value]
    return value


# ----------------------------------------------------------------------
# Typed method arguments
# ----------------------------------------------------------------------

_METHODS: dict[str, type[MethodArguments]] = {}


class WireModel(BaseModel):
    """camelCase JSON object whose ``None`` fields are omitted on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {}
        for name, info in type(self).model_fields.items():
            value = getattr(self, name)
            if value is None or info.exclude:
                continue
            key = info.alias or name
            if isinstance(value, Reference):
                wire[f"#{key}"] = value.to_wire()
            else:
                wire[key] = encode(value)
        return wire


class MethodArguments(WireModel):
    """Arguments of one JMAP method.  Subclasses declare ``method`` and ``capabilities``."""

    method: ClassVar[str] = ""
    capabilities: ClassVar[tuple[str, ...]] = (Capability.CORE,)

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        if cls.method:
            _METHODS[cls.method] = cls


def arguments_type(method: str) -> type[MethodArguments]:
    """Typed argument record for *method*; unknown names are rejected."""
    try:
        return _METHODS[method]
    except KeyError:
        raise UnknownMethodError(f"Unsupported JMAP method: {method}") from None


def supported_methods() -> list[str]:
    return sorted(_METHODS)


@dataclass(frozen=True)
class MethodCall:
    """``(methodName, arguments, callId)`` triple."""

    arguments: MethodArguments
    call_id: str

    @property
    def name(self) -> str:
        return self.arguments.method

    @property
    def capabilities(self) -> tuple[str, ...]:
        return self.arguments.capabilities

    @classmethod
    def from_untyped(cls, name: str, arguments: dict[str, Any], call_id: str) -> MethodCall:
        """Validate a raw ``[name, args, callId]`` triple into a typed call."""
        args_type = arguments_type(name)
        try:
            return cls(args_type.model_validate(arguments), call_id)
        except ValidationError as exc:
            raise ProtocolError(f"Invalid arguments for {name}: {exc.error_count()} errors") from exc

    def to_wire(self) -> list[Any]:
        return [self.name, self.arguments.to_wire(), self.call_id]


def required_capabilities(calls: Iterable[MethodCall]) -> list[str]:
    """Union of the capabilities *calls* need, core first, in first-use order."""
    using: dict[str, None] = {Capability.CORE: None}
    for call in calls:
        for capability in call.capabilities:
            using.setdefault(capability)
    return list(using)


# ----------------------------------------------------------------------
# Envelopes
# ----------------------------------------------------------------------


@dataclass
class RequestEnvelope:
    """A batch of method calls.

    ``using`` defaults to the capabilities the calls require.  An explicit
    ``using`` is sent as given, even if it omits a required capability:
    rejecting that is the server's job.
    """

    method_calls: list[MethodCall]
    using: list[str] | None = None

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for call in self.method_calls:
            if call.call_id in seen:
                raise ProtocolError(f"Duplicate call id in request: {call.call_id}")
            seen.add(call.call_id)
        if self.using is None:
            self.using = required_capabilities(self.method_calls)

    def to_wire(self) -> dict[str, Any]:
        return {
            "using": list(self.using or []),
            "methodCalls": [call.to_wire() for call in self.method_calls],
        }


@dataclass(frozen=True)
class MethodResponse:
    """``(methodName, result, callId)`` triple from the server."""

    name: str
    result: dict[str, Any]
    call_id: str

    @property
    def is_error(self) -> bool:
        return self.name == ERROR_METHOD

    def to_error(self, envelope: ResponseEnvelope | None = None) -> JmapMethodError:
        """Build the error for this response, naming the method that was called."""
        method = envelope.call_methods.get(self.call_id) if envelope is not None else None
        return JmapMethodError(
            str(self.result.get("type", "unknown")),
            self.result.get("description"),
            payload=dict(self.result),
            call_id=self.call_id,
            method=method,
            response=envelope,
        )


@dataclass
class ResponseEnvelope:
    """Server response.  Entries are looked up by call ID.

    One call may produce several responses: ``EmailSubmission/set`` with
    ``onSuccessDestroyEmail`` is followed by an implicit ``Email/set``
    response carrying the same call ID.
    """

    method_responses: list[MethodResponse]
    session_state: str = ""
    # call ID -> method name of the request this envelope answers
    call_methods: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_wire(cls, data: Any) -> ResponseEnvelope:
        if not isinstance(data, dict) or not isinstance(data.get("methodResponses"), list):
            raise ProtocolError("Malformed JMAP response: missing methodResponses")

        responses: list[MethodResponse] = []
        for entry in data["methodResponses"]:
            if (
                not isinstance(entry, list)
                or len(entry) != 3
                or not isinstance(entry[0], str)
                or not isinstance(entry[1], dict)
                or not isinstance(entry[2], str)
            ):
                raise ProtocolError(f"Malformed JMAP method response: {entry!r}")
            responses.append(MethodResponse(entry[0], entry[1], entry[2]))

        return cls(responses, str(data.get("sessionState", "")))

    def responses_for(self, call_id: str) -> list[MethodResponse]:
        return [r for r in self.method_responses if r.call_id == call_id]

    def get(self, call_id: str) -> MethodResponse:
        """First response for *call_id*; a missing one is a protocol violation."""
        for response in self.method_responses:
            if response.call_id == call_id:
                return response
        raise ProtocolError(f"No response for call id {call_id}")

    def errors(self) -> list[MethodResponse]:
        return [r for r in self.method_responses if r.is_error]

    def raise_for_errors(self) -> None:
        """Raise :class:`JmapMethodError` for the first ``error`` response, if any."""
        for response in self.method_responses:
            if response.is_error:
                raise response.to_error(self)

    def result(self, call_id: str, method: str | None = None) -> dict[str, Any]:
        """Result of the call *call_id*; an ``error`` response raises."""
        responses = self.responses_for(call_id)
        if not responses:
            raise ProtocolError(f"No response for call id {call_id}")
        for response in responses:
            if response.is_error:
                raise response.to_error(self)
        if method is None:
            return responses[0].result
        for response in responses:
            if response.name == method:
                return response.result
        raise ProtocolError(f"No {method} response for call id {call_id}")

    def created_id(self, call_id: str, creation_id: str) -> str | None:
        """Server ID assigned to *creation_id* by a ``*/set`` call, if it succeeded.

        Works on partially failed envelopes: a draft created by ``c1`` is
        still found after ``c2`` was rejected.
        """
        for response in self.responses_for(call_id):
            if response.is_error:
                continue
            created = response.result.get("created") or {}
            obj = created.get(creation_id)
            if isinstance(obj, dict) and "id" in obj:
                return str(obj["id"])
        return None


class Batch:
    """Builds a :class:`RequestEnvelope`, issuing fresh call IDs ``c1``, ``c2``, ..."""

    def __init__(self, using: Sequence[str] | None = None) -> None:
        self._calls: list[MethodCall] = []
        self._using = list(using) if using is not None else None
        self._counter = itertools.count(1)

    def add(self, arguments: MethodArguments) -> str:
        call_id = f"c{next(self._counter)}"
        self._calls.append(MethodCall(arguments, call_id))
        return call_id

    def ref(self, call_id: str, path: str) -> Reference:
        """Reference to *path* in the result of the earlier call *call_id*."""
        for call in self._calls:
            if call.call_id == call_id:
                return Reference(call_id, call.name, path)
        raise ProtocolError(f"Unknown call id {call_id}")

    def envelope(self) -> RequestEnvelope:
        return RequestEnvelope(list(self._calls), self._using)


class BatchClient:
    """Sends request envelopes to the session's ``apiUrl``."""

    def __init__(self, transport: JmapTransport, api_url: str) -> None:
        self._transport = transport
        self._api_url = api_url

    async def call(
        self,
        request: RequestEnvelope | Sequence[MethodCall],
        using: Sequence[str] | None = None,
    ) -> ResponseEnvelope:
        """POST one envelope and parse the response.

        ``error`` method responses are returned, not raised: each call site
        decides how to treat them.
        """
        if not isinstance(request, RequestEnvelope):
            request = RequestEnvelope(list(request), list(using) if using is not None else None)

        methods = [call.name for call in request.method_calls]
        logger.debug("jmap_batch_sent", methods=methods, using=request.using)

        data = await self._transport.send("POST", self._api_url, request.to_wire())
        response = ResponseEnvelope.from_wire(data)
        response.call_methods = {call.call_id: call.name for call in request.method_calls}

        logger.debug(
            "jmap_batch_received",
            methods=[r.name for r in response.method_responses],
            session_state=response.session_state,
        )
        return response
