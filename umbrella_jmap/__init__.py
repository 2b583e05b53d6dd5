"""Umbrella JMAP Connector: batched JMAP mail client and new-mail poller."""

from .attachments import (
    AttachmentOptions,
    AttachmentPipeline,
    AttachmentSink,
    matches_mime_type,
    select_attachments,
)
from .client import JmapClient, open_client
from .config import (
    AuthMethod,
    ConnectorConfig,
    JmapConfig,
    KafkaConfig,
    PollerConfig,
    RetryConfig,
    S3Config,
)
from .connector import JmapConnector
from .errors import (
    JmapError,
    JmapMethodError,
    JmapSetError,
    NoAccountError,
    NoDraftsMailboxError,
    NotFoundError,
    ProtocolError,
    SessionError,
    TransportError,
    TransportTimeoutError,
    UnknownMethodError,
)
from .mail import EmailDraft, MailOperations
from .methods import EmailFilter
from .operations import ItemResult, run_each
from .poller import Poller, PollState
from .protocol import (
    REMOVE,
    Batch,
    BatchClient,
    Capability,
    CreationRef,
    MethodCall,
    Patch,
    Reference,
    RequestEnvelope,
    ResponseEnvelope,
)
from .s3 import S3AttachmentSink
from .session import Session, SessionResolver
from .state import JsonFileStateStore, MemoryStateStore, StateStore
from .transport import JmapTransport

__all__ = [
    "AttachmentOptions",
    "AttachmentPipeline",
    "AttachmentSink",
    "AuthMethod",
    "Batch",
    "BatchClient",
    "Capability",
    "ConnectorConfig",
    "CreationRef",
    "EmailDraft",
    "EmailFilter",
    "ItemResult",
    "JmapClient",
    "JmapConfig",
    "JmapConnector",
    "JmapError",
    "JmapMethodError",
    "JmapSetError",
    "JmapTransport",
    "JsonFileStateStore",
    "KafkaConfig",
    "MailOperations",
    "MemoryStateStore",
    "MethodCall",
    "NoAccountError",
    "NoDraftsMailboxError",
    "NotFoundError",
    "Patch",
    "PollState",
    "Poller",
    "PollerConfig",
    "ProtocolError",
    "REMOVE",
    "Reference",
    "RequestEnvelope",
    "ResponseEnvelope",
    "RetryConfig",
    "S3AttachmentSink",
    "S3Config",
    "Session",
    "SessionError",
    "SessionResolver",
    "StateStore",
    "TransportError",
    "TransportTimeoutError",
    "UnknownMethodError",
    "matches_mime_type",
    "open_client",
    "run_each",
    "select_attachments",
]
