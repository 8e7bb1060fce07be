"""PocketBase client - REST pipeline, batch requests and realtime subscriptions.

Three pieces carry the protocol logic:
- PocketBase: request building, auth/locale headers, JSON or multipart
  encoding, typed result decoding (sync and async)
- BatchBuilder: many record mutations in one index-aligned wire call
- RealtimeService: one shared SSE connection fanned out to named topics
"""

from .auth import AuthStore, AuthStoreEvent
from .auth_service import AuthService
from .batch import BatchBuilder, BatchMethod, BatchOperation, BatchResponse, BatchService
from .cancellation import CancelToken
from .client import AsyncDownloadStream, DownloadStream, PocketBase
from .config import ClientConfig
from .errors import ClientError, ErrorKind, Result
from .files import BytesFile, FileAttachment, FilepathFile
from .hooks import AfterSendHook, BeforeSendHook, auth_refresh_hook, log_response_hook
from .models import (
    AuthMethodsList,
    AuthProviderInfo,
    BatchResponseItem,
    ExternalAuth,
    HealthCheck,
    ListResult,
    RecordAuthResponse,
    RecordModel,
)
from .realtime import ConnectionState, HTTPRealtimeStream, RealtimeService, RealtimeStream
from .records import RecordService
from .request import RequestDescriptor, build_url
from .serialization import format_datetime
from .sse import SSEMessage

__all__ = [
    # Client
    "PocketBase",
    "ClientConfig",
    "AuthStore",
    "AuthStoreEvent",
    "CancelToken",
    "DownloadStream",
    "AsyncDownloadStream",
    # Results
    "Result",
    "ClientError",
    "ErrorKind",
    # Requests
    "RequestDescriptor",
    "build_url",
    "format_datetime",
    "FileAttachment",
    "FilepathFile",
    "BytesFile",
    # Middleware
    "BeforeSendHook",
    "AfterSendHook",
    "auth_refresh_hook",
    "log_response_hook",
    # Models
    "RecordModel",
    "ListResult",
    "BatchResponseItem",
    "HealthCheck",
    "RecordAuthResponse",
    "AuthMethodsList",
    "AuthProviderInfo",
    "ExternalAuth",
    # Batch
    "BatchService",
    "BatchBuilder",
    "BatchOperation",
    "BatchMethod",
    "BatchResponse",
    # Realtime
    "RealtimeService",
    "RealtimeStream",
    "HTTPRealtimeStream",
    "ConnectionState",
    "SSEMessage",
    # Records
    "RecordService",
    "AuthService",
]
