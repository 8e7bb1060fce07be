"""PocketBase client - request/response pipeline.

Builds URLs and request descriptors, injects auth/locale headers, runs the
middleware chain, sends over httpx and maps every outcome to a `Result`.

Sync and async variants share everything except the calling convention:
- send / send_async
- get_stream / get_stream_async
- health / health_async

Usage:
    client = PocketBase("http://127.0.0.1:8090")
    result = client.send("/api/collections/todos/records", "GET", response_type=ListResult[Todo])
    if result.is_success:
        print(result.value.items)

    async with PocketBase("http://127.0.0.1:8090") as client:
        result = await client.send_async("/api/health", response_type=HealthCheck)
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import threading
from collections.abc import AsyncIterator, Awaitable, Iterable, Iterator, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from functools import lru_cache
from typing import Any, TypeVar

import httpx
from pydantic import TypeAdapter

from .auth import AuthStore
from .auth_service import AuthService
from .batch import BatchBuilder, BatchService
from .cancellation import CancelToken
from .config import ClientConfig
from .errors import ClientError, Result
from .files import FileAttachment
from .hooks import AfterSendHook, BeforeSendHook, apply_after_send, apply_before_send
from .models import HealthCheck
from .realtime import RealtimeService
from .records import RecordService
from .request import RequestDescriptor, build_url, normalize_query_params

logger = logging.getLogger(__name__)

R = TypeVar("R")


class _Cancelled(Exception):
    """Internal marker: the cancel token fired during I/O."""


@lru_cache(maxsize=256)
def _type_adapter(response_type: Any) -> TypeAdapter[Any]:
    return TypeAdapter(response_type)


def decode_body(response_type: Any, content: bytes) -> Any:
    """Decode a response body into response_type.

    bytes and str are returned raw; anything else is validated from JSON
    through pydantic. Raises ValueError (incl. ValidationError) on failure.
    """
    if response_type is bytes:
        return content
    if response_type is str:
        return content.decode("utf-8")
    return _type_adapter(response_type).validate_json(content)


def _error_data(response: httpx.Response) -> dict[str, Any]:
    """Best-effort JSON error payload of a failed response."""
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class DownloadStream:
    """Readable byte stream over an open streaming response.

    Close it (or use it as a context manager) once done.
    """

    def __init__(self, response: httpx.Response):
        self._response = response

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def content_type(self) -> str | None:
        return self._response.headers.get("content-type")

    def iter_bytes(self, chunk_size: int | None = None) -> Iterator[bytes]:
        return self._response.iter_bytes(chunk_size)

    def read(self) -> bytes:
        return self._response.read()

    def close(self) -> None:
        self._response.close()

    def __enter__(self) -> DownloadStream:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class AsyncDownloadStream:
    """Async counterpart of `DownloadStream`."""

    def __init__(self, response: httpx.Response):
        self._response = response

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def content_type(self) -> str | None:
        return self._response.headers.get("content-type")

    def aiter_bytes(self, chunk_size: int | None = None) -> AsyncIterator[bytes]:
        return self._response.aiter_bytes(chunk_size)

    async def read(self) -> bytes:
        return await self._response.aread()

    async def aclose(self) -> None:
        await self._response.aclose()

    async def __aenter__(self) -> AsyncDownloadStream:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


class PocketBase:
    """Client for a PocketBase backend.

    Owns the httpx clients unless they are injected, the auth store, the
    middleware chain, and the batch/realtime/record services.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        config: ClientConfig | None = None,
        auth_store: AuthStore | None = None,
        language: str | None = None,
        http_client: httpx.Client | None = None,
        async_http_client: httpx.AsyncClient | None = None,
    ):
        # Overrides apply to a copy; a shared config is never mutated
        self.config = dataclasses.replace(config) if config else ClientConfig()
        if base_url:
            self.config.base_url = base_url
        if language:
            self.config.language = language

        self.auth_store = auth_store or AuthStore()
        self.before_send: list[BeforeSendHook] = []
        self.after_send: list[AfterSendHook] = []

        self._http = http_client
        self._async_http = async_http_client
        self._owns_http = http_client is None
        self._owns_async_http = async_http_client is None

        self._executor: ThreadPoolExecutor | None = None

        self._record_services: dict[str, RecordService] = {}
        self._auth_services: dict[str, AuthService] = {}
        self.batch = BatchService(self)
        self.realtime = RealtimeService(self)

    @property
    def base_url(self) -> str:
        return self.config.base_url

    @property
    def http(self) -> httpx.Client:
        """Sync httpx client (created on first use)."""
        if self._http is None:
            self._http = httpx.Client(timeout=self.config.timeout)
        return self._http

    @property
    def executor(self) -> ThreadPoolExecutor:
        """Pool running cancellable sync sends (created on first use)."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(thread_name_prefix="pocketbase-send")
        return self._executor

    @property
    def async_http(self) -> httpx.AsyncClient:
        """Async httpx client (created on first use)."""
        if self._async_http is None:
            self._async_http = httpx.AsyncClient(timeout=self.config.timeout)
        return self._async_http

    # =========================================================================
    # Services
    # =========================================================================

    def collection(self, name: str) -> RecordService:
        """Get the (memoized) record service for a collection."""
        service = self._record_services.get(name)
        if service is None:
            service = RecordService(self, name)
            self._record_services[name] = service
        return service

    def auth_collection(self, name: str) -> AuthService:
        """Get the (memoized) auth service for an auth collection."""
        service = self._auth_services.get(name)
        if service is None:
            service = AuthService(self, name)
            self._auth_services[name] = service
        return service

    def create_batch(self) -> BatchBuilder:
        return self.batch.create_batch()

    # =========================================================================
    # Request building
    # =========================================================================

    def build_url(self, path: str, query: Mapping[str, Any] | None = None) -> str:
        return build_url(self.config.base_url, path, query)

    def build_request(
        self,
        path: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        query: Mapping[str, Any] | None = None,
        body: Mapping[str, Any] | None = None,
        files: Iterable[FileAttachment | None] | None = None,
        cancel: CancelToken | None = None,
    ) -> RequestDescriptor:
        """Build the request descriptor, injecting Authorization and Accept-Language."""
        request_headers = httpx.Headers(headers or {})
        if "Authorization" not in request_headers and self.auth_store.is_valid:
            request_headers["Authorization"] = self.auth_store.token or ""
        if "Accept-Language" not in request_headers and self.config.language:
            request_headers["Accept-Language"] = self.config.language

        return RequestDescriptor(
            method=method.upper(),
            url=self.build_url(path, query),
            path=path,
            headers=request_headers,
            query=normalize_query_params(query),
            body=dict(body or {}),
            files=tuple(f for f in (files or ()) if f is not None),
            cancel=cancel,
            base_url=self.config.base_url,
        )

    def _prepare(self, request: RequestDescriptor) -> Result[RequestDescriptor]:
        try:
            return Result.ok(apply_before_send(self.before_send, request))
        except Exception as e:
            logger.warning(f"Pre-send hook failed for {request.method} {request.url}: {e}")
            error = ClientError.local(f"Pre-send hook failed: {e}")
            error.method, error.url = request.method, request.url
            return Result.fail(error)

    def _observe(self, response: httpx.Response) -> None:
        try:
            apply_after_send(self.after_send, response)
        except Exception:
            logger.exception("Error in post-send hook")

    def _finish(
        self, request: RequestDescriptor, response: httpx.Response, response_type: Any
    ) -> Result[Any]:
        """Map a fully read response to a Result."""
        self._observe(response)
        status = response.status_code
        logger.debug(f"{request.method} {request.url} -> {status}")

        if status >= 400:
            return Result.fail(
                ClientError.protocol(request.method, request.url, status, _error_data(response))
            )
        if response_type is None or not response.content:
            return Result.ok(None)
        try:
            return Result.ok(decode_body(response_type, response.content))
        except ValueError as e:
            logger.debug(f"Decode failed for {request.method} {request.url}: {e}")
            return Result.fail(ClientError.decode(request.method, request.url, status, e))

    # =========================================================================
    # Send (sync)
    # =========================================================================

    def send(
        self,
        path: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        query: Mapping[str, Any] | None = None,
        body: Mapping[str, Any] | None = None,
        files: Iterable[FileAttachment | None] | None = None,
        *,
        response_type: Any = None,
        cancel: CancelToken | None = None,
    ) -> Result[Any]:
        """Send a request and decode the body into response_type.

        With response_type None the body is ignored and a successful
        result holds None. Never raises for transport, protocol, decode or
        cancellation failures.
        """
        prepared = self._prepare(
            self.build_request(path, method, headers, query, body, files, cancel)
        )
        if prepared.error is not None:
            return Result.fail(prepared.error)
        request: RequestDescriptor = prepared.value  # type: ignore[assignment]

        if cancel is not None and cancel.is_cancelled:
            return Result.fail(ClientError.cancelled(request.method, request.url))

        try:
            response = self._dispatch(request, cancel, read=True)
        except _Cancelled:
            return Result.fail(ClientError.cancelled(request.method, request.url))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            if cancel is not None and cancel.is_cancelled:
                return Result.fail(ClientError.cancelled(request.method, request.url))
            logger.warning(f"{request.method} {request.url} failed: {e}")
            return Result.fail(ClientError.transport(request.method, request.url, e))

        return self._finish(request, response, response_type)

    def _transmit(
        self, request: RequestDescriptor, cancel: CancelToken | None, read: bool
    ) -> httpx.Response:
        response = self.http.send(request.encode(self.http), stream=True)
        if not read:
            return response
        # A cancel during the body read closes the stream under the reader
        remove = cancel.add_callback(response.close) if cancel is not None else None
        try:
            response.read()
        finally:
            if remove is not None:
                remove()
            response.close()
        return response

    def _dispatch(
        self, request: RequestDescriptor, cancel: CancelToken | None, *, read: bool
    ) -> httpx.Response:
        """Run the exchange, raising _Cancelled as soon as the token fires.

        Without a token the exchange runs on the calling thread. With one it
        runs on the send pool, so cancelling abandons it even before the
        response headers arrive; a late response is closed when it lands.
        """
        if cancel is None:
            return self._transmit(request, None, read)

        future = self.executor.submit(self._transmit, request, cancel, read)
        settled = threading.Event()
        future.add_done_callback(lambda _: settled.set())
        remove = cancel.add_callback(settled.set)
        try:
            settled.wait()
        finally:
            remove()

        if not future.done() or (cancel.is_cancelled and future.exception() is not None):
            future.add_done_callback(_close_abandoned)
            raise _Cancelled()
        return future.result()

    def get_stream(
        self,
        path: str,
        query: Mapping[str, Any] | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[DownloadStream]:
        """Open a GET as a byte stream without buffering the payload."""
        prepared = self._prepare(self.build_request(path, "GET", query=query, cancel=cancel))
        if prepared.error is not None:
            return Result.fail(prepared.error)
        request: RequestDescriptor = prepared.value  # type: ignore[assignment]

        if cancel is not None and cancel.is_cancelled:
            return Result.fail(ClientError.cancelled(request.method, request.url))

        try:
            response = self._dispatch(request, cancel, read=False)
        except _Cancelled:
            return Result.fail(ClientError.cancelled(request.method, request.url))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"GET {request.url} failed: {e}")
            return Result.fail(ClientError.transport(request.method, request.url, e))

        self._observe(response)
        if response.status_code >= 400:
            try:
                response.read()
                data = _error_data(response)
            except httpx.HTTPError:
                data = {}
            finally:
                response.close()
            return Result.fail(
                ClientError.protocol(request.method, request.url, response.status_code, data)
            )
        return Result.ok(DownloadStream(response))

    def health(self, *, cancel: CancelToken | None = None) -> Result[HealthCheck]:
        return self.send("/api/health", "GET", response_type=HealthCheck, cancel=cancel)

    # =========================================================================
    # Send (async)
    # =========================================================================

    async def send_async(
        self,
        path: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        query: Mapping[str, Any] | None = None,
        body: Mapping[str, Any] | None = None,
        files: Iterable[FileAttachment | None] | None = None,
        *,
        response_type: Any = None,
        cancel: CancelToken | None = None,
    ) -> Result[Any]:
        """Async variant of `send`; suspends only on network I/O."""
        prepared = self._prepare(
            self.build_request(path, method, headers, query, body, files, cancel)
        )
        if prepared.error is not None:
            return Result.fail(prepared.error)
        request: RequestDescriptor = prepared.value  # type: ignore[assignment]

        if cancel is not None and cancel.is_cancelled:
            return Result.fail(ClientError.cancelled(request.method, request.url))

        try:
            response = await _race(self.async_http.send(request.encode(self.async_http)), cancel)
        except _Cancelled:
            return Result.fail(ClientError.cancelled(request.method, request.url))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"{request.method} {request.url} failed: {e}")
            return Result.fail(ClientError.transport(request.method, request.url, e))

        return self._finish(request, response, response_type)

    async def get_stream_async(
        self,
        path: str,
        query: Mapping[str, Any] | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[AsyncDownloadStream]:
        """Async variant of `get_stream`."""
        prepared = self._prepare(self.build_request(path, "GET", query=query, cancel=cancel))
        if prepared.error is not None:
            return Result.fail(prepared.error)
        request: RequestDescriptor = prepared.value  # type: ignore[assignment]

        if cancel is not None and cancel.is_cancelled:
            return Result.fail(ClientError.cancelled(request.method, request.url))

        try:
            response = await _race(
                self.async_http.send(request.encode(self.async_http), stream=True), cancel
            )
        except _Cancelled:
            return Result.fail(ClientError.cancelled(request.method, request.url))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"GET {request.url} failed: {e}")
            return Result.fail(ClientError.transport(request.method, request.url, e))

        self._observe(response)
        if response.status_code >= 400:
            try:
                await response.aread()
                data = _error_data(response)
            except httpx.HTTPError:
                data = {}
            finally:
                await response.aclose()
            return Result.fail(
                ClientError.protocol(request.method, request.url, response.status_code, data)
            )
        return Result.ok(AsyncDownloadStream(response))

    async def health_async(self, *, cancel: CancelToken | None = None) -> Result[HealthCheck]:
        return await self.send_async("/api/health", "GET", response_type=HealthCheck, cancel=cancel)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Close the sync httpx client if this instance created it, and the send pool."""
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        if self._http is not None and self._owns_http:
            self._http.close()
            self._http = None

    async def aclose(self) -> None:
        """Stop realtime and close owned httpx clients."""
        await self.realtime.disconnect()
        if self._async_http is not None and self._owns_async_http:
            await self._async_http.aclose()
            self._async_http = None
        self.close()

    def __enter__(self) -> PocketBase:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    async def __aenter__(self) -> PocketBase:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


def _close_abandoned(future: Future[httpx.Response]) -> None:
    if not future.cancelled() and future.exception() is None:
        future.result().close()


async def _race(awaitable: Awaitable[R], cancel: CancelToken | None) -> R:
    """Await awaitable, aborting it promptly if the cancel token fires."""
    if cancel is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        task.cancel()
        waiter.cancel()
        raise

    if task in done:
        waiter.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await waiter
        return task.result()

    task.cancel()
    with contextlib.suppress(asyncio.CancelledError, Exception):
        await task
    raise _Cancelled()
