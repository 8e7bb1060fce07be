"""Realtime subscriptions over one shared SSE connection.

Many named topics, each with its own listeners, are multiplexed over a
single stream:

- The stream is opened lazily when the first topic is added and closed
  when the last topic goes away.
- Whenever the topic key-set changes, the full set is announced to the
  server as `{clientId, subscriptions}`.
- Each incoming message is delivered to the listeners registered under its
  event name, sequentially and in registration order.
- A dropped stream is reopened with backoff; the topic table is kept and
  re-announced once the new connection reports its client id.

All table mutations and the connection lifecycle are serialized by one
asyncio.Lock.

Connection state machine:
    DISCONNECTED -> CONNECTING -> CONNECTED <-> RECONNECTING
          ^______________________________________|  (table emptied)
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

from .errors import ClientError, ErrorKind, Result
from .sse import SSEMessage, aiter_sse_messages

if TYPE_CHECKING:
    from .client import PocketBase
    from .request import RequestDescriptor

logger = logging.getLogger(__name__)

REALTIME_PATH = "/api/realtime"
CONNECT_EVENT = "PB_CONNECT"

Listener = Callable[[SSEMessage], Awaitable[None] | None]


class ConnectionState(str, Enum):
    """Realtime connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@runtime_checkable
class RealtimeStream(Protocol):
    """A single SSE connection attempt.

    `messages()` yields until the server closes the stream or an error is
    raised; `close()` aborts it from outside.
    """

    def messages(self) -> AsyncIterator[SSEMessage]: ...

    async def close(self) -> None: ...


StreamFactory = Callable[[], RealtimeStream]


class HTTPRealtimeStream:
    """SSE stream over `GET /api/realtime` using the client's async httpx client.

    The request runs through the client's before-send and after-send hooks
    like any other call.
    """

    def __init__(self, client: PocketBase):
        self._client = client
        self._response: httpx.Response | None = None

    async def messages(self) -> AsyncIterator[SSEMessage]:
        http = self._client.async_http
        prepared = self._client._prepare(
            self._client.build_request(
                REALTIME_PATH, "GET", headers={"Accept": "text/event-stream"}
            )
        )
        if prepared.error is not None:
            raise prepared.error
        request: RequestDescriptor = prepared.value  # type: ignore[assignment]

        # No read timeout: the server keeps the stream open indefinitely
        http_request = http.build_request(
            request.method,
            request.url,
            headers=request.headers,
            timeout=httpx.Timeout(self._client.config.timeout, read=None),
        )
        response = await http.send(http_request, stream=True)
        self._response = response
        try:
            self._client._observe(response)
            response.raise_for_status()
            async for message in aiter_sse_messages(response.aiter_lines()):
                yield message
        finally:
            await response.aclose()
            self._response = None

    async def close(self) -> None:
        if self._response is not None:
            await self._response.aclose()


class RealtimeService:
    """Topic -> listeners multiplexer over one realtime connection.

    Usage:
        async def on_todo(message: SSEMessage) -> None:
            print(message.json())

        await client.realtime.subscribe("todos/*", on_todo)
        ...
        await client.realtime.unsubscribe_listener("todos/*", on_todo)
    """

    def __init__(self, client: PocketBase, stream_factory: StreamFactory | None = None):
        self._client = client
        self.stream_factory: StreamFactory = stream_factory or (
            lambda: HTTPRealtimeStream(client)
        )

        self._subscriptions: dict[str, list[Listener]] = {}
        self._state = ConnectionState.DISCONNECTED
        self._client_id: str | None = None
        self._stream: RealtimeStream | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._generation = 0
        self._last_error: BaseException | None = None

        self._lock: asyncio.Lock | None = None
        self._ready: asyncio.Event | None = None

    def _get_lock(self) -> asyncio.Lock:
        """Get or create the lock (lazy init for event loop safety)."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _get_ready(self) -> asyncio.Event:
        if self._ready is None:
            self._ready = asyncio.Event()
        return self._ready

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def client_id(self) -> str | None:
        return self._client_id

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def topics(self) -> list[str]:
        return list(self._subscriptions)

    def listeners(self, topic: str) -> list[Listener]:
        return list(self._subscriptions.get(topic, ()))

    # =========================================================================
    # Table mutations
    # =========================================================================

    async def subscribe(self, topic: str, listener: Listener) -> Result[None]:
        """Register listener for topic.

        A new topic triggers an announcement (connecting first if needed).
        Re-subscribing a listener already present is a no-op.
        """
        async with self._get_lock():
            listeners = self._subscriptions.get(topic)
            if listeners is None:
                self._subscriptions[topic] = [listener]
                return await self._submit_subscriptions()
            if listener not in listeners:
                listeners.append(listener)
            return Result.ok()

    async def unsubscribe(self, topic: str | None = None) -> Result[None]:
        """Remove one topic (all its listeners), or every topic when topic is None."""
        async with self._get_lock():
            if not topic:
                self._subscriptions.clear()
            elif topic in self._subscriptions:
                del self._subscriptions[topic]
            else:
                return Result.ok()
            return await self._submit_subscriptions()

    async def unsubscribe_by_prefix(self, prefix: str) -> Result[None]:
        """Remove every topic starting with prefix, then announce once."""
        async with self._get_lock():
            matching = [topic for topic in self._subscriptions if topic.startswith(prefix)]
            if not matching:
                return Result.ok()
            for topic in matching:
                del self._subscriptions[topic]
            return await self._submit_subscriptions()

    async def unsubscribe_listener(self, topic: str, listener: Listener) -> Result[None]:
        """Remove a single listener; drops the topic when it was the last one."""
        async with self._get_lock():
            listeners = self._subscriptions.get(topic)
            if listeners is None or listener not in listeners:
                return Result.ok()
            listeners.remove(listener)
            if listeners:
                return Result.ok()
            del self._subscriptions[topic]
            return await self._submit_subscriptions()

    async def disconnect(self) -> None:
        """Drop all topics and close the connection."""
        async with self._get_lock():
            self._subscriptions.clear()
            await self._close_connection()

    # =========================================================================
    # Announcement / connection (lock held)
    # =========================================================================

    async def _submit_subscriptions(self) -> Result[None]:
        if not self._subscriptions:
            await self._close_connection()
            return Result.ok()

        connected = await self._ensure_connected()
        if connected.is_failure:
            logger.warning(f"Realtime connection failed: {connected.error}")
            return connected
        return await self._announce()

    async def _announce(self) -> Result[None]:
        """Post the full topic set. Failures are reported, the table is kept."""
        body = {"clientId": self._client_id, "subscriptions": list(self._subscriptions)}
        result = await self._client.send_async(REALTIME_PATH, "POST", body=body)
        if result.is_failure:
            logger.warning(f"Realtime subscription announcement failed: {result.error}")
        else:
            logger.debug(f"Announced {len(self._subscriptions)} realtime topics")
        return result

    async def _ensure_connected(self) -> Result[None]:
        if self._state == ConnectionState.CONNECTED and self._client_id:
            return Result.ok()

        ready = self._get_ready()
        started = False
        if self._reader_task is None or self._reader_task.done():
            started = True
            ready.clear()
            self._last_error = None
            self._state = ConnectionState.CONNECTING
            self._reader_task = asyncio.create_task(self._read_loop(self._generation))

        try:
            await asyncio.wait_for(ready.wait(), timeout=self._client.config.connect_timeout)
        except TimeoutError:
            # A reader that was already reconnecting keeps going and will
            # announce the full table once it gets through
            if started:
                await self._close_connection()
            return Result.fail(self._connect_error("Timed out waiting for realtime connection"))

        if self._state != ConnectionState.CONNECTED:
            reason = self._last_error or "stream closed before connect"
            if started or self._reader_task is None or self._reader_task.done():
                await self._close_connection()
            return Result.fail(self._connect_error(f"Realtime connection failed: {reason}"))
        return Result.ok()

    def _connect_error(self, message: str) -> ClientError:
        return ClientError(
            ErrorKind.TRANSPORT,
            message,
            method="GET",
            url=self._client.build_url(REALTIME_PATH),
        )

    async def _close_connection(self) -> None:
        if self._state == ConnectionState.DISCONNECTED and self._reader_task is None:
            return

        self._generation += 1
        task, self._reader_task = self._reader_task, None
        stream = self._stream

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        elif stream is not None:
            # Called from a listener on the reader task itself: end the stream
            # and let the loop notice the generation change.
            await stream.close()

        self._state = ConnectionState.DISCONNECTED
        self._client_id = None
        self._get_ready().clear()
        logger.info("Realtime disconnected")

    # =========================================================================
    # Reader
    # =========================================================================

    async def _read_loop(self, generation: int) -> None:
        config = self._client.config
        delay = config.reconnect_delay

        while generation == self._generation:
            stream = self.stream_factory()
            self._stream = stream
            error: BaseException | None = None
            try:
                async for message in stream.messages():
                    if generation != self._generation:
                        break
                    if message.event == CONNECT_EVENT:
                        delay = config.reconnect_delay
                        await self._on_connect(message, generation)
                    else:
                        await self._dispatch(message)
            except Exception as e:
                error = e
            finally:
                with contextlib.suppress(Exception):
                    await stream.close()
                if self._stream is stream:
                    self._stream = None

            if generation != self._generation:
                break

            self._client_id = None
            self._last_error = error
            if not config.auto_reconnect:
                self._state = ConnectionState.DISCONNECTED
                self._get_ready().set()  # Wake a waiting connect; it sees the failure
                logger.warning(f"Realtime stream ended: {error or 'closed by server'}")
                break

            if self._state == ConnectionState.CONNECTED:
                self._state = ConnectionState.RECONNECTING
                self._get_ready().clear()
            logger.warning(
                f"Realtime stream lost: {error or 'closed by server'}. "
                f"Reconnecting in {delay}s..."
            )
            await asyncio.sleep(delay)
            delay = min(delay * config.reconnect_backoff, config.max_reconnect_delay)

    async def _on_connect(self, message: SSEMessage, generation: int) -> None:
        try:
            payload = message.json()
        except ValueError:
            payload = {}
        client_id = message.id or (payload.get("clientId") if isinstance(payload, dict) else None)
        if not client_id:
            logger.warning("PB_CONNECT without a client id, ignoring")
            return

        previous = self._state
        self._client_id = client_id
        self._state = ConnectionState.CONNECTED
        self._get_ready().set()
        logger.info(f"Realtime connected (client id {client_id})")

        if previous == ConnectionState.RECONNECTING:
            async with self._get_lock():
                if generation == self._generation and self._subscriptions:
                    await self._announce()

    async def _dispatch(self, message: SSEMessage) -> None:
        """Deliver to the event's listeners, one after another."""
        async with self._get_lock():
            listeners = list(self._subscriptions.get(message.event, ()))

        for listener in listeners:
            # Skip listeners removed by an earlier listener of this same event
            if listener not in self._subscriptions.get(message.event, ()):
                continue
            try:
                outcome = listener(message)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception(f"Error in realtime listener for {message.event}")
