"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import base64
import json
import time
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import pytest

from pocketbase_client import PocketBase, SSEMessage

BASE_URL = "http://pb.test"

Handler = Callable[[httpx.Request], httpx.Response]


def make_token(exp_offset: float = 3600) -> str:
    """Unsigned JWT whose exp lies exp_offset seconds from now."""

    def encode(data: dict[str, Any]) -> str:
        raw = json.dumps(data).encode()
        return base64.urlsafe_b64encode(raw).decode().rstrip("=")

    header = encode({"alg": "HS256", "typ": "JWT"})
    payload = encode({"id": "user_1", "exp": int(time.time() + exp_offset)})
    return f"{header}.{payload}.signature"


class Recorder:
    """MockTransport handler: records requests, answers from a route table.

    Routes are keyed by (method, path); unknown routes answer 404.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], Handler] = {}

    def route(self, method: str, path: str, handler: Handler) -> None:
        self._routes[(method, path)] = handler

    def status(self, method: str, path: str, status: int) -> None:
        self.route(method, path, lambda request: httpx.Response(status))

    def json(self, method: str, path: str, data: Any, status: int = 200) -> None:
        self.route(method, path, lambda request: httpx.Response(status, json=data))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self._routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"code": 404, "message": "Not found.", "data": {}})
        return handler(request)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def body(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content)


class FakeRealtimeStream:
    """In-memory realtime stream.

    Starts with a PB_CONNECT message; tests push further messages (or an
    exception to simulate a dropped connection) with `push`.
    """

    def __init__(self, client_id: str = "client_1", connect: bool = True):
        self.queue: asyncio.Queue[SSEMessage | BaseException | None] = asyncio.Queue()
        self.closed = False
        if connect:
            data = json.dumps({"clientId": client_id})
            self.queue.put_nowait(SSEMessage(event="PB_CONNECT", data=data, id=client_id))

    def push(self, item: SSEMessage | BaseException | None) -> None:
        self.queue.put_nowait(item)

    async def messages(self) -> AsyncIterator[SSEMessage]:
        while not self.closed:
            item = await self.queue.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True
        self.queue.put_nowait(None)


class StreamFactory:
    """Hands out fake streams, one per connection attempt."""

    def __init__(self) -> None:
        self.streams: list[FakeRealtimeStream] = []
        self.client_ids = iter(f"client_{n}" for n in range(1, 1000))

    def __call__(self) -> FakeRealtimeStream:
        stream = FakeRealtimeStream(next(self.client_ids))
        self.streams.append(stream)
        return stream

    @property
    def current(self) -> FakeRealtimeStream:
        return self.streams[-1]


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def client(recorder: Recorder) -> PocketBase:
    transport = httpx.MockTransport(recorder)
    return PocketBase(
        BASE_URL,
        http_client=httpx.Client(transport=transport),
        async_http_client=httpx.AsyncClient(transport=transport),
    )


@pytest.fixture
def streams(client: PocketBase, recorder: Recorder) -> StreamFactory:
    """Route realtime through fake streams and accept announcements."""
    factory = StreamFactory()
    client.realtime.stream_factory = factory
    client.config.reconnect_delay = 0.01
    client.config.connect_timeout = 1.0
    recorder.status("POST", "/api/realtime", 204)
    return factory


@pytest.fixture
def token_factory() -> Callable[..., str]:
    return make_token
