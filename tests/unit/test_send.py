"""Unit tests for the request/response pipeline (sync and async)."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time

import httpx
import pytest
from pydantic import BaseModel

from pocketbase_client import (
    AuthStore,
    BytesFile,
    CancelToken,
    ClientError,
    ErrorKind,
    FilepathFile,
    HealthCheck,
    ListResult,
    PocketBase,
    RecordModel,
    Result,
)

from conftest import BASE_URL, Recorder


class Todo(RecordModel):
    name: str | None = None


class Strict(BaseModel):
    count: int


# =============================================================================
# Result
# =============================================================================


class TestResult:
    """Result is exactly one of success or failure."""

    def test_ok(self):
        result = Result.ok(5)
        assert result.is_success
        assert not result.is_failure
        assert result.unwrap() == 5
        assert bool(result)

    def test_ok_with_none_value(self):
        result = Result.ok()
        assert result.is_success
        assert result.value is None

    def test_fail(self):
        error = ClientError.local("nope")
        result = Result.fail(error)
        assert result.is_failure
        assert not bool(result)
        with pytest.raises(ClientError):
            result.unwrap()

    def test_protocol_message_includes_server_message(self):
        error = ClientError.protocol("GET", "http://pb.test/x", 400, {"message": "Bad filter."})
        assert str(error) == "GET request to http://pb.test/x resulted in 400: Bad filter."
        assert error.status == 400


# =============================================================================
# Header injection
# =============================================================================


class TestHeaders:
    """Authorization and Accept-Language defaults."""

    def test_language_header_injected(self, client: PocketBase, recorder: Recorder):
        recorder.json("GET", "/api/health", {"code": 200, "message": "ok"})

        client.send("/api/health")

        assert recorder.requests[-1].headers["Accept-Language"] == "en-US"

    def test_caller_language_not_overridden(self, client: PocketBase, recorder: Recorder):
        recorder.json("GET", "/api/health", {})

        client.send("/api/health", headers={"accept-language": "de-DE"})

        assert recorder.requests[-1].headers["Accept-Language"] == "de-DE"

    def test_valid_token_injected(self, client: PocketBase, recorder: Recorder, token_factory):
        token = token_factory()
        client.auth_store.save(token)
        recorder.json("GET", "/api/health", {})

        client.send("/api/health")

        assert recorder.requests[-1].headers["Authorization"] == token

    def test_expired_token_not_injected(
        self, client: PocketBase, recorder: Recorder, token_factory
    ):
        client.auth_store.save(token_factory(exp_offset=-60))
        recorder.json("GET", "/api/health", {})

        client.send("/api/health")

        assert "Authorization" not in recorder.requests[-1].headers

    def test_caller_authorization_not_overridden(
        self, client: PocketBase, recorder: Recorder, token_factory
    ):
        client.auth_store.save(token_factory())
        recorder.json("GET", "/api/health", {})

        client.send("/api/health", headers={"Authorization": "custom"})

        assert recorder.requests[-1].headers["Authorization"] == "custom"

    def test_language_from_constructor(self, recorder: Recorder):
        client = PocketBase(
            BASE_URL,
            language="fr-FR",
            http_client=httpx.Client(transport=httpx.MockTransport(recorder)),
        )
        recorder.json("GET", "/api/health", {})

        client.send("/api/health")

        assert recorder.requests[-1].headers["Accept-Language"] == "fr-FR"


# =============================================================================
# Middleware hooks
# =============================================================================


class TestHooks:
    """Pre-send hooks rewrite, post-send hooks observe."""

    def test_before_send_runs_in_order(self, client: PocketBase, recorder: Recorder):
        recorder.json("GET", "/api/health", {})
        client.before_send.append(lambda r: r.with_header("X-Trace", "first"))
        client.before_send.append(
            lambda r: r.with_header("X-Trace", r.headers["X-Trace"] + ",second")
        )

        client.send("/api/health")

        assert recorder.requests[-1].headers["X-Trace"] == "first,second"

    def test_before_send_can_rewrite_url(self, client: PocketBase, recorder: Recorder):
        recorder.json("GET", "/api/other", {})
        client.before_send.append(lambda r: r.replace(url=f"{BASE_URL}/api/other"))

        result = client.send("/api/health")

        assert result.is_success
        assert recorder.requests[-1].url.path == "/api/other"

    def test_before_send_query_change_reaches_wire(self, client: PocketBase, recorder: Recorder):
        recorder.json("GET", "/api/collections/todos/records", {})
        client.before_send.append(lambda r: r.replace(query={**r.query, "page": 2}))

        client.send("/api/collections/todos/records", query={"page": 1, "perPage": 5})

        params = recorder.requests[-1].url.params
        assert params["page"] == "2"
        assert params["perPage"] == "5"

    def test_before_send_path_change_reaches_wire(self, client: PocketBase, recorder: Recorder):
        recorder.json("GET", "/api/other", {})
        client.before_send.append(lambda r: r.replace(path="/api/other"))

        result = client.send("/api/health", query={"fields": "code"})

        assert result.is_success
        assert recorder.requests[-1].url.path == "/api/other"
        assert recorder.requests[-1].url.params["fields"] == "code"

    def test_after_send_observes_response(self, client: PocketBase, recorder: Recorder):
        recorder.json("GET", "/api/health", {})
        statuses: list[int] = []
        client.after_send.append(lambda response: statuses.append(response.status_code))

        client.send("/api/health")

        assert statuses == [200]

    def test_failing_before_send_is_local_failure(self, client: PocketBase, recorder: Recorder):
        def boom(request):
            raise RuntimeError("hook broke")

        client.before_send.append(boom)

        result = client.send("/api/health")

        assert result.error.kind is ErrorKind.LOCAL
        assert recorder.requests == []

    def test_failing_after_send_does_not_fail_call(
        self, client: PocketBase, recorder: Recorder, caplog
    ):
        recorder.json("GET", "/api/health", {"code": 200, "message": "ok"})

        def boom(response):
            raise RuntimeError("observer broke")

        client.after_send.append(boom)

        with caplog.at_level(logging.ERROR, logger="pocketbase_client.client"):
            result = client.send("/api/health", response_type=HealthCheck)

        assert result.is_success
        assert "Error in post-send hook" in caplog.text


# =============================================================================
# Outcome mapping
# =============================================================================


class TestOutcomes:
    """Every outcome maps to a Result."""

    def test_success_decodes_typed_body(self, client: PocketBase, recorder: Recorder):
        recorder.json("GET", "/api/health", {"code": 200, "message": "API is healthy.", "data": {}})

        result = client.send("/api/health", response_type=HealthCheck)

        assert result.is_success
        assert result.value.message == "API is healthy."

    def test_generic_list_result(self, client: PocketBase, recorder: Recorder):
        recorder.json(
            "GET",
            "/api/collections/todos/records",
            {
                "page": 1,
                "perPage": 30,
                "totalItems": 1,
                "totalPages": 1,
                "items": [{"id": "abc", "name": "Buy milk", "collectionName": "todos"}],
            },
        )

        result = client.send("/api/collections/todos/records", response_type=ListResult[Todo])

        assert result.value.total_items == 1
        assert result.value.items[0].name == "Buy milk"
        assert result.value.items[0].collection_name == "todos"

    def test_no_response_type_ignores_body(self, client: PocketBase, recorder: Recorder):
        recorder.json("GET", "/api/health", {"anything": True})

        result = client.send("/api/health")

        assert result.is_success
        assert result.value is None

    def test_empty_body_is_success_with_none(self, client: PocketBase, recorder: Recorder):
        recorder.status("DELETE", "/api/collections/todos/records/abc", 204)

        result = client.send("/api/collections/todos/records/abc", "DELETE", response_type=Todo)

        assert result.is_success
        assert result.value is None

    def test_missing_record_is_protocol_failure(self, client: PocketBase, recorder: Recorder):
        result = client.send("/api/collections/todos/records/doesnotexist", response_type=Todo)

        assert result.is_failure
        assert result.error.kind is ErrorKind.PROTOCOL
        assert result.error.status == 404
        assert result.error.method == "GET"
        assert result.error.url == f"{BASE_URL}/api/collections/todos/records/doesnotexist"
        assert result.error.data["message"] == "Not found."

    def test_transport_failure(self, client: PocketBase, recorder: Recorder):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        recorder.route("GET", "/api/health", refuse)

        result = client.send("/api/health")

        assert result.error.kind is ErrorKind.TRANSPORT
        assert result.error.status is None
        assert "connection refused" in result.error.message

    def test_decode_failure(self, client: PocketBase, recorder: Recorder):
        recorder.route("GET", "/api/health", lambda r: httpx.Response(200, content=b"not json"))

        result = client.send("/api/health", response_type=HealthCheck)

        assert result.error.kind is ErrorKind.DECODE
        assert result.error.status == 200

    def test_validation_failure_is_decode(self, client: PocketBase, recorder: Recorder):
        recorder.json("GET", "/api/stats", {"count": "many"})

        result = client.send("/api/stats", response_type=Strict)

        assert result.error.kind is ErrorKind.DECODE

    def test_raw_bytes_response(self, client: PocketBase, recorder: Recorder):
        recorder.route("GET", "/api/raw", lambda r: httpx.Response(200, content=b"\x00\x01"))

        result = client.send("/api/raw", response_type=bytes)

        assert result.value == b"\x00\x01"

    def test_query_parameters_on_wire(self, client: PocketBase, recorder: Recorder):
        recorder.json("GET", "/api/collections/todos/records", {"items": []})

        client.send(
            "/api/collections/todos/records", query={"filter": "done = false", "tag": ["a", "b"]}
        )

        url = recorder.requests[-1].url
        assert url.params.get_list("tag") == ["a", "b"]
        assert url.params["filter"] == "done = false"


# =============================================================================
# Body encoding
# =============================================================================


class TestBodyEncoding:
    """JSON without files, multipart with files."""

    def test_json_body(self, client: PocketBase, recorder: Recorder):
        recorder.json("POST", "/api/collections/todos/records", {"id": "1"})

        client.send("/api/collections/todos/records", "POST", body={"name": "x", "tags": ["a"]})

        request = recorder.requests[-1]
        assert request.headers["content-type"] == "application/json"
        assert json.loads(request.content) == {"name": "x", "tags": ["a"]}

    def test_multipart_body(self, client: PocketBase, recorder: Recorder):
        recorder.json("POST", "/api/collections/todos/records", {"id": "1"})

        client.send(
            "/api/collections/todos/records",
            "POST",
            body={"name": "x", "tags": ["a", "b"]},
            files=[BytesFile(b"hello", "attachment", "notes.txt"), None],
        )

        request = recorder.requests[-1]
        content = request.read()
        assert request.headers["content-type"].startswith("multipart/form-data")
        assert b'name="tags0"' in content
        assert b'name="tags1"' in content
        assert b'filename="notes.txt"' in content
        assert b"Content-Type: text/plain" in content

    def test_unreadable_files_still_multipart(
        self, client: PocketBase, recorder: Recorder, tmp_path
    ):
        recorder.json("POST", "/api/collections/todos/records", {"id": "new"})

        client.send(
            "/api/collections/todos/records",
            "POST",
            body={"title": "hi", "tags": ["a", "b"]},
            files=[FilepathFile(tmp_path / "missing.png", "avatar")],
        )

        request = recorder.requests[-1]
        assert request.headers["content-type"].startswith("multipart/form-data")
        assert b'name="title"' in request.content
        assert b'name="tags0"' in request.content


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    """Cancelled calls fail with CANCELLED."""

    def test_pre_cancelled_sync_makes_no_request(self, client: PocketBase, recorder: Recorder):
        token = CancelToken()
        token.cancel()

        result = client.send("/api/health", cancel=token)

        assert result.error.kind is ErrorKind.CANCELLED
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_pre_cancelled_async_makes_no_request(
        self, client: PocketBase, recorder: Recorder
    ):
        token = CancelToken()
        token.cancel()

        result = await client.send_async("/api/health", cancel=token)

        assert result.error.kind is ErrorKind.CANCELLED
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_cancel_during_async_request(self):
        started = asyncio.Event()

        async def slow(request: httpx.Request) -> httpx.Response:
            started.set()
            await asyncio.sleep(10)
            return httpx.Response(200, json={})

        client = PocketBase(
            BASE_URL, async_http_client=httpx.AsyncClient(transport=httpx.MockTransport(slow))
        )
        token = CancelToken()

        task = asyncio.create_task(client.send_async("/api/health", cancel=token))
        await started.wait()
        token.cancel()
        result = await asyncio.wait_for(task, timeout=2)

        assert result.error.kind is ErrorKind.CANCELLED

    def test_cancel_during_sync_request_before_headers(self):
        release = threading.Event()

        def blocked(request: httpx.Request) -> httpx.Response:
            release.wait(5)
            return httpx.Response(200, json={})

        http = httpx.Client(transport=httpx.MockTransport(blocked))
        client = PocketBase(BASE_URL, http_client=http)
        token = CancelToken()
        timer = threading.Timer(0.1, token.cancel)
        timer.start()
        try:
            started = time.monotonic()
            result = client.send("/api/health", cancel=token)
            elapsed = time.monotonic() - started
        finally:
            timer.cancel()
            release.set()
            client.close()

        assert result.error.kind is ErrorKind.CANCELLED
        assert elapsed < 1.0

    def test_cancel_during_sync_stream_open(self):
        release = threading.Event()

        def blocked(request: httpx.Request) -> httpx.Response:
            release.wait(5)
            return httpx.Response(200, content=b"data")

        http = httpx.Client(transport=httpx.MockTransport(blocked))
        client = PocketBase(BASE_URL, http_client=http)
        token = CancelToken()
        timer = threading.Timer(0.1, token.cancel)
        timer.start()
        try:
            started = time.monotonic()
            result = client.get_stream("/api/files/a/b/c.txt", cancel=token)
            elapsed = time.monotonic() - started
        finally:
            timer.cancel()
            release.set()
            client.close()

        assert result.error.kind is ErrorKind.CANCELLED
        assert elapsed < 1.0

    def test_uncancelled_token_completes(self, client: PocketBase, recorder: Recorder):
        recorder.json("GET", "/api/health", {"code": 200, "message": "ok"})

        result = client.send("/api/health", response_type=HealthCheck, cancel=CancelToken())

        assert result.value.message == "ok"

    def test_callback_runs_immediately_when_already_cancelled(self):
        token = CancelToken()
        token.cancel()
        calls: list[str] = []

        token.add_callback(lambda: calls.append("ran"))

        assert calls == ["ran"]

    def test_removed_callback_not_run(self):
        token = CancelToken()
        calls: list[str] = []

        remove = token.add_callback(lambda: calls.append("ran"))
        remove()
        token.cancel()

        assert calls == []


# =============================================================================
# Async send
# =============================================================================


class TestSendAsync:
    """Async variant shares the sync semantics."""

    @pytest.mark.asyncio
    async def test_success(self, client: PocketBase, recorder: Recorder):
        recorder.json("GET", "/api/health", {"code": 200, "message": "ok"})

        result = await client.health_async()

        assert result.value.message == "ok"

    @pytest.mark.asyncio
    async def test_protocol_failure(self, client: PocketBase, recorder: Recorder):
        result = await client.send_async("/api/collections/todos/records/doesnotexist")

        assert result.error.kind is ErrorKind.PROTOCOL
        assert result.error.status == 404

    @pytest.mark.asyncio
    async def test_transport_failure(self, client: PocketBase, recorder: Recorder):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        recorder.route("GET", "/api/health", refuse)

        result = await client.send_async("/api/health")

        assert result.error.kind is ErrorKind.TRANSPORT


# =============================================================================
# Streaming download
# =============================================================================


class TestGetStream:
    """Downloads are handed back as open streams."""

    def test_stream_reads_payload(self, client: PocketBase, recorder: Recorder):
        headers = {"content-type": "text/plain"}
        recorder.route(
            "GET",
            "/api/files/todos/abc/a.txt",
            lambda r: httpx.Response(200, content=b"file body", headers=headers),
        )

        result = client.get_stream("/api/files/todos/abc/a.txt")

        with result.value as stream:
            assert stream.content_type == "text/plain"
            assert b"".join(stream.iter_bytes()) == b"file body"

    def test_stream_failure_status(self, client: PocketBase):
        result = client.get_stream("/api/files/todos/abc/missing.txt")

        assert result.error.kind is ErrorKind.PROTOCOL
        assert result.error.status == 404

    @pytest.mark.asyncio
    async def test_async_stream_reads_payload(self, client: PocketBase, recorder: Recorder):
        recorder.route(
            "GET", "/api/files/todos/abc/a.txt", lambda r: httpx.Response(200, content=b"xyz")
        )

        result = await client.get_stream_async("/api/files/todos/abc/a.txt")

        async with result.value as stream:
            assert await stream.read() == b"xyz"


class TestAuthStore:
    """Token validity and change notification."""

    def test_valid_token(self, token_factory):
        assert AuthStore(token_factory()).is_valid

    def test_expired_token(self, token_factory):
        assert not AuthStore(token_factory(exp_offset=-10)).is_valid

    def test_malformed_token(self):
        assert not AuthStore("not-a-jwt").is_valid

    def test_change_listener(self, token_factory):
        store = AuthStore()
        events = []
        unsubscribe = store.on_change(events.append)

        store.save(token_factory(), {"id": "user_1"})
        store.clear()
        unsubscribe()
        store.save("ignored")

        assert len(events) == 2
        assert events[0].model == {"id": "user_1"}
        assert events[1].token is None
