"""Request descriptors and URL construction.

A `RequestDescriptor` is built fresh for every call and never mutated;
pre-send hooks return a new descriptor via `with_header()` / `replace()`.
Encoding into an `httpx.Request` happens after the hooks have run.
"""

from __future__ import annotations

import dataclasses
import secrets
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote_plus

import httpx

from .cancellation import CancelToken
from .files import FileAttachment
from .serialization import to_form_value, to_wire_value

QueryParams = dict[str, list[str]]


def join_url(base_url: str, path: str) -> str:
    """Join base URL and path with exactly one slash between them."""
    return f"{base_url.rstrip('/')}/{(path or '').lstrip('/')}"


def normalize_query_params(params: Mapping[str, Any] | None) -> QueryParams:
    """Normalize query parameters into key -> ordered list of strings.

    Scalars become one-element lists, iterables (other than strings) are
    expanded, None entries are dropped, and keys left with no values are
    omitted. Key order follows insertion order.
    """
    result: QueryParams = {}
    if not params:
        return result

    for key, value in params.items():
        if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
            items: Iterable[Any] = [value]
        else:
            items = value

        normalized = [_query_value(item) for item in items if item is not None]
        if normalized:
            result[key] = normalized
    return result


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    wire = to_wire_value(value)
    return wire if isinstance(wire, str) else str(wire)


def build_query_string(params: Mapping[str, Any] | None) -> str:
    """Flatten parameters into repeated, percent-encoded `key=value` pairs."""
    segments = [
        f"{quote_plus(key)}={quote_plus(value)}"
        for key, values in normalize_query_params(params).items()
        for value in values
    ]
    return "&".join(segments)


def build_url(base_url: str, path: str, query: Mapping[str, Any] | None = None) -> str:
    """Build the full request URL from base URL, path and query parameters."""
    url = join_url(base_url, path)
    query_string = build_query_string(query)
    if query_string:
        url = f"{url}?{query_string}"
    return url


def flatten_form_fields(body: Mapping[str, Any] | None) -> list[tuple[str, str]]:
    """Flatten a body mapping into multipart string fields.

    List values are exploded into indexed keys (`tags0`, `tags1`, ...)
    since the form encoding does not carry arrays. Null and blank values are
    omitted entirely.
    """
    fields: list[tuple[str, str]] = []
    if not body:
        return fields

    for key, value in body.items():
        if isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                text = to_form_value(item)
                if text is not None:
                    fields.append((f"{key}{index}", text))
        else:
            text = to_form_value(value)
            if text is not None:
                fields.append((key, text))
    return fields


def build_file_parts(
    files: Iterable[FileAttachment | None],
) -> list[tuple[str, tuple[str, Any, str]]]:
    """Convert attachments into httpx multipart file tuples.

    Attachments without a field name, a file name or readable content are
    skipped.
    """
    parts: list[tuple[str, tuple[str, Any, str]]] = []
    for file in files:
        if file is None or not file.is_uploadable:
            continue
        content = file.open()
        if content is None or file.field_name is None or file.file_name is None:
            continue
        parts.append((file.field_name, (file.file_name, content, file.mime_type)))
    return parts


@dataclass(frozen=True)
class RequestDescriptor:
    """Everything needed to send one request.

    Header lookups are case-insensitive (`httpx.Headers`); treat the
    instance as immutable and derive new ones with `with_header()`.
    """

    method: str
    url: str
    path: str
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    query: QueryParams = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)
    files: Sequence[FileAttachment] = ()
    cancel: CancelToken | None = None
    base_url: str = ""

    @property
    def is_multipart(self) -> bool:
        return any(f is not None for f in self.files)

    def has_header(self, name: str) -> bool:
        return name in self.headers

    def with_header(self, name: str, value: str) -> RequestDescriptor:
        headers = httpx.Headers(self.headers)
        headers[name] = value
        return dataclasses.replace(self, headers=headers)

    def replace(self, **changes: Any) -> RequestDescriptor:
        """Derive a new descriptor.

        Changing `path` or `query` without passing `url` rebuilds the URL
        so the change reaches the wire.
        """
        if "url" not in changes and self.base_url and ("path" in changes or "query" in changes):
            if "query" in changes:
                changes["query"] = normalize_query_params(changes["query"])
            changes["url"] = build_url(
                self.base_url,
                changes.get("path", self.path),
                changes.get("query", self.query),
            )
        return dataclasses.replace(self, **changes)

    def encode(self, http: httpx.Client | httpx.AsyncClient) -> httpx.Request:
        """Encode into an httpx request: multipart when files are attached, else JSON.

        Supplying files always yields a multipart body, even when none of
        them turned out to be uploadable.
        """
        if self.is_multipart:
            parts: list[tuple[str, Any]] = [
                (key, (None, text)) for key, text in flatten_form_fields(self.body)
            ]
            parts.extend(build_file_parts(self.files))
            if parts:
                return http.build_request(
                    self.method, self.url, headers=self.headers, files=parts
                )
            boundary = secrets.token_hex(16)
            headers = httpx.Headers(self.headers)
            headers["Content-Type"] = f"multipart/form-data; boundary={boundary}"
            return http.build_request(
                self.method, self.url, headers=headers, content=f"--{boundary}--\r\n"
            )
        return http.build_request(
            self.method,
            self.url,
            headers=self.headers,
            json=to_wire_value(self.body) if self.body else None,
        )
