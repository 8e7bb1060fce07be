"""Batch requests - many record mutations in one wire call.

Operations run server-side in the order they were added and the response
array is index-aligned with them. Nothing here correlates by id.

A later operation cannot reference an id generated by an earlier one in the
same batch. When records depend on each other (parent, then children
pointing at it), send the parent first and batch the rest:

    parent = client.collection("todos").create({"name": "Groceries"}).unwrap()
    batch = client.create_batch()
    for name in ("milk", "eggs"):
        batch.create("entries", {"name": name, "todo": parent.id})
    result = batch.send()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from .cancellation import CancelToken
from .errors import ClientError, Result
from .models import BatchResponseItem
from .serialization import construct_body

if TYPE_CHECKING:
    from .client import PocketBase

logger = logging.getLogger(__name__)

BATCH_PATH = "/api/batch"

BatchResponse = list[BatchResponseItem]


class BatchMethod(str, Enum):
    """Batch operation kinds and their HTTP verbs."""

    CREATE = "POST"
    UPDATE = "PATCH"
    UPSERT = "PUT"
    DELETE = "DELETE"


def records_url(collection: str, record_id: str | None = None, expand: str | None = None) -> str:
    url = f"/api/collections/{quote(collection, safe='')}/records"
    if record_id:
        url += f"/{quote(record_id, safe='')}"
    if expand:
        url += f"?expand={quote(expand, safe=',.')}"
    return url


@dataclass(frozen=True)
class BatchOperation:
    """One create/update/upsert/delete inside a batch."""

    method: BatchMethod
    collection: str
    record_id: str | None = None
    body: dict[str, Any] = field(default_factory=dict)
    expand: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def url(self) -> str:
        # Upserts address the collection; the id travels in the body
        record_id = None if self.method == BatchMethod.UPSERT else self.record_id
        return records_url(self.collection, record_id, self.expand)

    def to_request(self) -> dict[str, Any]:
        """Serialize as an independent sub-request."""
        return {
            "method": self.method.value,
            "url": self.url,
            "body": self.body,
            "headers": self.headers,
        }


def _explicit_id(data: Any) -> str | None:
    if isinstance(data, Mapping):
        value = data.get("id")
    else:
        value = getattr(data, "id", None)
    return value if isinstance(value, str) and value else None


class BatchBuilder:
    """Accumulates an ordered list of operations and submits them at once.

    Every add method returns the builder for chaining.
    """

    def __init__(self, service: BatchService):
        self._service = service
        self._operations: list[BatchOperation] = []

    @property
    def operations(self) -> list[BatchOperation]:
        return list(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def create(self, collection: str, data: Any, expand: str | None = None) -> BatchBuilder:
        self._operations.append(
            BatchOperation(BatchMethod.CREATE, collection, body=construct_body(data), expand=expand)
        )
        return self

    def update(
        self, collection: str, record_id: str, data: Any, expand: str | None = None
    ) -> BatchBuilder:
        if not record_id:
            raise ValueError("update requires a record id")
        self._operations.append(
            BatchOperation(
                BatchMethod.UPDATE, collection, record_id, body=construct_body(data), expand=expand
            )
        )
        return self

    def upsert(
        self,
        collection: str,
        data: Any,
        record_id: str | None = None,
        expand: str | None = None,
    ) -> BatchBuilder:
        """Add an upsert; the id comes from record_id or from data.id."""
        record_id = record_id or _explicit_id(data)
        if not record_id:
            raise ValueError("upsert requires a record id (argument or data.id)")
        body = {"id": record_id, **construct_body(data)}
        self._operations.append(
            BatchOperation(BatchMethod.UPSERT, collection, record_id, body=body, expand=expand)
        )
        return self

    def delete(self, collection: str, record_id: str) -> BatchBuilder:
        if not record_id:
            raise ValueError("delete requires a record id")
        self._operations.append(BatchOperation(BatchMethod.DELETE, collection, record_id))
        return self

    def send(
        self,
        headers: Mapping[str, str] | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[BatchResponse]:
        """Submit all operations; empty batches fail locally."""
        return self._service.send_batch(self._operations, headers, cancel=cancel)

    async def send_async(
        self,
        headers: Mapping[str, str] | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[BatchResponse]:
        return await self._service.send_batch_async(self._operations, headers, cancel=cancel)


class BatchService:
    """Posts operation lists to the batch endpoint."""

    def __init__(self, client: PocketBase):
        self._client = client

    def create_batch(self) -> BatchBuilder:
        return BatchBuilder(self)

    @staticmethod
    def build_payload(operations: list[BatchOperation]) -> dict[str, Any]:
        return {"requests": [op.to_request() for op in operations]}

    def send_batch(
        self,
        operations: list[BatchOperation],
        headers: Mapping[str, str] | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[BatchResponse]:
        if not operations:
            return Result.fail(ClientError.local("No operations added to batch"))
        logger.debug(f"Sending batch with {len(operations)} operations")
        result = self._client.send(
            BATCH_PATH,
            "POST",
            headers=headers,
            body=self.build_payload(operations),
            response_type=BatchResponse,
            cancel=cancel,
        )
        return self._check(result, len(operations))

    async def send_batch_async(
        self,
        operations: list[BatchOperation],
        headers: Mapping[str, str] | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[BatchResponse]:
        if not operations:
            return Result.fail(ClientError.local("No operations added to batch"))
        logger.debug(f"Sending batch with {len(operations)} operations")
        result = await self._client.send_async(
            BATCH_PATH,
            "POST",
            headers=headers,
            body=self.build_payload(operations),
            response_type=BatchResponse,
            cancel=cancel,
        )
        return self._check(result, len(operations))

    @staticmethod
    def _check(result: Result[BatchResponse], expected: int) -> Result[BatchResponse]:
        """Only the outer call's failure short-circuits; item failures pass through."""
        if result.is_failure:
            return result
        items = result.value or []
        if len(items) != expected:
            logger.warning(f"Batch returned {len(items)} items for {expected} operations")
        failed = sum(1 for item in items if not item.is_success)
        if failed:
            logger.debug(f"Batch completed with {failed} failed operations")
        return Result.ok(items)
