"""Per-collection record operations.

Thin glue over the client: every method builds a path/query/body and hands
it to `send` / `send_async`. Results are decoded into `model` (a
`RecordModel` subclass, `RecordModel` by default).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from .batch import records_url
from .errors import Result
from .files import FileAttachment
from .models import ListResult, RecordModel
from .realtime import Listener
from .serialization import construct_body

if TYPE_CHECKING:
    from .cancellation import CancelToken
    from .client import AsyncDownloadStream, DownloadStream, PocketBase


class RecordService:
    """CRUD, file and realtime helpers for one collection."""

    def __init__(self, client: PocketBase, collection: str, model: type[RecordModel] = RecordModel):
        self._client = client
        self.collection = collection
        self.model = model

    def base_path(self, record_id: str | None = None) -> str:
        return records_url(self.collection, record_id)

    def _list_query(
        self,
        page: int,
        per_page: int,
        filter: str | None,
        sort: str | None,
        expand: str | None,
    ) -> dict[str, Any]:
        return {
            "page": page,
            "perPage": per_page,
            "filter": filter,
            "sort": sort,
            "expand": expand,
        }

    # =========================================================================
    # Read
    # =========================================================================

    def list(
        self,
        page: int = 1,
        per_page: int = 30,
        filter: str | None = None,
        sort: str | None = None,
        expand: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[ListResult[Any]]:
        return self._client.send(
            self.base_path(),
            "GET",
            query=self._list_query(page, per_page, filter, sort, expand),
            response_type=ListResult[self.model],  # type: ignore[name-defined]
            cancel=cancel,
        )

    async def list_async(
        self,
        page: int = 1,
        per_page: int = 30,
        filter: str | None = None,
        sort: str | None = None,
        expand: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[ListResult[Any]]:
        return await self._client.send_async(
            self.base_path(),
            "GET",
            query=self._list_query(page, per_page, filter, sort, expand),
            response_type=ListResult[self.model],  # type: ignore[name-defined]
            cancel=cancel,
        )

    def get_full_list(
        self,
        batch: int = 100,
        filter: str | None = None,
        sort: str | None = None,
        expand: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[list[Any]]:
        """Fetch every page until total_items is reached or a page comes back empty."""
        items: list[Any] = []
        page = 1
        while True:
            result = self.list(page, batch, filter, sort, expand, cancel=cancel)
            if result.is_failure:
                return Result.fail(result.error)  # type: ignore[arg-type]
            listing = result.value
            if listing is None or not listing.items:
                break
            items.extend(listing.items)
            if len(items) >= listing.total_items:
                break
            page += 1
        return Result.ok(items)

    async def get_full_list_async(
        self,
        batch: int = 100,
        filter: str | None = None,
        sort: str | None = None,
        expand: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[list[Any]]:
        items: list[Any] = []
        page = 1
        while True:
            result = await self.list_async(page, batch, filter, sort, expand, cancel=cancel)
            if result.is_failure:
                return Result.fail(result.error)  # type: ignore[arg-type]
            listing = result.value
            if listing is None or not listing.items:
                break
            items.extend(listing.items)
            if len(items) >= listing.total_items:
                break
            page += 1
        return Result.ok(items)

    def get_one(
        self, record_id: str, expand: str | None = None, *, cancel: CancelToken | None = None
    ) -> Result[Any]:
        return self._client.send(
            self.base_path(record_id),
            "GET",
            query={"expand": expand},
            response_type=self.model,
            cancel=cancel,
        )

    async def get_one_async(
        self, record_id: str, expand: str | None = None, *, cancel: CancelToken | None = None
    ) -> Result[Any]:
        return await self._client.send_async(
            self.base_path(record_id),
            "GET",
            query={"expand": expand},
            response_type=self.model,
            cancel=cancel,
        )

    # =========================================================================
    # Write
    # =========================================================================

    def create(
        self,
        data: Any,
        files: Iterable[FileAttachment] | None = None,
        expand: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[Any]:
        return self._client.send(
            self.base_path(),
            "POST",
            query={"expand": expand},
            body=construct_body(data),
            files=files,
            response_type=self.model,
            cancel=cancel,
        )

    async def create_async(
        self,
        data: Any,
        files: Iterable[FileAttachment] | None = None,
        expand: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[Any]:
        return await self._client.send_async(
            self.base_path(),
            "POST",
            query={"expand": expand},
            body=construct_body(data),
            files=files,
            response_type=self.model,
            cancel=cancel,
        )

    def update(
        self,
        record_id: str,
        data: Any,
        files: Iterable[FileAttachment] | None = None,
        expand: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[Any]:
        return self._client.send(
            self.base_path(record_id),
            "PATCH",
            query={"expand": expand},
            body=construct_body(data),
            files=files,
            response_type=self.model,
            cancel=cancel,
        )

    async def update_async(
        self,
        record_id: str,
        data: Any,
        files: Iterable[FileAttachment] | None = None,
        expand: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[Any]:
        return await self._client.send_async(
            self.base_path(record_id),
            "PATCH",
            query={"expand": expand},
            body=construct_body(data),
            files=files,
            response_type=self.model,
            cancel=cancel,
        )

    def delete(self, record_id: str, *, cancel: CancelToken | None = None) -> Result[None]:
        return self._client.send(self.base_path(record_id), "DELETE", cancel=cancel)

    async def delete_async(
        self, record_id: str, *, cancel: CancelToken | None = None
    ) -> Result[None]:
        return await self._client.send_async(self.base_path(record_id), "DELETE", cancel=cancel)

    # =========================================================================
    # Files
    # =========================================================================

    def _file_path(self, record_id: str, file_name: str) -> str:
        return (
            f"/api/files/{quote(self.collection, safe='')}/"
            f"{quote(record_id, safe='')}/{quote(file_name)}"
        )

    def get_file_url(
        self, record_id: str, file_name: str, query: Mapping[str, Any] | None = None
    ) -> str:
        return self._client.build_url(self._file_path(record_id, file_name), query)

    def download_file(
        self,
        record_id: str,
        file_name: str,
        thumb: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[DownloadStream]:
        """Stream a record file; thumb is a size spec such as "100x100"."""
        return self._client.get_stream(
            self._file_path(record_id, file_name), {"thumb": thumb}, cancel=cancel
        )

    async def download_file_async(
        self,
        record_id: str,
        file_name: str,
        thumb: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[AsyncDownloadStream]:
        return await self._client.get_stream_async(
            self._file_path(record_id, file_name), {"thumb": thumb}, cancel=cancel
        )

    # =========================================================================
    # Realtime
    # =========================================================================

    def topic(self, topic: str = "*") -> str:
        return f"{self.collection}/{topic}"

    async def subscribe(self, listener: Listener, topic: str = "*") -> Result[None]:
        """Subscribe to "<collection>/<topic>" ("*" = every record)."""
        return await self._client.realtime.subscribe(self.topic(topic), listener)

    async def unsubscribe(self, topic: str | None = None) -> Result[None]:
        """Remove one topic of this collection, or all of them when topic is None."""
        if topic is None:
            return await self._client.realtime.unsubscribe_by_prefix(f"{self.collection}/")
        return await self._client.realtime.unsubscribe(self.topic(topic))
