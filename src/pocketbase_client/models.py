"""Wire schemas.

Field names are snake_case in Python and camelCase on the wire through the
`to_camel` alias generator. Each record type declares statically which
fields never go into a request body.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .serialization import construct_body

T = TypeVar("T")


class WireModel(BaseModel):
    """Base for all wire models: camelCase aliases, populate by name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecordModel(WireModel):
    """A collection record.

    Subclass to add typed fields. Unknown fields returned by the server are
    kept (extra="allow") so plain `RecordModel` works for any collection.

    Example:
        class Todo(RecordModel):
            name: str | None = None
            due: datetime | None = None
            done_at: datetime | None = Field(default=None, alias="finished")
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    # Server-assigned identity/audit fields, never sent in a body
    body_exclude: ClassVar[frozenset[str]] = frozenset(
        {"id", "created", "updated", "collection_id", "collection_name"}
    )

    id: str | None = None
    created: datetime | None = None
    updated: datetime | None = None
    collection_id: str | None = None
    collection_name: str | None = None

    def to_body(self) -> dict[str, Any]:
        """Flat wire mapping of this record, without identity/audit fields."""
        return construct_body(self)


class ListResult(WireModel, Generic[T]):
    """One page of a record listing."""

    page: int = 1
    per_page: int = 0
    total_items: int = 0
    total_pages: int = 0
    items: list[T] = Field(default_factory=list)


class BatchResponseItem(WireModel):
    """Outcome of one batch operation, index-aligned with the request."""

    status: int
    body: Any = None

    @property
    def is_success(self) -> bool:
        return self.status < 400


class HealthCheck(WireModel):
    code: int = 200
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)


class RecordAuthResponse(WireModel, Generic[T]):
    """Token and auth record returned by the auth endpoints."""

    token: str
    record: T | None = None
    meta: dict[str, Any] | None = None


class AuthProviderInfo(WireModel):
    """One OAuth2 provider as listed by `auth-methods`."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str
    state: str = ""
    code_verifier: str = ""
    code_challenge: str = ""
    code_challenge_method: str = ""
    auth_url: str = ""


class AuthMethodsList(WireModel):
    """Auth methods enabled on a collection."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    username_password: bool | None = None
    email_password: bool | None = None
    auth_providers: list[AuthProviderInfo] = Field(default_factory=list)


class ExternalAuth(WireModel):
    """An OAuth2 identity linked to an auth record."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str | None = None
    created: datetime | None = None
    updated: datetime | None = None
    record_id: str | None = None
    collection_id: str | None = None
    provider: str = ""
    provider_id: str = ""
