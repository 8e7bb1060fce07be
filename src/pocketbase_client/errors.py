"""Typed results and client errors.

Every send path returns a `Result` instead of raising. A result is exactly
one of success or failure. Failures carry a `ClientError` describing the
HTTP method, the resolved URL and the status code (None when no response
was obtained).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Where a failure came from."""

    TRANSPORT = "transport"  # No HTTP response (refused, timeout, DNS)
    PROTOCOL = "protocol"  # HTTP status >= 400
    DECODE = "decode"  # Body did not parse into the expected type
    CANCELLED = "cancelled"  # Cancel token signalled
    LOCAL = "local"  # Rejected before any network call


class ClientError(Exception):
    """Error object carried by a failed `Result`.

    Also an exception so that `Result.unwrap()` can raise it.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        method: str | None = None,
        url: str | None = None,
        status: int | None = None,
        data: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.method = method
        self.url = url
        self.status = status
        self.data = data or {}

    @classmethod
    def protocol(
        cls, method: str, url: str, status: int, data: dict[str, Any] | None = None
    ) -> ClientError:
        message = f"{method} request to {url} resulted in {status}"
        if data and data.get("message"):
            message = f"{message}: {data['message']}"
        return cls(ErrorKind.PROTOCOL, message, method=method, url=url, status=status, data=data)

    @classmethod
    def transport(cls, method: str, url: str, cause: BaseException) -> ClientError:
        return cls(
            ErrorKind.TRANSPORT,
            f"{method} request to {url} failed: {cause}",
            method=method,
            url=url,
        )

    @classmethod
    def decode(cls, method: str, url: str, status: int, cause: BaseException) -> ClientError:
        return cls(
            ErrorKind.DECODE,
            f"Failed to decode response of {method} {url}: {cause}",
            method=method,
            url=url,
            status=status,
        )

    @classmethod
    def cancelled(cls, method: str, url: str) -> ClientError:
        return cls(
            ErrorKind.CANCELLED,
            f"{method} request to {url} was cancelled",
            method=method,
            url=url,
        )

    @classmethod
    def local(cls, message: str) -> ClientError:
        return cls(ErrorKind.LOCAL, message)

    def __repr__(self) -> str:
        return (
            f"ClientError(kind={self.kind.value!r}, method={self.method!r}, "
            f"url={self.url!r}, status={self.status!r}, message={self.message!r})"
        )


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success/failure outcome of a client call.

    Build with `Result.ok(value)` or `Result.fail(error)`; never both.
    A success may hold None for endpoints with no typed body.
    """

    value: T | None = None
    error: ClientError | None = None

    @classmethod
    def ok(cls, value: T | None = None) -> Result[T]:
        return cls(value=value)

    @classmethod
    def fail(cls, error: ClientError) -> Result[T]:
        return cls(error=error)

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    def unwrap(self) -> T | None:
        """Return the value, or raise the carried `ClientError`."""
        if self.error is not None:
            raise self.error
        return self.value

    def __bool__(self) -> bool:
        return self.is_success
