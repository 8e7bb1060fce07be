"""Middleware chain around the core send call.

Pre-send hooks have the shape `(RequestDescriptor) -> RequestDescriptor`
and run in registration order; each may return a rewritten descriptor.
Post-send hooks have the shape `(httpx.Response) -> None` and only observe.

Retry and refresh policies belong here, never in the send path itself.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx

from .request import RequestDescriptor

if TYPE_CHECKING:
    from .auth import AuthStore

logger = logging.getLogger(__name__)

BeforeSendHook = Callable[[RequestDescriptor], RequestDescriptor]
AfterSendHook = Callable[[httpx.Response], None]


def apply_before_send(
    hooks: list[BeforeSendHook], request: RequestDescriptor
) -> RequestDescriptor:
    for hook in hooks:
        request = hook(request)
    return request


def apply_after_send(hooks: list[AfterSendHook], response: httpx.Response) -> None:
    for hook in hooks:
        hook(response)


def auth_refresh_hook(
    auth_store: AuthStore,
    refresh: Callable[[AuthStore], None],
    threshold: float = 0.0,
) -> BeforeSendHook:
    """Create a hook that refreshes an expiring token before sending.

    At most one refresh call is made per request. The refresh callable is
    expected to update the store (e.g. via `auth_store.save()`); if the
    token is still invalid afterwards the request goes out unchanged.
    Requests sent by the refresh callable itself pass straight through.

    `AuthService.refresh_hook()` builds this hook around the collection's
    own `auth_refresh`.

    Args:
        auth_store: Store holding the current token
        refresh: Callable performing the refresh against the backend
        threshold: Refresh once the token expires within this many seconds
    """
    refreshing = False

    def hook(request: RequestDescriptor) -> RequestDescriptor:
        nonlocal refreshing
        if refreshing or not auth_store.token or not auth_store.expires_within(threshold):
            return request
        logger.debug("Auth token expiring, refreshing before request")
        refreshing = True
        try:
            refresh(auth_store)
        except Exception as e:
            logger.warning(f"Auth refresh failed: {e}")
            return request
        finally:
            refreshing = False
        if auth_store.is_valid and auth_store.token:
            return request.with_header("Authorization", auth_store.token)
        return request

    return hook


def log_response_hook(level: int = logging.DEBUG) -> AfterSendHook:
    """Create a hook that logs each response status."""

    def hook(response: httpx.Response) -> None:
        logger.log(
            level,
            f"{response.request.method} {response.request.url} -> {response.status_code}",
        )

    return hook
