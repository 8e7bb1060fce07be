"""In-memory auth state holder.

Persisting the token is up to the caller; subscribe with `on_change` and
store it wherever suits the application.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthStoreEvent:
    """Emitted whenever the stored token or model changes."""

    token: str | None
    model: Any = None


AuthChangeListener = Callable[[AuthStoreEvent], None]


def decode_token_payload(token: str) -> dict[str, Any]:
    """Decode a JWT payload without verifying the signature.

    Returns an empty dict for anything that is not a well-formed JWT.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return {}
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        decoded = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, ValueError):
        return {}
    return decoded if isinstance(decoded, dict) else {}


class AuthStore:
    """Holds the current auth token and the authenticated record/admin model."""

    def __init__(self, token: str | None = None, model: Any = None):
        self._token = token
        self._model = model
        self._listeners: list[AuthChangeListener] = []

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def model(self) -> Any:
        return self._model

    @property
    def is_valid(self) -> bool:
        """True if a token is present and its `exp` claim lies in the future."""
        if not self._token:
            return False
        exp = decode_token_payload(self._token).get("exp")
        if not isinstance(exp, (int, float)):
            return False
        return exp > time.time()

    def expires_within(self, seconds: float) -> bool:
        """True unless the token stays valid for more than `seconds` from now."""
        exp = decode_token_payload(self._token).get("exp") if self._token else None
        if not isinstance(exp, (int, float)):
            return True
        return exp - time.time() <= seconds

    def save(self, token: str | None, model: Any = None) -> None:
        self._token = token
        self._model = model
        self._notify()

    def clear(self) -> None:
        self._token = None
        self._model = None
        self._notify()

    def on_change(self, listener: AuthChangeListener) -> Callable[[], None]:
        """Register a change listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        event = AuthStoreEvent(token=self._token, model=self._model)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Error in auth store listener")
