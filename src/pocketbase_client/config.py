"""Client configuration.

A plain dataclass so callers can construct it directly, or read it from the
environment with `ClientConfig.from_env()`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_BASE_URL = "http://127.0.0.1:8090"
DEFAULT_LANGUAGE = "en-US"


@dataclass
class ClientConfig:
    """Configuration for the PocketBase client.

    Covers the HTTP side (base URL, language, timeouts) and the realtime
    reconnection policy.
    """

    base_url: str = DEFAULT_BASE_URL
    language: str = DEFAULT_LANGUAGE
    timeout: float = 30.0

    # Realtime
    connect_timeout: float = 15.0  # Max wait for PB_CONNECT on a fresh stream
    auto_reconnect: bool = True
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0
    reconnect_backoff: float = 2.0

    @classmethod
    def from_env(cls, **overrides: object) -> ClientConfig:
        """Build a config from POCKETBASE_* environment variables.

        Recognised variables:
            POCKETBASE_URL: Base URL of the server
            POCKETBASE_LANGUAGE: Value for the Accept-Language header
            POCKETBASE_TIMEOUT: Request timeout in seconds

        Keyword overrides win over the environment.
        """
        values: dict[str, object] = {}
        if url := os.environ.get("POCKETBASE_URL"):
            values["base_url"] = url
        if language := os.environ.get("POCKETBASE_LANGUAGE"):
            values["language"] = language
        if timeout := os.environ.get("POCKETBASE_TIMEOUT"):
            try:
                values["timeout"] = float(timeout)
            except ValueError as e:
                raise ValueError(f"POCKETBASE_TIMEOUT must be a number, got {timeout!r}") from e
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)  # type: ignore[arg-type]
