"""Server-Sent Events parsing.

Handles the full line protocol (event/data/id/retry fields, comments,
multi-line data) rather than just `data:` lines.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable, Iterator
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class SSEMessage:
    """One dispatched SSE message."""

    event: str = "message"
    data: str = ""
    id: str | None = None
    retry: int | None = None

    def json(self) -> Any:
        """Parse data as JSON; empty data yields an empty dict."""
        if not self.data:
            return {}
        return json.loads(self.data)


class SSEDecoder:
    """Incremental decoder: feed lines, get a message on each blank line."""

    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []
        self._last_id: str | None = None
        self._retry: int | None = None

    def decode(self, line: str) -> SSEMessage | None:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            if "\0" not in value:
                self._last_id = value
        elif name == "retry":
            try:
                self._retry = int(value)
            except ValueError:
                pass
        return None

    def _dispatch(self) -> SSEMessage | None:
        if not self._event and not self._data:
            return None
        message = SSEMessage(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._last_id,
            retry=self._retry,
        )
        self._event = ""
        self._data = []
        self._retry = None
        return message


def iter_sse_messages(lines: Iterable[str]) -> Iterator[SSEMessage]:
    decoder = SSEDecoder()
    for line in lines:
        message = decoder.decode(line)
        if message is not None:
            yield message


async def aiter_sse_messages(lines: AsyncIterator[str]) -> AsyncIterator[SSEMessage]:
    decoder = SSEDecoder()
    async for line in lines:
        message = decoder.decode(line)
        if message is not None:
            yield message
