"""Cooperative cancellation signal threaded through client calls."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable


class CancelToken:
    """One-shot cancellation signal.

    Safe to signal from any thread. Sync code polls `is_cancelled`; async
    code awaits `wait()`.

    Usage:
        token = CancelToken()
        task = asyncio.create_task(client.send_async("/api/health", cancel=token))
        token.cancel()
        result = await task  # failure with ErrorKind.CANCELLED
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._lock = threading.Lock()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run callback on cancellation (immediately if already cancelled).

        Returns a function that removes the callback.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return remove
        callback()
        return lambda: None

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()

        def wake() -> None:
            loop.call_soon_threadsafe(_resolve, future)

        remove = self.add_callback(wake)
        try:
            await future
        finally:
            remove()


def _resolve(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)
