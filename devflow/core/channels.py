"""Async fan-out of execution snapshots.

A ``SnapshotChannel`` subscribes to an ``ExecutionStateStore`` and queues the
serialized form of every snapshot. The queue is unbounded and never coalesces,
so a consumer sees each mutation in order even if it falls behind.
"""

import asyncio
import threading
from typing import Any

from devflow.core.context import ExecutionContext, serialize_context
from devflow.core.state import ExecutionStateStore


class SnapshotChannel:
    """Queue of serialized contexts bound to the event loop that created it."""

    def __init__(self, store: ExecutionStateStore):
        self._loop = asyncio.get_running_loop()
        self._thread_id = threading.get_ident()
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._unsubscribe = store.subscribe(self._on_snapshot)
        self.closed = False

    def _on_snapshot(self, snapshot: ExecutionContext) -> None:
        payload = serialize_context(snapshot)
        if threading.get_ident() == self._thread_id:
            self._queue.put_nowait(payload)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, payload)

    async def get(self) -> dict[str, Any]:
        return await self._queue.get()

    def get_nowait(self) -> dict[str, Any]:
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if not self.closed:
            self._unsubscribe()
            self.closed = True

    async def __aenter__(self) -> "SnapshotChannel":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __aiter__(self) -> "SnapshotChannel":
        return self

    async def __anext__(self) -> dict[str, Any]:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        return await self._queue.get()
