"""Single-writer queue for outbound envelopes.

Handlers run as concurrent tasks but never write to the output stream
themselves: they enqueue, and one writer task drains the queue in FIFO
order. Envelopes produced for one request therefore reach the host in
production order, and lines from different requests never interleave.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ai_bridge.protocol.envelope import RequestId, encode_envelope

logger = logging.getLogger(__name__)

LineSink = Callable[[str], Awaitable[None] | None]


class Outbox:
    """Queue envelopes and write them one line at a time to ``sink``."""

    def __init__(self, sink: LineSink) -> None:
        self._sink = sink
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._writer: asyncio.Task | None = None

    def send(self, type_: str, content: Any = None, request_id: RequestId | None = None) -> None:
        """Enqueue one envelope. Never blocks."""
        self._queue.put_nowait(encode_envelope(type_, content, request_id))

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain(), name="outbox-writer")

    async def _drain(self) -> None:
        while True:
            line = await self._queue.get()
            try:
                if line is None:
                    return
                result = self._sink(line)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Failed to write outbound envelope")
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued envelope has been written."""
        if self._writer is None:
            self.start()
        await self._queue.join()

    async def close(self) -> None:
        """Write everything still queued, then stop the writer."""
        if self._writer is None:
            return
        self._queue.put_nowait(None)
        await self._writer
        self._writer = None
