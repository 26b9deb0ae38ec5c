"""Server-sent event framing for streamed assistant turns.

Each event is a single ``data: <json>\\n\\n`` record; the stream always ends
with the ``data: [DONE]\\n\\n`` sentinel.
"""

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Dict, Optional, Union

from neptune.models.errors import TurnError

logger = logging.getLogger(__name__)

DONE_FRAME = "data: [DONE]\n\n"
KEEPALIVE_FRAME = ": connected\n\n"


def format_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


class StreamHandle:
    """Push side of one event stream.

    Send methods never block and become no-ops once the handle is closed, so
    late writers (cancelled tasks, watchdogs) cannot corrupt a finished stream.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._closed = False
        self._producer: Optional[asyncio.Task] = None
        self.last_activity = time.monotonic()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def idle_seconds(self) -> float:
        return time.monotonic() - self.last_activity

    def attach(self, producer: asyncio.Task) -> None:
        """Bind the task feeding this stream so a disconnect can cancel it."""
        self._producer = producer

    def _push(self, frame: str) -> None:
        self._queue.put_nowait(frame)
        self.last_activity = time.monotonic()

    def send_event(self, payload: Dict[str, Any]) -> None:
        if self._closed:
            return
        self._push(format_event(payload))

    def send_content(self, text: str) -> None:
        if text:
            self.send_event({"content": text})

    def send_error(self, error: Union[str, TurnError]) -> None:
        if isinstance(error, TurnError):
            self.send_event(error.to_event())
        else:
            self.send_event({"error": error})

    def close(self, final_payload: Optional[Dict[str, Any]] = None) -> None:
        if self._closed:
            return
        if final_payload is not None:
            self._push(format_event({**final_payload, "done": True}))
        self._push(DONE_FRAME)
        self._closed = True
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[str]:
        """Yield encoded frames until the stream is closed.

        A keep-alive comment goes out first so the transport opens before the
        first token. If the consumer stops early (client disconnect) the
        attached producer is cancelled.
        """
        finished = False
        try:
            yield KEEPALIVE_FRAME
            while True:
                frame = await self._queue.get()
                if frame is None:
                    finished = True
                    break
                yield frame
        finally:
            if not finished and self._producer is not None and not self._producer.done():
                logger.info("Stream consumer went away, cancelling turn")
                self._producer.cancel()


class EventEmitter:
    """Factory for stream handles"""

    def open(self) -> StreamHandle:
        return StreamHandle()
