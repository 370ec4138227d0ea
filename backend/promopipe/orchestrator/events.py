"""Generation events and the per-run output channel.

The orchestrator pushes events onto an ``EventChannel``; the HTTP layer (or
the CLI) drains it and writes one NDJSON line per event. The channel owns
the terminal guarantees of a run:

- emits after ``close()`` are silent no-ops, so a consumer that went away
  cannot crash the producer;
- ``close()`` is idempotent;
- ``finish()`` emits the single ``complete`` event and closes the channel,
  and any later ``finish()`` is ignored.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Literal, Optional

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

EventType = Literal[
    "status",
    "productData",
    "videoScript",
    "reactPageCode",
    "remotionCode",
    "videoUrl",
    "error",
    "complete",
]

NDJSON_MEDIA_TYPE = "application/x-ndjson"


class GenerationEvent(BaseModel):
    """Single wire-level event. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    data: Any = None

    def to_line(self) -> str:
        """Encode as one NDJSON line."""
        return json.dumps({"type": self.type, "data": self.data}, default=str) + "\n"


def status_event(step: str, message: str, attempts: Optional[int] = None) -> GenerationEvent:
    data: dict[str, Any] = {"step": step, "message": message}
    if attempts is not None:
        data["attempts"] = attempts
    return GenerationEvent(type="status", data=data)


def error_event(errors: list[str]) -> GenerationEvent:
    return GenerationEvent(type="error", data={"errors": list(errors)})


def complete_event(success: bool, message: Optional[str] = None) -> GenerationEvent:
    data: dict[str, Any] = {"success": success}
    if message:
        data["message"] = message
    return GenerationEvent(type="complete", data=data)


_CLOSED = object()


class EventChannel:
    """Ordered, close-guarded event queue for one run."""

    def __init__(self) -> None:
        # Unbounded so emit never blocks on a consumer that has gone away
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._completed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def completed(self) -> bool:
        return self._completed

    async def emit(self, event: GenerationEvent) -> bool:
        """Enqueue an event. Returns False (and drops it) once closed."""
        if self._closed:
            logger.debug(f"Dropping {event.type} event, channel closed")
            return False
        if event.type == "complete":
            raise ValueError("Use finish() to emit the complete event")
        await self._queue.put(event)
        return True

    async def finish(self, success: bool, message: Optional[str] = None) -> bool:
        """Emit the terminal ``complete`` event once, then close."""
        if self._completed:
            return False
        self._completed = True
        if self._closed:
            return False
        await self._queue.put(complete_event(success, message))
        self.close()
        return True

    def close(self) -> None:
        """Close the channel. Safe to call any number of times."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def events(self) -> AsyncIterator[GenerationEvent]:
        """Yield events in emission order until the channel closes."""
        while True:
            if self._closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def lines(self) -> AsyncIterator[str]:
        """NDJSON lines for a streaming HTTP response.

        Closes the channel when the consumer stops iterating, which is how a
        client disconnect reaches the producer.
        """
        try:
            async for event in self.events():
                yield event.to_line()
        finally:
            self.close()
