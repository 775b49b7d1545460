from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, AsyncIterator, Callable

from pagereader.schemas.reader import EventMessage, ReaderEventName


Listener = Callable[[EventMessage], None]
logger = logging.getLogger(__name__)


class EventBus:
    """In-process fan-out of reader events.

    Listeners run synchronously inside ``publish`` so that a cause (a block
    becoming visible) and its effect (the block being enqueued) share one tick.
    Subscribers get their own bounded queue; when it is full the oldest message
    is dropped.
    """

    def __init__(self, queue_size: int = 256) -> None:
        self.queue_size = queue_size
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._queues: list[tuple[asyncio.Queue[EventMessage], frozenset[str] | None]] = []

    def listen(self, event: ReaderEventName, listener: Listener) -> Callable[[], None]:
        self._listeners[event].append(listener)

        def _unlisten() -> None:
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

        return _unlisten

    def publish(self, event: ReaderEventName, payload: dict[str, Any] | None = None, *, book_id: str | None = None) -> EventMessage:
        message = EventMessage(event=event, book_id=book_id, payload=payload or {})
        for listener in list(self._listeners.get(event, ())):
            listener(message)
        for queue, events in self._queues:
            if events is not None and event not in events:
                continue
            if queue.full():
                queue.get_nowait()
                logger.debug("event queue full, dropped oldest message")
            queue.put_nowait(message)
        return message

    async def subscribe(self, *events: ReaderEventName) -> AsyncIterator[EventMessage]:
        queue: asyncio.Queue[EventMessage] = asyncio.Queue(maxsize=self.queue_size)
        entry = (queue, frozenset(events) if events else None)
        self._queues.append(entry)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.remove(entry)
