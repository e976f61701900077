from __future__ import annotations

import logging
from collections.abc import AsyncIterable, Callable, Iterable, Mapping
from dataclasses import dataclass, field

from .runtime_types import EventRecord, ThreadEventType
from .stream import Chunk, EventFramer
from .thread import Thread

logger = logging.getLogger(__name__)

_HANDLERS: dict[ThreadEventType, Callable[[Thread, EventRecord], object]] = {
    "thread.created": Thread.apply_thread_fields,
    "thread.updated": Thread.apply_thread_fields,
    "thread.item.added": Thread.upsert_item,
    "thread.item.done": Thread.upsert_item,
    "thread.item.updated": Thread.apply_item_update,
}


@dataclass
class ConversationState:
    """Response of one conversation request.

    Pass the same state to the next request to continue its thread.
    """

    thread: Thread = field(default_factory=Thread)

    def parse(self, record: EventRecord) -> None:
        """Route one decoded event record to the thread by its ``type`` tag.

        Records without a known tag are ignored. Raises ``TypeError`` when the
        record is not an object or its tag is not a string.
        """
        if not isinstance(record, Mapping):
            raise TypeError(f"event record must be an object, got {type(record).__name__}")

        event_type = record.get("type")
        if event_type is not None and not isinstance(event_type, str):
            raise TypeError(f"event type must be a string, got {type(event_type).__name__}")
        handler = _HANDLERS.get(event_type)  # type: ignore[arg-type]
        if handler is None:
            logger.debug("Ignoring event type %r", event_type)
            return
        handler(self.thread, record)

    def consume(self, chunks: Iterable[Chunk]) -> ConversationState:
        """Frame, decode and apply a whole stream body."""
        EventFramer().stream(chunks, self.parse)
        return self

    async def aconsume(self, chunks: AsyncIterable[Chunk]) -> ConversationState:
        await EventFramer().astream(chunks, self.parse)
        return self
