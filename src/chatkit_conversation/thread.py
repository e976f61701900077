from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .models import ContentPart, Item, _apply_present, _dump, _require_mapping
from .runtime_types import EventRecord, ItemUpdateRecord, ThreadRecord

logger = logging.getLogger(__name__)

_THREAD_FIELDS: tuple[tuple[str, str], ...] = (
    ("id", "id"),
    ("created_at", "created_at"),
    ("status", "status"),
    ("title", "title"),
    ("metadata", "metadata"),
)

# Top-level keys of a workflow update merged into the item's workflow state.
_WORKFLOW_UPDATE_KEYS = ("tasks", "summary", "expanded", "response_items")

USER_MESSAGE = "user_message"


def _nested(record: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    """Return ``record[key]`` as a mapping; absent or null counts as empty."""
    value = record.get(key)
    if value is None:
        return {}
    return _require_mapping(value, f"'{key}'")


@dataclass
class Thread:
    """A conversation reconstructed from stream events.

    Items are only ever appended. Streaming updates always go to the last item,
    exposed as ``current_item``; the protocol streams one item at a time.

    Every mutating operation holds ``_lock`` for its whole duration, so readers
    using ``current_item``, ``snapshot()`` or ``to_dict()`` from another thread
    never see a half-applied event.
    """

    id: str | None = None
    created_at: str | None = None
    status: dict[str, Any] | None = None
    title: str | None = None
    metadata: dict[str, Any] | None = None
    items: list[Item] = field(default_factory=list)
    _lock: threading.RLock = field(
        default_factory=threading.RLock, init=False, repr=False, compare=False
    )

    @property
    def current_item(self) -> Item | None:
        with self._lock:
            return self.items[-1] if self.items else None

    def snapshot(self) -> list[Item]:
        """Return a copy of the item list taken under the lock."""
        with self._lock:
            return list(self.items)

    def apply_thread_fields(self, record: EventRecord) -> None:
        """Apply ``thread.created`` / ``thread.updated``."""
        data: ThreadRecord | Mapping[str, Any] = _nested(record, "thread")
        with self._lock:
            _apply_present(self, data, _THREAD_FIELDS)

    def upsert_item(self, record: EventRecord) -> Item:
        """Apply ``thread.item.added`` / ``thread.item.done``.

        A user message always starts a new item. Anything else is merged into
        the current item, which is created when the thread is still empty.
        """
        data = _nested(record, "item")
        with self._lock:
            if data.get("type") == USER_MESSAGE or not self.items:
                item = Item.from_event(data)
                self.items.append(item)
                logger.debug("Thread %s: new item %s (%s)", self.id, item.id, item.kind)
                return item

            item = self.items[-1]
            item.merge(data)
            return item

    def apply_item_update(self, record: EventRecord) -> Item | None:
        """Apply ``thread.item.updated`` to the current item.

        Returns ``None`` when the thread has no items yet.
        """
        update: ItemUpdateRecord | Mapping[str, Any] = _nested(record, "update")
        with self._lock:
            if not self.items:
                logger.debug("Thread %s: item update with no items, ignored", self.id)
                return None
            item = self.items[-1]

            item_id = record.get("item_id")
            if item_id is not None and item.id is not None and item_id != item.id:
                logger.warning(
                    "Update for item %s routed to current item %s", item_id, item.id
                )

            kind = update.get("type")
            if not isinstance(kind, str):
                return item

            if kind.endswith(".content_part.added"):
                item.content.append(ContentPart.from_event(update.get("content") or {}))
            elif kind.endswith(".content_part.text_delta"):
                self._apply_text_delta(item, update)
            elif kind.endswith(".content_part.done"):
                self._apply_content_done(item, update)
            elif kind.startswith("workflow."):
                self._apply_workflow_update(item, update)
            else:
                logger.debug("Ignoring unknown item update type %r", kind)
            return item

    @staticmethod
    def _apply_text_delta(item: Item, update: ItemUpdateRecord | Mapping[str, Any]) -> None:
        delta = update.get("delta")
        if delta is None:
            return
        if not isinstance(delta, str):
            raise TypeError(f"text delta must be a string, got {type(delta).__name__}")
        item.deltas.append(delta)
        part = item.content_part(update.get("content_index"))
        if part is None:
            part = ContentPart(text="")
            item.content.append(part)
        part.append_text(delta)

    @staticmethod
    def _apply_content_done(item: Item, update: ItemUpdateRecord | Mapping[str, Any]) -> None:
        final = _nested(update, "content")
        part = item.content_part(update.get("content_index"))
        if part is None:
            if final:
                item.content.append(ContentPart.from_event(final))
            return
        part.update(final)

    @staticmethod
    def _apply_workflow_update(item: Item, update: ItemUpdateRecord | Mapping[str, Any]) -> None:
        workflow = update.get("workflow")
        if workflow is not None:
            item.merge_workflow(workflow)
        item.merge_workflow({key: update[key] for key in _WORKFLOW_UPDATE_KEYS if key in update})

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            data = _dump(self, _THREAD_FIELDS)
            data["items"] = [item.to_dict() for item in self.items]
            return data
