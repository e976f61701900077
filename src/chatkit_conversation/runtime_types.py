from __future__ import annotations

from typing import Any, Literal, TypedDict


ThreadEventType = Literal[
    "thread.created",
    "thread.updated",
    "thread.item.added",
    "thread.item.done",
    "thread.item.updated",
]


class ContentRecord(TypedDict, total=False):
    type: str | None
    text: str | None


class WorkflowRecord(TypedDict, total=False):
    type: str | None
    tasks: list[dict[str, Any]] | None
    summary: dict[str, Any] | None
    expanded: bool | None
    response_items: list[dict[str, Any]] | None


class ThreadRecord(TypedDict, total=False):
    id: str | None
    created_at: str | None
    status: dict[str, Any] | None
    title: str | None
    metadata: dict[str, Any] | None


class ItemRecord(TypedDict, total=False):
    id: str | None
    thread_id: str | None
    created_at: str | None
    type: str | None
    content: list[ContentRecord]
    workflow: WorkflowRecord
    attachments: list[Any]
    quoted_text: str
    inference_options: dict[str, Any]


class ItemUpdateRecord(TypedDict, total=False):
    type: str
    content_index: int
    content: ContentRecord
    delta: str
    workflow: WorkflowRecord
    tasks: list[dict[str, Any]] | None
    summary: dict[str, Any] | None
    expanded: bool | None
    response_items: list[dict[str, Any]] | None


class EventRecord(TypedDict, total=False):
    """One decoded stream event. Which nested key is set depends on ``type``."""

    type: str
    thread: ThreadRecord
    item: ItemRecord
    item_id: str
    update: ItemUpdateRecord
