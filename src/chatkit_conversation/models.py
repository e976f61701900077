from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .runtime_types import ContentRecord, ItemRecord, WorkflowRecord


# Wire key -> attribute name. Only keys present in an incoming record are copied.
_CONTENT_FIELDS: tuple[tuple[str, str], ...] = (
    ("type", "kind"),
    ("text", "text"),
)

_WORKFLOW_FIELDS: tuple[tuple[str, str], ...] = (
    ("type", "kind"),
    ("tasks", "tasks"),
    ("summary", "summary"),
    ("expanded", "expanded"),
    ("response_items", "response_items"),
)

_ITEM_FIELDS: tuple[tuple[str, str], ...] = (
    ("id", "id"),
    ("thread_id", "thread_id"),
    ("created_at", "created_at"),
    ("type", "kind"),
    ("attachments", "attachments"),
    ("quoted_text", "quoted_text"),
    ("inference_options", "inference_options"),
)


def _require_mapping(value: object, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise TypeError(f"{what} must be an object, got {type(value).__name__}")
    return value


def _apply_present(
    target: object,
    data: Mapping[str, Any],
    fields: tuple[tuple[str, str], ...],
) -> None:
    """Copy the keys present in ``data`` onto ``target``.

    An absent key leaves the attribute untouched; a key present with ``None``
    overwrites it with ``None``.
    """
    for wire_key, attr in fields:
        if wire_key in data:
            setattr(target, attr, data[wire_key])


def _dump(target: object, fields: tuple[tuple[str, str], ...]) -> dict[str, Any]:
    return {wire_key: getattr(target, attr) for wire_key, attr in fields}


@dataclass
class ContentPart:
    kind: str | None = None  # "input_text", "output_text", ...
    text: str | None = None

    @classmethod
    def from_event(cls, data: object) -> ContentPart:
        part = cls()
        part.update(_require_mapping(data, "content part"))
        return part

    def update(self, data: ContentRecord | Mapping[str, Any]) -> None:
        _apply_present(self, data, _CONTENT_FIELDS)

    def append_text(self, delta: str) -> None:
        self.text = (self.text or "") + delta

    def to_dict(self) -> dict[str, Any]:
        return _dump(self, _CONTENT_FIELDS)


@dataclass
class WorkflowState:
    """Side-channel state of a workflow step (reasoning, tool tasks, ...)."""

    kind: str | None = None
    tasks: list[dict[str, Any]] | None = None
    summary: dict[str, Any] | None = None
    expanded: bool | None = None
    response_items: list[dict[str, Any]] | None = None

    @classmethod
    def from_event(cls, data: object) -> WorkflowState:
        """Build from a full workflow record; missing keys stay ``None``."""
        workflow = cls()
        workflow.update(_require_mapping(data, "workflow"))
        return workflow

    def update(self, data: WorkflowRecord | Mapping[str, Any]) -> None:
        _apply_present(self, data, _WORKFLOW_FIELDS)

    def to_dict(self) -> dict[str, Any]:
        return _dump(self, _WORKFLOW_FIELDS)


@dataclass
class Item:
    """One thread entry.

    ``content`` keeps insertion order. Content of the record currently being
    streamed starts at ``segment_start``: a record with a new id opens a new
    segment, so one conversation turn can gather the user message, the
    workflow and the assistant reply in order.
    """

    id: str | None = None
    thread_id: str | None = None
    created_at: str | None = None
    kind: str | None = None  # "user_message", "assistant_message", "workflow"
    content: list[ContentPart] = field(default_factory=list)
    workflow: WorkflowState | None = None
    deltas: list[str] = field(default_factory=list)  # raw text deltas, append-only
    attachments: list[Any] | None = None
    quoted_text: str | None = None
    inference_options: dict[str, Any] | None = None
    segment_start: int = field(default=0, repr=False)

    @classmethod
    def from_event(cls, data: ItemRecord | Mapping[str, Any]) -> Item:
        item = cls()
        item.merge(data)
        return item

    @property
    def text(self) -> str:
        """Concatenated text of all content parts, one per line."""
        return "\n".join(part.text for part in self.content if part.text)

    def merge(self, data: ItemRecord | Mapping[str, Any]) -> None:
        """Merge an item snapshot (``thread.item.added`` / ``thread.item.done``)."""
        record_id = data.get("id")
        if record_id is not None and record_id != self.id:
            self.segment_start = len(self.content)

        _apply_present(self, data, _ITEM_FIELDS)

        if "content" in data:
            raw_parts = data["content"] or []
            if not isinstance(raw_parts, list):
                raise TypeError(f"item content must be a list, got {type(raw_parts).__name__}")
            parts = [ContentPart.from_event(raw) for raw in raw_parts]
            self.content[self.segment_start:] = parts

        if "workflow" in data and data["workflow"] is not None:
            self.merge_workflow(data["workflow"])

    def merge_workflow(self, data: object) -> WorkflowState:
        data = _require_mapping(data, "workflow")
        if self.workflow is None:
            self.workflow = WorkflowState.from_event(data)
        else:
            self.workflow.update(data)
        return self.workflow

    def content_part(self, index: object = None) -> ContentPart | None:
        """Return the part at ``index`` within the current segment.

        Falls back to the most recently added part of the segment when
        ``index`` is missing or out of range. Parts of earlier segments are
        never returned.
        """
        segment = self.content[self.segment_start:]
        if isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(segment):
            return segment[index]
        return segment[-1] if segment else None

    def to_dict(self) -> dict[str, Any]:
        data = _dump(self, _ITEM_FIELDS)
        data["content"] = [part.to_dict() for part in self.content]
        data["workflow"] = self.workflow.to_dict() if self.workflow is not None else None
        data["deltas"] = list(self.deltas)
        return data
