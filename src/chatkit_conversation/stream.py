"""Server-Sent-Events framing for the conversation stream.

Transport chunks are handed to ``httpx_sse.EventSource`` wrapped in an
``httpx.Response``, so line splitting and field parsing follow the library.
Each complete frame's ``data`` payload is JSON-decoded and handed to the
caller in arrival order.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable, Iterator
from typing import Any

import httpx
from httpx_sse import EventSource, ServerSentEvent

logger = logging.getLogger(__name__)

Chunk = bytes | str

_BOM = b"\xef\xbb\xbf"
# Two line ends in a row: a blank line, which closes a frame.
_BLANK_LINES = (b"\n\n", b"\n\r", b"\r\r")


class StreamDecodeError(ValueError):
    """The byte stream could not be turned into JSON event records."""

    def __init__(self, message: str, *, data: str | None = None) -> None:
        super().__init__(message)
        self.data = data


def _event_stream_response(content: Iterable[bytes] | AsyncIterable[bytes]) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"content-type": "text/event-stream; charset=utf-8"},
        content=content,
    )


class _FrameTail:
    """Bytes received since the last blank line.

    The SSE decoder drops an unfinished frame at end of stream; keeping the
    tail lets the framer report it instead.
    """

    def __init__(self) -> None:
        self._pending: list[bytes] = []
        self._last = b""
        self._started = False

    def track(self, chunk: Chunk) -> bytes:
        data = chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)
        if not self._started and data:
            self._started = True
            if data.startswith(_BOM):
                data = data[len(_BOM):]

        window = self._last + data
        end = max(window.rfind(marker) for marker in _BLANK_LINES)
        if end >= 0:
            self._pending = [window[end + 2:]]
        else:
            self._pending.append(data)
        self._last = window[-1:]
        return data

    def unterminated_data(self) -> str | None:
        tail = b"".join(self._pending)
        for line in tail.splitlines():
            if line == b"data" or line.startswith(b"data:"):
                return tail.decode("utf-8", errors="replace")
        return None


class EventFramer:
    """Frames and decodes one SSE body; use a fresh instance per stream."""

    def __init__(self) -> None:
        self._tail = _FrameTail()

    def frames(self, chunks: Iterable[Chunk]) -> Iterator[ServerSentEvent]:
        """Lazily yield the frames of a chunked body.

        Raises ``StreamDecodeError`` when the body stops inside a frame that
        already carries data.
        """
        event_source = EventSource(_event_stream_response(self._body(chunks)))
        yield from event_source.iter_sse()
        self._check_complete()

    async def aframes(self, chunks: AsyncIterable[Chunk]) -> AsyncIterator[ServerSentEvent]:
        event_source = EventSource(_event_stream_response(self._abody(chunks)))
        async for sse in event_source.aiter_sse():
            yield sse
        self._check_complete()

    def decode(self, event: ServerSentEvent) -> Any:
        try:
            return json.loads(event.data)
        except json.JSONDecodeError as exc:
            logger.warning("Invalid JSON in SSE data: %s", event.data[:200])
            raise StreamDecodeError(f"invalid JSON in event data: {exc}", data=event.data) from exc

    def events(self, chunks: Iterable[Chunk]) -> Iterator[Any]:
        """Lazily yield one decoded record per frame."""
        for sse in self.frames(chunks):
            if self._has_data(sse):
                yield self.decode(sse)

    def stream(self, chunks: Iterable[Chunk], handler: Callable[[Any], object]) -> int:
        """Call ``handler`` once per decoded record; returns the record count.

        Handler exceptions propagate and end the stream.
        """
        count = 0
        for record in self.events(chunks):
            handler(record)
            count += 1
        logger.debug("Stream finished after %d events", count)
        return count

    async def aevents(self, chunks: AsyncIterable[Chunk]) -> AsyncIterator[Any]:
        async for sse in self.aframes(chunks):
            if self._has_data(sse):
                yield self.decode(sse)

    async def astream(
        self,
        chunks: AsyncIterable[Chunk],
        handler: Callable[[Any], object | Awaitable[object]],
    ) -> int:
        count = 0
        async for record in self.aevents(chunks):
            result = handler(record)
            if inspect.isawaitable(result):
                await result
            count += 1
        logger.debug("Stream finished after %d events", count)
        return count

    def _body(self, chunks: Iterable[Chunk]) -> Iterator[bytes]:
        for chunk in chunks:
            data = self._tail.track(chunk)
            if data:
                yield data

    async def _abody(self, chunks: AsyncIterable[Chunk]) -> AsyncIterator[bytes]:
        async for chunk in chunks:
            data = self._tail.track(chunk)
            if data:
                yield data

    def _check_complete(self) -> None:
        data = self._tail.unterminated_data()
        if data is not None:
            raise StreamDecodeError("stream ended inside an unterminated event frame", data=data)

    @staticmethod
    def _has_data(sse: ServerSentEvent) -> bool:
        # id/retry-only frames still dispatch, with empty data.
        if sse.data:
            return True
        logger.debug("Skipping SSE frame without data (event=%r, id=%r)", sse.event, sse.id)
        return False
