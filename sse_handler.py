"""Server-Sent Events (SSE) handling: upstream decoding and the bounded event stream."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, List, Optional

import httpx

from errors import CursorWebError, UpstreamStreamError

log = logging.getLogger("cursor_api")

STREAM_BUFFER_SIZE = 32

SSEEventLines = List[str]


def sse_event_data_text(lines: SSEEventLines) -> str:
    """
    Join all `data:` lines in an SSE event into a single payload.

    SSE spec concatenates multiple data lines with '\n'.
    """
    parts: List[str] = []
    for ln in lines:
        if ln.startswith("data:"):
            parts.append(ln[len("data:"):].lstrip())
    return "\n".join(parts)


async def read_next_sse_event(aiter: AsyncIterator[str]) -> SSEEventLines | None:
    """
    Read one SSE event (blank-line delimited) from an async line iterator.

    Returns:
    - list[str]: event lines excluding the terminating blank line (may be empty for keepalive)
    - None: EOF (no more data)
    """
    lines: SSEEventLines = []
    while True:
        try:
            raw = await aiter.__anext__()  # type: ignore[attr-defined]
        except StopAsyncIteration:
            if lines:
                return lines
            return None

        line = raw.rstrip("\r\n")
        if line == "":
            return lines
        lines.append(line)


def is_done_data_line(line: str) -> bool:
    """
    Accept: "data:[DONE]" / "data: [DONE]" / "data:    [DONE]" (tolerate whitespace)
    """
    if not line.startswith("data:"):
        return False
    return line[len("data:"):].strip() == "[DONE]"


class StreamEventKind(enum.Enum):
    DATA = "data"
    ERROR = "error"
    END = "end"


@dataclass(frozen=True)
class StreamEvent:
    """One item of the caller-facing sequence: a text chunk or a terminal error."""

    kind: StreamEventKind
    text: str = ""
    error: Optional[CursorWebError] = None

    @classmethod
    def data(cls, text: str) -> StreamEvent:
        return cls(StreamEventKind.DATA, text=text)

    @classmethod
    def failure(cls, error: CursorWebError) -> StreamEvent:
        return cls(StreamEventKind.ERROR, error=error)


_END = StreamEvent(StreamEventKind.END)


class EventStream:
    """
    Bounded, single-producer event sequence consumed with ``async for``.

    Data pushes block when the buffer is full; the terminal error push never
    blocks (see ``try_push``). Closing never blocks either: when the buffer is
    full the consumer notices closure once it has drained it.
    """

    def __init__(self, maxsize: int = STREAM_BUFFER_SIZE) -> None:
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._worker: Optional[asyncio.Task[None]] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def attach_worker(self, task: asyncio.Task[None]) -> None:
        self._worker = task

    async def push(self, event: StreamEvent) -> None:
        await self._queue.put(event)

    def try_push(self, event: StreamEvent) -> bool:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(_END)

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> StreamEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        event = await self._queue.get()
        if event.kind is StreamEventKind.END:
            raise StopAsyncIteration
        return event

    async def aclose(self) -> None:
        """Caller gave up: stop the producer. Closure is silent."""
        worker = self._worker
        try:
            if worker is not None and not worker.done():
                worker.cancel()
                # waits without re-raising the worker's CancelledError
                await asyncio.wait({worker})
        finally:
            self.close()


def decode_cursor_event(data: str) -> Optional[str]:
    """
    Decode one upstream `data:` payload.

    Returns the text of a `text-delta` event, None for events carrying no text.
    Raises ValueError for malformed JSON or an upstream `error` event.
    """
    obj: Any = json.loads(data)
    if not isinstance(obj, dict):
        raise ValueError(f"unexpected event payload: {data[:200]!r}")
    etype = obj.get("type")
    if etype == "text-delta":
        delta = obj.get("delta")
        return delta if isinstance(delta, str) and delta else None
    if etype == "error":
        raise ValueError(str(obj.get("errorText") or obj.get("error") or "upstream error event"))
    return None


async def read_sse_stream(resp: httpx.Response, push: Callable[[StreamEvent], Any]) -> None:
    """Read events until `[DONE]` or EOF, pushing each text chunk in order."""
    aiter = resp.aiter_lines()
    while True:
        event_lines = await read_next_sse_event(aiter)
        if event_lines is None:
            return
        if not event_lines:
            continue
        if any(is_done_data_line(ln) for ln in event_lines):
            return
        data = sse_event_data_text(event_lines).strip()
        if not data:
            continue
        text = decode_cursor_event(data)
        if text is not None:
            await push(StreamEvent.data(text))


class StreamRelay:
    """Republish an accepted upstream response as an EventStream."""

    @staticmethod
    def start(resp: httpx.Response, maxsize: int = STREAM_BUFFER_SIZE) -> EventStream:
        stream = EventStream(maxsize=maxsize)
        task = asyncio.create_task(StreamRelay.consume(resp, stream), name="cursor_api.consume_sse")
        stream.attach_worker(task)
        return stream

    @staticmethod
    async def consume(resp: httpx.Response, stream: EventStream) -> None:
        try:
            await read_sse_stream(resp, stream.push)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            err = UpstreamStreamError(f"{type(e).__name__}: {e}" if str(e) else type(e).__name__)
            if not stream.try_push(StreamEvent.failure(err)):
                log.warning("failed to push SSE error to stream (buffer full) err=%r", e)
        finally:
            with contextlib.suppress(Exception):
                await resp.aclose()
            stream.close()
