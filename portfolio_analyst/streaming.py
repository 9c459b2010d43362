import asyncio
import codecs
import contextlib
import inspect
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from .errors import AnalysisError
from .schemas import ErrorEvent, ProgressEvent, ResultEvent

logger = logging.getLogger("uvicorn.error")

TERMINAL_TYPES = {"result", "error"}
EVENT_SEPARATOR = "\n\n"
DATA_PREFIX = "data: "


def sse_format(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


class EventStream:
    """Queue-backed sink for one request's events.

    Accepts any number of progress events followed by exactly one terminal
    event. Anything sent after the terminal event is dropped.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._terminal_sent = False
        self._closed = False

    @property
    def finished(self) -> bool:
        return self._terminal_sent

    async def progress(self, step: int, total: int, label: str) -> None:
        if self._terminal_sent or self._closed:
            return
        await self._queue.put(ProgressEvent(step=step, total=total, label=label).model_dump())

    async def result(self, data: Dict[str, Any]) -> None:
        await self._terminal(ResultEvent(data=data).model_dump())

    async def error(self, message: str, kind: Optional[str] = None) -> None:
        await self._terminal(ErrorEvent(error=message, kind=kind).model_dump(exclude_none=True))

    async def _terminal(self, event: Dict[str, Any]) -> None:
        if self._terminal_sent or self._closed:
            logger.warning("Dropping %s event, stream already finished", event.get("type"))
            return
        self._terminal_sent = True
        await self._queue.put(event)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._queue.put(self._CLOSED)

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item


ProgressSink = Callable[[int, int, str], Awaitable[None]]
AnalysisJob = Callable[[ProgressSink], Awaitable[Dict[str, Any]]]


async def stream_job(job: AnalysisJob, *, close_delay_s: float = 0.5) -> AsyncIterator[str]:
    """Run ``job`` in a task and yield its events as SSE frames.

    Closing the generator early (client disconnect) cancels the task.
    """
    stream = EventStream()

    async def runner() -> None:
        try:
            data = await job(stream.progress)
        except AnalysisError as exc:
            logger.error("Analysis failed (%s): %s", exc.kind, exc.message)
            await stream.error(exc.message, kind=exc.kind)
        except Exception as exc:
            logger.exception("Unexpected error during analysis")
            await stream.error(str(exc) or "Internal server error", kind="internal_error")
        else:
            await stream.result(data)
        finally:
            await stream.close()

    task = asyncio.create_task(runner())
    try:
        async for event in stream.events():
            yield sse_format(event)
        if close_delay_s > 0:
            await asyncio.sleep(close_delay_s)
    finally:
        if not task.done():
            logger.info("Client went away, cancelling analysis")
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


class SSEDecoder:
    """Reassembles ``data: <json>`` events from arbitrarily split chunks."""

    def __init__(self) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")()

    def feed(self, chunk: Union[str, bytes]) -> List[Dict[str, Any]]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk.replace("\r\n", "\n")
        parts = self._buffer.split(EVENT_SEPARATOR)
        # last part is incomplete until the next separator arrives
        self._buffer = parts.pop()
        events: List[Dict[str, Any]] = []
        for part in parts:
            events.extend(self._parse(part))
        return events

    def flush(self) -> List[Dict[str, Any]]:
        remainder, self._buffer = self._buffer, ""
        return self._parse(remainder) if remainder.strip() else []

    def _parse(self, block: str) -> List[Dict[str, Any]]:
        events: List[Dict[str, Any]] = []
        for line in block.split("\n"):
            if not line.startswith(DATA_PREFIX):
                continue
            try:
                event = json.loads(line[len(DATA_PREFIX) :])
            except ValueError:
                logger.warning("Skipping unparseable SSE event: %s", line[:200])
                continue
            if isinstance(event, dict):
                events.append(event)
        return events


EventHandler = Callable[[Dict[str, Any]], Any]


async def consume_stream(
    chunks: AsyncIterable[Union[str, bytes]],
    handlers: Optional[Dict[str, EventHandler]] = None,
) -> Optional[Dict[str, Any]]:
    """Dispatch events to ``handlers`` by type and return the terminal event."""
    handlers = handlers or {}
    decoder = SSEDecoder()

    async def dispatch(events: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        for event in events:
            handler = handlers.get(str(event.get("type")))
            if handler is not None:
                outcome = handler(event)
                if inspect.isawaitable(outcome):
                    await outcome
            if event.get("type") in TERMINAL_TYPES:
                return event
        return None

    async for chunk in chunks:
        terminal = await dispatch(decoder.feed(chunk))
        if terminal is not None:
            return terminal
    return await dispatch(decoder.flush())
