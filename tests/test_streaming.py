import asyncio
import json

import pytest

from portfolio_analyst.errors import NonConvergentLoopError
from portfolio_analyst.streaming import EventStream, SSEDecoder, consume_stream, sse_format, stream_job


def test_sse_format():
    assert sse_format({"type": "progress", "step": 1}) == 'data: {"type": "progress", "step": 1}\n\n'


def test_decoder_reassembles_split_chunks():
    wire = sse_format({"type": "progress", "step": 0}) + sse_format({"type": "result", "data": {"x": "é"}})
    raw = wire.encode("utf-8")
    decoder = SSEDecoder()
    events = []
    for i in range(0, len(raw), 7):
        events.extend(decoder.feed(raw[i : i + 7]))
    assert events == [{"type": "progress", "step": 0}, {"type": "result", "data": {"x": "é"}}]


def test_decoder_skips_malformed_events():
    decoder = SSEDecoder()
    events = decoder.feed('data: {"type": "progress"}\n\ndata: {broken\n\n: comment\n\ndata: {"type": "error", "error": "x"}')
    assert events == [{"type": "progress"}]
    assert decoder.flush() == [{"type": "error", "error": "x"}]


@pytest.mark.asyncio
async def test_event_stream_allows_one_terminal_event():
    stream = EventStream()
    await stream.progress(10, 100, "working")
    await stream.result({"ok": True})
    await stream.error("late")
    await stream.progress(20, 100, "ignored")
    await stream.close()
    events = [event async for event in stream.events()]
    assert [e["type"] for e in events] == ["progress", "result"]
    assert stream.finished


async def _collect(job):
    return [json.loads(frame[len("data: ") :]) async for frame in stream_job(job, close_delay_s=0)]


@pytest.mark.asyncio
async def test_stream_job_success():
    async def job(on_progress):
        await on_progress(0, 100, "Starting analysis...")
        await on_progress(100, 100, "Finalising analysis...")
        return {"analysis": {"markdown": "# R"}}

    events = await _collect(job)
    assert [e["type"] for e in events] == ["progress", "progress", "result"]
    assert events[-1]["data"] == {"analysis": {"markdown": "# R"}}


@pytest.mark.asyncio
async def test_stream_job_classified_error():
    async def job(on_progress):
        raise NonConvergentLoopError(5)

    events = await _collect(job)
    assert len(events) == 1
    assert events[0]["type"] == "error"
    assert events[0]["kind"] == "non_convergent_loop"
    assert "Max iterations (5)" in events[0]["error"]


@pytest.mark.asyncio
async def test_stream_job_unexpected_error_still_terminates():
    async def job(on_progress):
        raise KeyError("boom")

    events = await _collect(job)
    assert events == [{"type": "error", "error": "'boom'", "kind": "internal_error"}]


@pytest.mark.asyncio
async def test_closing_stream_cancels_job():
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def job(on_progress):
        await on_progress(0, 100, "Starting analysis...")
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return {}

    gen = stream_job(job, close_delay_s=0)
    first = await gen.__anext__()
    assert json.loads(first[len("data: ") :])["step"] == 0
    await started.wait()
    await gen.aclose()
    # The task has fully unwound by the time the generator is closed.
    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_consume_stream_dispatches_and_returns_terminal():
    frames = [
        sse_format({"type": "progress", "step": 0, "total": 100, "label": "a"}),
        sse_format({"type": "progress", "step": 38, "total": 100, "label": "b"}),
        sse_format({"type": "result", "data": {"markdown": "# R"}}),
    ]
    wire = "".join(frames).encode("utf-8")

    async def chunks():
        for i in range(0, len(wire), 11):
            yield wire[i : i + 11]

    seen = []

    async def on_progress(event):
        seen.append(event["step"])

    terminal = await consume_stream(chunks(), {"progress": on_progress})
    assert seen == [0, 38]
    assert terminal == {"type": "result", "data": {"markdown": "# R"}}
