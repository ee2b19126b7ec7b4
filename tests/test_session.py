"""Tests for the debounced analysis session."""

import asyncio

import pytest

from chunkflow.analysis.rules import RuleBasedAnalyzer
from chunkflow.chunking.segmenter import Segmenter
from chunkflow.dispatch.dispatcher import ChunkDispatcher
from chunkflow.dispatch.session import AnalysisSession, Debouncer


def _session(analyze=None, **kwargs):
    return AnalysisSession(
        Segmenter(max_chunk_size=200, overlap_size=20),
        ChunkDispatcher(background_delay_s=0),
        analyze or RuleBasedAnalyzer(),
        **kwargs,
    )


async def test_debouncer_runs_only_the_last_call():
    seen = []

    async def action(value):
        seen.append(value)

    debouncer = Debouncer(0.05, action)
    for value in range(5):
        debouncer.call(value)
        await asyncio.sleep(0.01)
    assert debouncer.pending

    await debouncer.flush()

    assert seen == [4]
    assert not debouncer.pending


async def test_debouncer_cancel_drops_pending_call():
    seen = []

    async def action(value):
        seen.append(value)

    debouncer = Debouncer(0.02, action)
    debouncer.call(1)
    debouncer.cancel()
    await asyncio.sleep(0.05)

    assert seen == []


async def test_cancelled_flush_raises_and_leaves_the_call_pending():
    seen = []

    async def action(value):
        seen.append(value)

    debouncer = Debouncer(0.1, action)
    debouncer.call(7)
    waiter = asyncio.create_task(debouncer.flush())
    await asyncio.sleep(0.02)
    waiter.cancel()

    with pytest.raises(asyncio.CancelledError):
        await waiter
    assert waiter.cancelled()
    assert debouncer.pending

    await debouncer.flush()
    assert seen == [7]


async def test_flush_follows_a_replacing_call():
    seen = []

    async def action(value):
        seen.append(value)

    debouncer = Debouncer(0.05, action)
    debouncer.call(1)
    waiter = asyncio.create_task(debouncer.flush())
    await asyncio.sleep(0.01)
    debouncer.call(2)

    await asyncio.wait_for(waiter, timeout=1.0)

    assert seen == [2]
    assert not waiter.cancelled()


async def test_rapid_edits_trigger_one_dispatch():
    analyzer = RuleBasedAnalyzer()
    session = _session(analyzer, debounce_s=0.05)

    for text in ("I saw teh", "I saw teh cat", "I saw teh cat and i left"):
        session.update_text(text)
        await asyncio.sleep(0.01)
    await session.flush()

    assert analyzer.calls == 1
    assert {f.matched_text for f in session.findings} == {"teh", "i"}
    assert session.last_result is not None
    assert not session.is_checking


async def test_short_text_clears_findings():
    session = _session(debounce_s=0)
    await session.check_now("There is teh typo here.")
    assert session.findings

    session.update_text("teh")

    assert session.findings == []
    assert not session.is_checking


async def test_newer_check_wins_over_older_one():
    session = _session(RuleBasedAnalyzer(latency_s=0.2), debounce_s=0)

    older = asyncio.create_task(session.check_now("An old teh version of the text."))
    await asyncio.sleep(0.05)
    session.analyze = RuleBasedAnalyzer()
    newer = await session.check_now("A new version that is clean.")
    stale = await older

    assert stale.cancelled
    assert not newer.cancelled
    assert session.findings == []
    assert session.last_result is newer


async def test_on_update_receives_each_chunk():
    updates = []
    session = _session(on_update=updates.append)

    result = await session.check_now("Recieve the package. " * 30)

    assert len(updates) == result.progress.total_chunks > 1
    assert updates[-1].findings == result.findings


async def test_close_stops_pending_work():
    analyzer = RuleBasedAnalyzer()
    session = _session(analyzer, debounce_s=0.05)

    session.update_text("I saw teh cat")
    session.close()
    await asyncio.sleep(0.1)

    assert analyzer.calls == 0
