import asyncio

import pytest

from metrics import MetricsCollector
from rules_engine.actions import ActionDispatcher
from rules_engine.evaluation_loop import EvaluationLoop, LoopState
from rules_engine.models import ActionType
from rules_engine.rules_engine import RulesEngine

from conftest import RecordingHandler, SlowHandler, make_event

pytestmark = pytest.mark.anyio


def build_loop(store, handlers, **kwargs):
    engine = RulesEngine(store, ActionDispatcher(handlers))
    return EvaluationLoop(engine, **kwargs)


async def test_queued_events_are_processed(store, vexor_rule):
    store.add(vexor_rule)
    recorder = RecordingHandler()
    loop = build_loop(store, {t: recorder for t in ActionType})
    reports = []
    loop.add_listener(reports.append)

    await loop.start()
    assert loop.submit(make_event("Foe", confidence=90))
    assert loop.submit(make_event("Friend", confidence=90))
    await loop.join()
    await loop.stop()

    assert loop.processed_count == 2
    assert [r.matched for r in reports] == [True, False]
    assert len(recorder.calls) == 3
    assert not loop.running


async def test_full_queue_drops_events(store):
    loop = build_loop(store, {}, queue_size=2)

    # Not started, so nothing drains the queue
    assert loop.submit(make_event())
    assert loop.submit(make_event())
    assert not loop.submit(make_event())

    assert loop.dropped_count == 1
    assert loop.queue_depth == 2
    assert MetricsCollector().get_counter("events_dropped_total") == 1


async def test_state_transitions(store, vexor_rule):
    store.add(vexor_rule)
    loop = build_loop(store, {ActionType.SPEAKER: SlowHandler(delay=0.2)})
    states = []

    await loop.start()
    assert loop.state == LoopState.IDLE
    loop.submit(make_event("Foe", confidence=90))

    for _ in range(100):
        states.append(loop.state)
        if LoopState.DISPATCHING in states and loop.state == LoopState.IDLE:
            break
        await asyncio.sleep(0.01)

    await loop.stop()

    assert LoopState.DISPATCHING in states
    assert loop.state == LoopState.IDLE


async def test_process_event_bypasses_queue(store, vexor_rule):
    store.add(vexor_rule)
    loop = build_loop(store, {t: RecordingHandler() for t in ActionType})

    report = await loop.process_event(make_event("Foe", confidence=90))

    assert report.matched_rule_ids == ["vexor-warning"]
    assert report.finished_at is not None
    assert loop.recent_reports[-1] is report
    assert loop.state == LoopState.IDLE


async def test_stop_drains_queue(store, vexor_rule):
    store.add(vexor_rule)
    recorder = RecordingHandler()
    loop = build_loop(store, {t: recorder for t in ActionType}, workers=2)

    await loop.start()
    for _ in range(5):
        loop.submit(make_event("Foe", confidence=90))
    await loop.stop(drain=True)

    assert loop.processed_count == 5
    assert loop.queue_depth == 0


async def test_failing_listener_does_not_stop_loop(store):
    loop = build_loop(store, {})

    def broken(report):
        raise RuntimeError("listener bug")

    loop.add_listener(broken)
    await loop.start()
    loop.submit(make_event())
    loop.submit(make_event())
    await loop.join()
    await loop.stop()

    assert loop.processed_count == 2
    assert loop.failed_count == 0


def test_invalid_sizes(store):
    engine = RulesEngine(store, ActionDispatcher())
    with pytest.raises(ValueError):
        EvaluationLoop(engine, queue_size=0)
    with pytest.raises(ValueError):
        EvaluationLoop(engine, workers=0)


def test_loop_built_before_the_event_loop_starts(store, vexor_rule):
    store.add(vexor_rule)
    recorder = RecordingHandler()
    loop = build_loop(store, {t: recorder for t in ActionType})

    async def serve():
        await loop.start()
        loop.submit(make_event("Foe", confidence=90))
        await asyncio.wait_for(loop.join(), timeout=5)
        await loop.stop()

    asyncio.run(serve())

    assert loop.processed_count == 1
    assert len(recorder.calls) == 3
