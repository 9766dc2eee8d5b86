"""
Evaluation Loop

Consumes events from a bounded queue and runs each through the rules
engine: IDLE -> EVALUATING -> DISPATCHING -> IDLE.
"""

import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from exceptions import QueueOverflowError
from metrics import EngineMetrics
from rules_engine.models import EvaluationReport, Event
from rules_engine.rules_engine import RulesEngine


logger = logging.getLogger("HomeGuardLoop")

DIRECT_WORKER = -1


class LoopState(str, Enum):
    """Where a worker is in its cycle."""
    IDLE = "idle"
    EVALUATING = "evaluating"
    DISPATCHING = "dispatching"


class EvaluationLoop:
    """
    Bounded, non-blocking event intake with N consumer workers.

    ``submit`` never waits: when the queue is full the event is dropped and
    counted. Every cycle works from one immutable rule snapshot.
    """

    def __init__(
        self,
        engine: RulesEngine,
        queue_size: int = 1000,
        workers: int = 1,
        recent_reports: int = 100,
        metrics: Optional[EngineMetrics] = None
    ):
        """
        Args:
            engine: Rules engine
            queue_size: Maximum queued events
            workers: Number of consumer tasks
            recent_reports: How many reports to keep for inspection
            metrics: Metrics helper
        """
        if queue_size < 1:
            raise ValueError("queue_size must be positive")
        if workers < 1:
            raise ValueError("workers must be positive")

        self.engine = engine
        self.queue_size = queue_size
        self.worker_count = workers
        self.metrics = metrics or engine.metrics

        # Binds to whichever event loop first waits on it (Python 3.10+).
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._workers: List[asyncio.Task] = []
        self._states: Dict[int, LoopState] = {}
        self._listeners: List[Callable[[EvaluationReport], Any]] = []

        self.recent_reports: Deque[EvaluationReport] = deque(maxlen=recent_reports)
        self.dropped_count = 0
        self.processed_count = 0
        self.failed_count = 0

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def submit(self, event: Event) -> bool:
        """
        Queue an event for evaluation.

        Returns:
            False when the queue was full and the event was dropped
        """
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped_count += 1
            error = QueueOverflowError(
                f"Evaluation queue full ({self.queue_size}), dropped event {event.id}",
                component="EvaluationLoop",
                context={"event_id": event.id, "dropped_total": self.dropped_count}
            )
            logger.warning(error.message)
            self.metrics.record_event_dropped()
            return False

        self.metrics.record_event_received(event.source.value)
        self.metrics.record_queue_depth(self._queue.qsize())
        return True

    async def process_event(self, event: Event) -> EvaluationReport:
        """Evaluate one event right away, bypassing the queue."""
        self.metrics.record_event_received(event.source.value)
        return await self._run_cycle(event, DIRECT_WORKER)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._workers)

    async def start(self) -> None:
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"homeguard-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(f"Evaluation loop started with {self.worker_count} worker(s), queue size {self.queue_size}")

    async def stop(self, drain: bool = True, timeout: float = 10.0) -> None:
        """
        Stop the workers.

        Args:
            drain: Finish queued events first
            timeout: Maximum seconds to wait for the drain
        """
        if drain and self.running:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Stopping with {self._queue.qsize()} event(s) still queued")

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._states.clear()
        logger.info("Evaluation loop stopped")

    async def join(self) -> None:
        """Wait until every queued event has been processed."""
        await self._queue.join()

    def add_listener(self, callback: Callable[[EvaluationReport], Any]) -> None:
        """Call ``callback(report)`` after every completed cycle."""
        self._listeners.append(callback)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> LoopState:
        states = set(self._states.values())
        if LoopState.DISPATCHING in states:
            return LoopState.DISPATCHING
        if LoopState.EVALUATING in states:
            return LoopState.EVALUATING
        return LoopState.IDLE

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    def stats(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "running": self.running,
            "workers": self.worker_count,
            "queue_depth": self._queue.qsize(),
            "queue_size": self.queue_size,
            "processed": self.processed_count,
            "dropped": self.dropped_count,
            "failed": self.failed_count,
            "degraded": bool(self.recent_reports) and self.recent_reports[-1].degraded
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _worker(self, worker_id: int) -> None:
        self._states[worker_id] = LoopState.IDLE
        while True:
            event = await self._queue.get()
            try:
                await self._run_cycle(event, worker_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed_count += 1
                self.metrics.record_error("EvaluationLoop", type(e).__name__)
                logger.error(f"Evaluation of event {event.id} failed: {e}", exc_info=True)
            finally:
                self._states[worker_id] = LoopState.IDLE
                self._queue.task_done()
                self.metrics.record_queue_depth(self._queue.qsize())

    async def _run_cycle(self, event: Event, worker_id: int) -> EvaluationReport:
        started = time.perf_counter()

        self._states[worker_id] = LoopState.EVALUATING
        try:
            snapshot = await asyncio.to_thread(self.engine.take_snapshot)
            report, matched = self.engine.match(event, snapshot)

            self._states[worker_id] = LoopState.DISPATCHING
            await self.engine.dispatch(report, matched, event)
            await self.engine.persist(report)
        finally:
            if worker_id == DIRECT_WORKER:
                self._states.pop(worker_id, None)
            else:
                self._states[worker_id] = LoopState.IDLE

        report.finished_at = datetime.now(timezone.utc)
        self.processed_count += 1
        self.recent_reports.append(report)
        self.metrics.record_evaluation(
            duration_ms=(time.perf_counter() - started) * 1000,
            rules_evaluated=report.rules_evaluated,
            matched=len(report.matched_rule_ids),
            degraded=report.degraded
        )

        if report.matched:
            logger.info(
                f"Event {event.id} ({event.source.value}/{event.kind}) matched "
                f"{', '.join(report.matched_rule_ids)}"
                + (" [degraded]" if report.degraded else "")
            )

        for listener in self._listeners:
            try:
                result = listener(report)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Report listener failed: {e}")

        return report
