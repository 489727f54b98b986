"""
Per-Patient Turn Queue: serialises every mutating operation per patient.

One asyncio.Queue per active patient.  Jobs run FIFO, one at a time, so
two turns for the same patient (or a turn and a clinician response)
never interleave, while different patients proceed in parallel.

Callers await the job's result.  A caller that gives up (client
disconnect, request timeout) does not cancel the job: it runs to
completion inside the worker and the result is simply discarded.

Idle workers remove themselves after a configurable timeout.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

from medichat import settings

logger = logging.getLogger("intake.queue")

T = TypeVar("T")

Job = Callable[[], Awaitable[Any]]


def _consume_result(fut: asyncio.Future) -> None:
    # Marks an abandoned job's exception as retrieved so asyncio stays quiet
    if not fut.cancelled():
        fut.exception()


class TurnQueueManager:
    """
    Manages one asyncio.Queue per patient_id.

    Usage:
        mgr = TurnQueueManager()
        result = await mgr.run(patient_id, lambda: orchestrator._turn(...))
    """

    def __init__(
        self,
        idle_timeout_seconds: float = settings.QUEUE_IDLE_TIMEOUT_SECONDS,
        slow_job_seconds: float = 30.0,
    ) -> None:
        self._idle_timeout = idle_timeout_seconds
        self._slow_job_seconds = slow_job_seconds

        self._queues: dict[str, asyncio.Queue[tuple[str, Job, asyncio.Future]]] = {}
        self._workers: dict[str, asyncio.Task] = {}

    # ── Public API ──

    async def start(self) -> None:
        logger.info("TurnQueueManager started (idle timeout=%ss)", self._idle_timeout)

    async def stop(self) -> None:
        """Cancel all workers and fail any jobs still waiting."""
        for pid in list(self._workers.keys()):
            await self._destroy_queue(pid)
        logger.info("TurnQueueManager stopped")

    async def run(self, patient_id: str, job: Callable[[], Awaitable[T]], label: str = "job") -> T:
        """Run ``job`` in the patient's queue and return its result."""
        if patient_id not in self._queues:
            self._create_queue(patient_id)

        loop = asyncio.get_running_loop()
        fut: asyncio.Future = loop.create_future()
        fut.add_done_callback(_consume_result)
        q = self._queues[patient_id]
        q.put_nowait((label, job, fut))
        logger.debug("Enqueued %s for patient %s (depth=%d)", label, patient_id, q.qsize())

        return await asyncio.shield(fut)

    @property
    def active_patients(self) -> list[str]:
        return list(self._queues.keys())

    @property
    def active_count(self) -> int:
        return len(self._queues)

    def queue_depth(self, patient_id: str) -> int:
        """Number of pending jobs for a patient.  Returns 0 if no queue."""
        q = self._queues.get(patient_id)
        return q.qsize() if q else 0

    # ── Internal ──

    def _create_queue(self, patient_id: str) -> None:
        q: asyncio.Queue = asyncio.Queue()
        self._queues[patient_id] = q
        self._workers[patient_id] = asyncio.create_task(self._worker_loop(patient_id, q))
        logger.debug("Created queue + worker for patient %s", patient_id)

    async def _worker_loop(self, patient_id: str, q: asyncio.Queue) -> None:
        while True:
            try:
                label, job, fut = await asyncio.wait_for(q.get(), timeout=self._idle_timeout)
            except asyncio.TimeoutError:
                if q.empty():
                    # No await between the check and the removal, so no
                    # caller can slip a job into a queue nobody serves.
                    self._queues.pop(patient_id, None)
                    self._workers.pop(patient_id, None)
                    logger.debug("Idle queue for patient %s removed", patient_id)
                    return
                continue

            t0 = time.monotonic()
            try:
                result = await job()
            except asyncio.CancelledError:
                if not fut.done():
                    fut.cancel()
                raise
            except Exception as exc:
                if not fut.done():
                    fut.set_exception(exc)
            else:
                if not fut.done():
                    fut.set_result(result)
            finally:
                q.task_done()

            elapsed = time.monotonic() - t0
            logger.info("%s for patient %s finished in %.2fs", label, patient_id, elapsed)
            if elapsed > self._slow_job_seconds:
                logger.warning("Slow %s for %s took %.1fs", label, patient_id, elapsed)

    async def _destroy_queue(self, patient_id: str) -> None:
        q = self._queues.pop(patient_id, None)
        worker = self._workers.pop(patient_id, None)
        if worker and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        while q is not None and not q.empty():
            _, _, fut = q.get_nowait()
            if not fut.done():
                fut.cancel()
        logger.debug("Destroyed queue for patient %s", patient_id)
