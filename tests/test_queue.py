"""
Tests for the per-patient TurnQueueManager.

Tests cover:
  - FIFO ordering within a patient
  - Cross-patient parallelism
  - Results and exceptions reach the caller
  - An abandoned caller does not cancel the job
  - Idle workers remove themselves
  - Stop cancels waiting jobs
"""

import asyncio

import pytest

from medichat.intake.queue import TurnQueueManager


class TestOrdering:

    @pytest.mark.asyncio
    async def test_jobs_for_one_patient_never_interleave(self):
        mgr = TurnQueueManager(idle_timeout_seconds=5)
        trace = []

        def job(name):
            async def _run():
                trace.append(f"{name}:start")
                await asyncio.sleep(0.01)
                trace.append(f"{name}:end")
                return name
            return _run

        results = await asyncio.gather(*(mgr.run("PT-1", job(n)) for n in ["a", "b", "c"]))
        await mgr.stop()

        assert results == ["a", "b", "c"]
        assert trace == ["a:start", "a:end", "b:start", "b:end", "c:start", "c:end"]

    @pytest.mark.asyncio
    async def test_different_patients_run_in_parallel(self):
        mgr = TurnQueueManager(idle_timeout_seconds=5)
        both_running = asyncio.Event()
        started = set()

        def job(pid):
            async def _run():
                started.add(pid)
                if len(started) == 2:
                    both_running.set()
                await asyncio.wait_for(both_running.wait(), timeout=1)
                return pid
            return _run

        results = await asyncio.gather(mgr.run("PT-1", job("PT-1")), mgr.run("PT-2", job("PT-2")))
        await mgr.stop()
        assert sorted(results) == ["PT-1", "PT-2"]


class TestResults:

    @pytest.mark.asyncio
    async def test_exception_propagates_and_worker_survives(self):
        mgr = TurnQueueManager(idle_timeout_seconds=5)

        async def failing():
            raise ValueError("bad turn")

        async def ok():
            return "fine"

        with pytest.raises(ValueError, match="bad turn"):
            await mgr.run("PT-1", failing)
        assert await mgr.run("PT-1", ok) == "fine"
        await mgr.stop()

    @pytest.mark.asyncio
    async def test_abandoned_caller_does_not_cancel_job(self):
        mgr = TurnQueueManager(idle_timeout_seconds=5)
        finished = asyncio.Event()

        async def slow():
            await asyncio.sleep(0.05)
            finished.set()
            return "done"

        caller = asyncio.create_task(mgr.run("PT-1", slow))
        await asyncio.sleep(0.01)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        await asyncio.wait_for(finished.wait(), timeout=1)
        assert finished.is_set()
        await mgr.stop()


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_queue_created_on_first_job(self):
        mgr = TurnQueueManager(idle_timeout_seconds=5)
        assert mgr.active_count == 0

        async def ok():
            return 1

        await mgr.run("PT-1", ok)
        assert mgr.active_patients == ["PT-1"]
        assert mgr.queue_depth("PT-1") == 0
        assert mgr.queue_depth("PT-unknown") == 0
        await mgr.stop()
        assert mgr.active_count == 0

    @pytest.mark.asyncio
    async def test_idle_worker_removes_itself(self):
        mgr = TurnQueueManager(idle_timeout_seconds=0.05)

        async def ok():
            return 1

        await mgr.run("PT-1", ok)
        await asyncio.sleep(0.2)
        assert mgr.active_count == 0
        # A new job after cleanup gets a fresh worker
        assert await mgr.run("PT-1", ok) == 1
        await mgr.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_waiting_jobs(self):
        mgr = TurnQueueManager(idle_timeout_seconds=5)
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()

        async def never():
            return "never"

        first = asyncio.create_task(mgr.run("PT-1", blocked))
        second = asyncio.create_task(mgr.run("PT-1", never))
        await asyncio.sleep(0.01)
        await mgr.stop()

        for task in (first, second):
            with pytest.raises(asyncio.CancelledError):
                await task
