"""Unit tests for the completion latch and the run scheduler."""

from __future__ import annotations

import asyncio

import pytest

from logincapture.capture.scheduler import CompletionLatch, Scheduler


class TestCompletionLatch:
    def test_first_set_wins(self) -> None:
        """Only the call that flips the latch reports True."""
        latch = CompletionLatch()
        assert latch.is_set is False
        assert latch.set() is True
        assert latch.set() is False
        assert latch.is_set is True


class TestScheduler:
    """Timer bookkeeping on a real event loop."""

    @pytest.mark.anyio
    async def test_task_fires_after_delay(self) -> None:
        """A scheduled callback runs once with its arguments."""
        calls: list[int] = []
        scheduler = Scheduler(CompletionLatch())
        task = scheduler.schedule("t", 0.01, calls.append, 7)

        assert task.active
        assert [t.name for t in scheduler.pending] == ["t"]
        await asyncio.sleep(0.05)

        assert calls == [7]
        assert task.fired
        assert scheduler.pending == []

    @pytest.mark.anyio
    async def test_guarded_task_skipped_once_latched(self) -> None:
        """A guarded task already queued does nothing after the latch is set."""
        latch = CompletionLatch()
        calls: list[str] = []
        scheduler = Scheduler(latch)
        scheduler.schedule("guarded", 0.01, calls.append, "guarded")
        scheduler.schedule("free", 0.01, calls.append, "free", guarded=False)

        latch.set()
        await asyncio.sleep(0.05)

        assert calls == ["free"]

    @pytest.mark.anyio
    async def test_schedule_after_latch_is_noop(self) -> None:
        """Guarded scheduling after completion returns an inert task."""
        latch = CompletionLatch()
        latch.set()
        scheduler = Scheduler(latch)

        task = scheduler.schedule("late", 0, lambda: None)

        assert task.cancelled
        assert scheduler.pending == []

    @pytest.mark.anyio
    async def test_cancel_by_name(self) -> None:
        calls: list[str] = []
        scheduler = Scheduler(CompletionLatch())
        scheduler.schedule("a", 0.01, calls.append, "a")
        scheduler.schedule("a", 0.01, calls.append, "a")
        scheduler.schedule("b", 0.01, calls.append, "b")

        assert scheduler.has_pending("a")
        assert scheduler.cancel("a") == 2
        assert not scheduler.has_pending("a")
        await asyncio.sleep(0.05)

        assert calls == ["b"]

    @pytest.mark.anyio
    async def test_cancel_all_keeps_unguarded(self) -> None:
        """``cancel_all`` leaves unguarded tasks alone unless asked."""
        calls: list[str] = []
        scheduler = Scheduler(CompletionLatch())
        scheduler.schedule("g", 0.01, calls.append, "g")
        scheduler.schedule("u", 0.01, calls.append, "u", guarded=False)

        scheduler.cancel_all()
        await asyncio.sleep(0.05)

        assert calls == ["u"]

    @pytest.mark.anyio
    async def test_close_cancels_everything_and_refuses_more(self) -> None:
        calls: list[str] = []
        scheduler = Scheduler(CompletionLatch())
        scheduler.schedule("u", 0.01, calls.append, "u", guarded=False)

        scheduler.close()
        late = scheduler.schedule("late", 0, calls.append, "late", guarded=False)
        await asyncio.sleep(0.05)

        assert calls == []
        assert late.cancelled

    @pytest.mark.anyio
    async def test_coroutine_callbacks_are_tracked(self) -> None:
        """Async callbacks run as tasks and leave the in-flight set when done."""
        done = asyncio.Event()

        async def work() -> None:
            await asyncio.sleep(0.01)
            done.set()

        scheduler = Scheduler(CompletionLatch())
        scheduler.schedule("work", 0, work)
        await asyncio.sleep(0.005)
        assert scheduler.inflight == 1

        await asyncio.wait_for(done.wait(), 1.0)
        await asyncio.sleep(0.02)
        assert scheduler.inflight == 0

    @pytest.mark.anyio
    async def test_cancel_all_cancels_inflight(self) -> None:
        finished: list[bool] = []

        async def slow() -> None:
            await asyncio.sleep(0.2)
            finished.append(True)

        scheduler = Scheduler(CompletionLatch())
        scheduler.schedule("slow", 0, slow)
        await asyncio.sleep(0.01)
        scheduler.cancel_all()
        await asyncio.sleep(0.01)

        assert scheduler.inflight == 0
        assert finished == []

    @pytest.mark.anyio
    async def test_failing_callback_is_contained(self) -> None:
        """A raising callback is logged and later tasks still run."""
        calls: list[str] = []

        def boom() -> None:
            raise RuntimeError("boom")

        scheduler = Scheduler(CompletionLatch())
        scheduler.schedule("boom", 0, boom)
        scheduler.schedule("after", 0.01, calls.append, "after")
        await asyncio.sleep(0.05)

        assert calls == ["after"]
