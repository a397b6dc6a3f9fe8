"""Tests for CancelToken."""

from __future__ import annotations

import asyncio

import pytest

from knowledge_chat.llm.cancel import CancelToken, StreamCancelled


async def _value(v, delay: float = 0):
    await asyncio.sleep(delay)
    return v


async def _forever():
    await asyncio.Event().wait()


class TestCancelToken:
    def test_initial_state(self):
        token = CancelToken()
        assert not token.cancelled
        assert token.reason == ""

    def test_cancel_is_idempotent(self):
        token = CancelToken()
        token.cancel("first")
        token.cancel("second")
        assert token.cancelled
        assert token.reason == "first"

    async def test_wait_returns_after_cancel(self):
        token = CancelToken()
        asyncio.get_running_loop().call_soon(token.cancel)
        await asyncio.wait_for(token.wait(), timeout=1)
        assert token.cancelled


class TestRace:
    async def test_returns_result(self):
        token = CancelToken()
        assert await token.race(_value(42)) == 42

    async def test_propagates_exception(self):
        async def boom():
            raise ValueError("nope")

        token = CancelToken()
        with pytest.raises(ValueError, match="nope"):
            await token.race(boom())

    async def test_already_cancelled(self):
        token = CancelToken()
        token.cancel("gone")
        coro = _value(1)
        with pytest.raises(StreamCancelled, match="gone"):
            await token.race(coro)
        # The coroutine was closed rather than left un-awaited
        assert coro.cr_frame is None

    async def test_cancel_interrupts_pending_work(self):
        token = CancelToken()
        work = asyncio.ensure_future(_forever())

        asyncio.get_running_loop().call_later(0.01, token.cancel)
        with pytest.raises(StreamCancelled):
            await asyncio.wait_for(token.race(work), timeout=1)
        assert work.cancelled()

    async def test_discard_called_when_result_loses(self):
        token = CancelToken()
        discarded = []

        async def produce_then_cancel():
            token.cancel("tie")
            return "resource"

        async def on_discard(value):
            discarded.append(value)

        with pytest.raises(StreamCancelled):
            await token.race(produce_then_cancel(), on_discard=on_discard)
        assert discarded == ["resource"]

    async def test_discard_not_called_on_success(self):
        token = CancelToken()
        discarded = []

        async def on_discard(value):
            discarded.append(value)

        assert await token.race(_value("ok"), on_discard=on_discard) == "ok"
        assert discarded == []

    async def test_outer_cancellation_propagates(self):
        token = CancelToken()
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.Event().wait()

        task = asyncio.ensure_future(token.race(slow()))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not token.cancelled
        token.release()


class TestWaiterReuse:
    async def test_one_waiter_across_reads(self):
        token = CancelToken()
        await token.race(_value(1))
        waiter = token._waiter
        await token.race(_value(2))
        await token.race(_value(3))

        assert token._waiter is waiter
        assert not waiter.done()
        token.release()

    async def test_release_cancels_waiter(self):
        token = CancelToken()
        await token.race(_value(1))
        waiter = token._waiter

        token.release()
        await asyncio.sleep(0)
        assert waiter.cancelled()
        assert token._waiter is None

    async def test_race_after_release(self):
        token = CancelToken()
        await token.race(_value(1))
        token.release()

        assert await token.race(_value(2)) == 2
        assert token._waiter is not None
        token.release()

    def test_release_without_race(self):
        CancelToken().release()
