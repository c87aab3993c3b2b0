"""Unit tests for the per-domain limiter."""

from __future__ import annotations

import asyncio

import pytest

from app.exceptions import OverloadedError
from app.services.rate_limiter import DomainLimiter


class TestDomainLimiter:
    """Tests for DomainLimiter.slot()."""

    @pytest.mark.asyncio
    async def test_limits_concurrency_per_domain(self):
        limiter = DomainLimiter(concurrency=2, queue_depth=10)
        active = 0
        peak = 0

        async def work():
            nonlocal active, peak
            async with limiter.slot("example.com"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(work() for _ in range(6)))
        assert peak == 2

    @pytest.mark.asyncio
    async def test_domains_are_independent(self):
        limiter = DomainLimiter(concurrency=1, queue_depth=0)
        async with limiter.slot("a.example"):
            async with limiter.slot("b.example"):
                pass

    @pytest.mark.asyncio
    async def test_overloaded_when_queue_full(self):
        limiter = DomainLimiter(concurrency=1, queue_depth=1)
        release = asyncio.Event()

        async def hold():
            async with limiter.slot("example.com"):
                await release.wait()

        holder = asyncio.create_task(hold())
        await asyncio.sleep(0)
        waiter = asyncio.create_task(hold())
        await asyncio.sleep(0)
        assert limiter.waiting("example.com") == 1

        with pytest.raises(OverloadedError) as exc_info:
            async with limiter.slot("example.com"):
                pass
        assert exc_info.value.domain == "example.com"

        release.set()
        await asyncio.gather(holder, waiter)
        assert limiter.waiting("example.com") == 0

    @pytest.mark.asyncio
    async def test_slot_released_on_error(self):
        limiter = DomainLimiter(concurrency=1, queue_depth=0)
        with pytest.raises(RuntimeError):
            async with limiter.slot("example.com"):
                raise RuntimeError("boom")
        async with limiter.slot("example.com"):
            pass

    @pytest.mark.asyncio
    async def test_idle_domains_are_forgotten(self):
        limiter = DomainLimiter(concurrency=2, queue_depth=4)

        async def visit(domain):
            async with limiter.slot(domain):
                await asyncio.sleep(0)

        await asyncio.gather(*(visit(f"site{i}.example") for i in range(200)))
        assert limiter.tracked_domains == 0

    @pytest.mark.asyncio
    async def test_domain_kept_while_waiters_remain(self):
        limiter = DomainLimiter(concurrency=1, queue_depth=2)
        release = asyncio.Event()

        async def hold():
            async with limiter.slot("example.com"):
                await release.wait()

        tasks = [asyncio.create_task(hold()) for _ in range(3)]
        await asyncio.sleep(0)
        assert limiter.tracked_domains == 1
        assert limiter.waiting("example.com") == 2

        release.set()
        await asyncio.gather(*tasks)
        assert limiter.tracked_domains == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_is_forgotten(self):
        limiter = DomainLimiter(concurrency=1, queue_depth=2)
        release = asyncio.Event()

        async def hold():
            async with limiter.slot("example.com"):
                await release.wait()

        holder = asyncio.create_task(hold())
        await asyncio.sleep(0)
        waiter = asyncio.create_task(hold())
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert limiter.waiting("example.com") == 0

        release.set()
        await holder
        assert limiter.tracked_domains == 0
