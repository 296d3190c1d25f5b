"""Unit tests for the idempotency cache."""

import asyncio

import pytest

from gotichat.gotify.request_cache import PendingRequestCache


class TestPendingRequestCache:
    def test_first_key_is_accepted(self, clock):
        cache = PendingRequestCache(clock=clock)
        assert cache.check_and_record("req-1") is True
        assert cache.is_pending("req-1")
        assert len(cache) == 1

    def test_repeat_inside_window_is_rejected(self, clock):
        cache = PendingRequestCache(ttl=5.0, clock=clock)
        cache.check_and_record("req-1")
        clock.advance(4.9)
        assert cache.check_and_record("req-1") is False

    def test_key_accepted_again_at_ttl(self, clock):
        cache = PendingRequestCache(ttl=5.0, clock=clock)
        cache.check_and_record("req-1")
        clock.advance(5.0)
        assert cache.is_pending("req-1") is False
        assert cache.check_and_record("req-1") is True

    def test_rejected_repeat_does_not_extend_window(self, clock):
        cache = PendingRequestCache(ttl=5.0, clock=clock)
        cache.check_and_record("req-1")
        clock.advance(3)
        assert cache.check_and_record("req-1") is False
        clock.advance(2)
        assert cache.check_and_record("req-1") is True

    def test_distinct_keys_are_independent(self, clock):
        cache = PendingRequestCache(clock=clock)
        assert cache.check_and_record("a")
        assert cache.check_and_record("b")

    def test_sweep_removes_only_expired(self, clock):
        cache = PendingRequestCache(ttl=5.0, clock=clock)
        cache.check_and_record("old")
        clock.advance(3)
        cache.check_and_record("new")
        clock.advance(2)

        assert cache.sweep() == 1
        assert len(cache) == 1
        assert cache.is_pending("new")

    def test_clear(self, clock):
        cache = PendingRequestCache(clock=clock)
        cache.check_and_record("a")
        cache.clear()
        assert len(cache) == 0


class TestBackgroundSweep:
    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        cache = PendingRequestCache(ttl=0.01, sweep_interval=0.01)
        cache.check_and_record("a")

        await cache.start()
        assert cache.running
        await asyncio.sleep(0.05)
        assert len(cache) == 0

        await cache.stop()
        assert not cache.running

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        cache = PendingRequestCache()
        await cache.start()
        task = cache._sweep_task
        await cache.start()
        assert cache._sweep_task is task
        await cache.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        cache = PendingRequestCache()
        await cache.stop()
        assert not cache.running
