"""Tests for lease-based locks."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from stagepress.core.errors import BusyError
from stagepress.core.locks import LeaseLockManager, article_lock, environment_lock


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000_000.0

    def __call__(self) -> float:
        return self.now


class TestLeaseLockManager:
    def test_acquire_and_release(self, locks: LeaseLockManager):
        lease = locks.acquire("article:a1")
        assert locks.holder("article:a1") == lease
        assert locks.release(lease) is True
        assert locks.holder("article:a1") is None

    def test_second_acquire_is_busy(self, locks: LeaseLockManager):
        locks.acquire("article:a1")
        with pytest.raises(BusyError, match="article:a1"):
            locks.acquire("article:a1")

    def test_independent_names(self, locks: LeaseLockManager):
        locks.acquire("article:a1")
        assert locks.try_acquire("article:b2") is not None

    def test_expired_lease_is_reclaimed(self, tmp_dir: Path):
        clock = FakeClock()
        locks = LeaseLockManager(tmp_dir / "locks.db", lease_seconds=10, clock=clock)
        stale = locks.acquire("article:a1")
        clock.now += 11
        fresh = locks.acquire("article:a1")
        assert fresh.owner != stale.owner
        assert locks.release(stale) is False
        assert locks.holder("article:a1") == fresh

    def test_renew_extends_lease(self, tmp_dir: Path):
        clock = FakeClock()
        locks = LeaseLockManager(tmp_dir / "locks.db", lease_seconds=10, clock=clock)
        lease = locks.acquire("environment:production")
        clock.now += 8
        renewed = locks.renew(lease)
        clock.now += 8
        assert locks.try_acquire("environment:production") is None
        assert renewed.expires_at > lease.expires_at

    def test_renew_lost_lease(self, tmp_dir: Path):
        clock = FakeClock()
        locks = LeaseLockManager(tmp_dir / "locks.db", lease_seconds=10, clock=clock)
        lease = locks.acquire("article:a1")
        clock.now += 11
        locks.acquire("article:a1")
        with pytest.raises(BusyError):
            locks.renew(lease)

    def test_hold_releases_on_error(self, locks: LeaseLockManager):
        with pytest.raises(RuntimeError):
            with locks.hold("article:a1"):
                raise RuntimeError("boom")
        assert locks.holder("article:a1") is None

    def test_wait_succeeds_when_released(self, locks: LeaseLockManager):
        lease = locks.acquire("environment:production")
        timer = threading.Timer(0.1, locks.release, args=(lease,))
        timer.start()
        try:
            acquired = locks.acquire("environment:production", wait_seconds=5)
        finally:
            timer.join()
        assert acquired.owner != lease.owner

    def test_wait_times_out(self, locks: LeaseLockManager):
        locks.acquire("environment:production")
        with pytest.raises(BusyError):
            locks.acquire("environment:production", wait_seconds=0.1, poll_interval=0.02)

    def test_shared_across_instances(self, tmp_dir: Path):
        one = LeaseLockManager(tmp_dir / "shared.db")
        two = LeaseLockManager(tmp_dir / "shared.db")
        one.acquire("article:a1")
        assert two.try_acquire("article:a1") is None

    def test_exactly_one_concurrent_winner(self, locks: LeaseLockManager):
        barrier = threading.Barrier(8)
        winners: list[str] = []
        guard = threading.Lock()

        def contender() -> None:
            barrier.wait()
            lease = locks.try_acquire("article:a1")
            if lease is not None:
                with guard:
                    winners.append(lease.owner)

        threads = [threading.Thread(target=contender) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(winners) == 1

    def test_lock_names(self):
        assert article_lock("a1") == "article:a1"
        assert environment_lock("production") == "environment:production"


class TestLeaseKeepAlive:
    """A slow holder keeps its lease; a lost lease is detected before committing."""

    def test_hold_outlives_lease_seconds(self, tmp_dir: Path):
        locks = LeaseLockManager(tmp_dir / "locks.db", lease_seconds=0.3)
        with locks.hold("environment:production") as lease:
            time.sleep(1.0)
            assert locks.try_acquire("environment:production") is None
            locks.ensure_held(lease)
        assert locks.holder("environment:production") is None

    def test_ensure_held_after_reclaim(self, tmp_dir: Path):
        clock = FakeClock()
        locks = LeaseLockManager(tmp_dir / "locks.db", lease_seconds=10, clock=clock)
        lease = locks.acquire("environment:production")
        locks.ensure_held(lease)
        clock.now += 11
        locks.acquire("environment:production")
        with pytest.raises(BusyError, match="was lost while held"):
            locks.ensure_held(lease)

    def test_ensure_held_after_expiry(self, tmp_dir: Path):
        clock = FakeClock()
        locks = LeaseLockManager(tmp_dir / "locks.db", lease_seconds=10, clock=clock)
        lease = locks.acquire("article:a1")
        clock.now += 11
        with pytest.raises(BusyError):
            locks.ensure_held(lease)
