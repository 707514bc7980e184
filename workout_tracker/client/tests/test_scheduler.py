import asyncio

import pytest

from workout_tracker.client.cache import CachedCredential
from workout_tracker.client.scheduler import RefreshScheduler, renewal_delay_ms, renewal_margin
from workout_tracker.client.tests.conftest import A, B, FakeClock


@pytest.mark.parametrize(
    "issued_at, expires_at, margin",
    [(0, 100, 5), (0, 20, 5), (0, 3600, 180), (1000, 1300, 15)],
)
def test_renewal_margin(issued_at, expires_at, margin):
    assert renewal_margin(issued_at, expires_at) == margin


def test_renewal_delay():
    assert renewal_delay_ms(0, 100, 0) == 95000
    assert renewal_delay_ms(0, 20, 0) == 15000
    assert renewal_delay_ms(0, 100, 96) == -1000


class Renewals:
    def __init__(self, fail=False):
        self.keys = []
        self.fail = fail

    async def __call__(self, key):
        self.keys.append(key)
        if self.fail:
            raise RuntimeError("boom")


def _run(scenario):
    return asyncio.run(scenario())


def test_arm_returns_delay_and_tracks_deadline():
    clock = FakeClock(0)
    scheduler = RefreshScheduler(Renewals(), now=clock)

    async def scenario():
        delay = scheduler.arm(A, CachedCredential("u", 0, 100))
        assert scheduler.armed(A)
        assert scheduler.deadline(A) == 95
        scheduler.close()
        return delay

    assert _run(scenario) == 95000


def test_one_timer_per_key():
    clock = FakeClock(0)
    scheduler = RefreshScheduler(Renewals(), now=clock)

    async def scenario():
        scheduler.arm(A, CachedCredential("u", 0, 100))
        scheduler.arm(A, CachedCredential("u2", 0, 200))
        scheduler.arm(B, CachedCredential("u", 0, 100))
        assert len(scheduler) == 2
        assert scheduler.deadline(A) == 190
        scheduler.close()

    _run(scenario)


def test_timer_fires_renewal():
    clock = FakeClock(94.95)
    renewals = Renewals()
    scheduler = RefreshScheduler(renewals, now=clock)

    async def scenario():
        delay = scheduler.arm(A, CachedCredential("u", 0, 100))
        assert delay == pytest.approx(50)
        await asyncio.sleep(0.15)

    _run(scenario)
    assert renewals.keys == [A]
    assert not scheduler.armed(A)
    assert scheduler.deadline(A) is None


def test_inside_margin_renews_immediately():
    clock = FakeClock(96)
    renewals = Renewals()
    scheduler = RefreshScheduler(renewals, now=clock)

    async def scenario():
        assert scheduler.arm(A, CachedCredential("u", 0, 100)) == 0.0
        await asyncio.sleep(0)
        await asyncio.sleep(0)

    _run(scenario)
    assert renewals.keys == [A]


def test_renewed_credential_waits_minimum_delay():
    clock = FakeClock(96)
    renewals = Renewals()
    scheduler = RefreshScheduler(renewals, now=clock)

    async def scenario():
        delay = scheduler.arm(A, CachedCredential("u", 0, 100), renewed=True)
        armed = scheduler.armed(A)
        scheduler.close()
        return delay, armed

    assert _run(scenario) == (2000, True)
    assert renewals.keys == []


def test_uninterested_key_is_not_armed():
    clock = FakeClock(96)
    renewals = Renewals()
    scheduler = RefreshScheduler(renewals, is_interested=lambda key: key != A, now=clock)

    async def scenario():
        assert scheduler.arm(A, CachedCredential("u", 0, 100)) is None
        await asyncio.sleep(0)

    _run(scenario)
    assert renewals.keys == []


def test_interest_checked_again_when_timer_fires():
    clock = FakeClock(94.95)
    renewals = Renewals()
    interested = {A}
    scheduler = RefreshScheduler(renewals, is_interested=interested.__contains__, now=clock)

    async def scenario():
        scheduler.arm(A, CachedCredential("u", 0, 100))
        interested.clear()
        await asyncio.sleep(0.15)

    _run(scenario)
    assert renewals.keys == []


def test_tombstone_is_not_armed():
    scheduler = RefreshScheduler(Renewals(), now=FakeClock(0))

    async def scenario():
        return scheduler.arm(A, CachedCredential.tombstone())

    assert _run(scenario) is None
    assert not scheduler.armed(A)


def test_close_cancels_and_blocks_arming():
    clock = FakeClock(94.95)
    renewals = Renewals()
    scheduler = RefreshScheduler(renewals, now=clock)

    async def scenario():
        scheduler.arm(A, CachedCredential("u", 0, 100))
        scheduler.close()
        assert scheduler.arm(B, CachedCredential("u", 0, 100)) is None
        await asyncio.sleep(0.15)

    _run(scenario)
    assert scheduler.closed
    assert len(scheduler) == 0
    assert renewals.keys == []


def test_close_cancels_running_renewal():
    clock = FakeClock(96)
    finished = []

    async def slow_renew(key):
        await asyncio.sleep(0.1)
        finished.append(key)

    scheduler = RefreshScheduler(slow_renew, now=clock)

    async def scenario():
        scheduler.arm(A, CachedCredential("u", 0, 100))
        await asyncio.sleep(0.01)
        scheduler.close()
        await asyncio.sleep(0.2)

    _run(scenario)
    assert finished == []


def test_retain_cancels_dropped_keys():
    scheduler = RefreshScheduler(Renewals(), now=FakeClock(0))

    async def scenario():
        scheduler.arm(A, CachedCredential("u", 0, 100))
        scheduler.arm(B, CachedCredential("u", 0, 100))
        scheduler.retain([B])
        result = (scheduler.armed(A), scheduler.armed(B))
        scheduler.close()
        return result

    assert _run(scenario) == (False, True)


def test_renewal_error_is_logged_not_raised(caplog):
    clock = FakeClock(96)
    renewals = Renewals(fail=True)
    scheduler = RefreshScheduler(renewals, now=clock)

    async def scenario():
        scheduler.arm(A, CachedCredential("u", 0, 100))
        await asyncio.sleep(0.01)

    _run(scenario)
    assert renewals.keys == [A]
    assert "renewal for" in caplog.text
