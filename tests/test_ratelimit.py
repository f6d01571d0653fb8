"""Tests for the adaptive rate limiter."""
from unittest.mock import MagicMock

import pytest

from titlesync.playfab.ratelimit import AdaptiveRateLimiter, compute_sleep_us


@pytest.fixture
def rate_ledger():
    """Ledger double with a settable trailing rate."""
    ledger = MagicMock()
    ledger.calls_per_second.return_value = 0.0
    return ledger


def test_nominal_pause_at_or_below_ceiling():
    """Below the ceiling the pause is 120s / ceiling."""
    assert compute_sleep_us(0.0, 1000) == 120_000
    assert compute_sleep_us(1.0, 1000) == 120_000
    assert compute_sleep_us(1000 / 120, 1000) == 120_000


def test_pause_scales_above_ceiling():
    """Twice the ceiling rate doubles the pause."""
    nominal = compute_sleep_us(0.0, 1000)
    assert compute_sleep_us(2 * 1000 / 120, 1000) == pytest.approx(2 * nominal, abs=1)


def test_pause_strictly_increases_above_ceiling():
    rates = [9.0, 10.0, 12.0, 20.0, 50.0]
    pauses = [compute_sleep_us(r, 1000) for r in rates]
    assert pauses == sorted(pauses)
    assert len(set(pauses)) == len(pauses)


def test_invalid_ceiling():
    with pytest.raises(ValueError):
        compute_sleep_us(1.0, 0)
    with pytest.raises(ValueError):
        AdaptiveRateLimiter(MagicMock(), ceiling_per_2min=0)


def test_paced_calls_stay_under_ceiling():
    """Calls spaced by the computed pause never exceed the ceiling over two minutes."""
    ceiling = 1000
    elapsed = 0.0
    calls = 0
    while elapsed < 120.0:
        rate = calls / 120.0
        elapsed += compute_sleep_us(rate, ceiling) / 1_000_000
        if elapsed < 120.0:
            calls += 1

    assert calls <= ceiling


def test_throttle_sleeps_the_computed_pause(rate_ledger):
    # Setup
    slept = []
    limiter = AdaptiveRateLimiter(rate_ledger, ceiling_per_2min=600, sleep=slept.append)

    # Execute
    seconds = limiter.throttle()

    # Assert
    assert seconds == pytest.approx(0.2)
    assert slept == [pytest.approx(0.2)]
    rate_ledger.calls_per_second.assert_called_once_with(2)


def test_throttle_backs_off_when_over_ceiling(rate_ledger):
    slept = []
    limiter = AdaptiveRateLimiter(rate_ledger, ceiling_per_2min=600, sleep=slept.append)
    rate_ledger.calls_per_second.return_value = 15.0  # 3x the 5 calls/s ceiling

    limiter.throttle()

    assert slept == [pytest.approx(0.6)]


def test_throttle_emits_event(rate_ledger, events):
    limiter = AdaptiveRateLimiter(rate_ledger, sleep=lambda s: None)
    limiter.throttle()

    ev = [e for e in events if e.message == "ratelimit.sleep"]
    assert len(ev) == 1
    assert ev[0].fields["sleep_us"] == 120_000
    assert ev[0].level == "debug"


def test_limiter_reads_real_ledger(limiter, backend, sleeps):
    """Heavy recent traffic in the ledger lengthens the pause."""
    backend.add_calls("/Client/GetTitleData", 2400, spread_seconds=60)

    limiter.throttle()

    # 2400 calls / 120s = 20/s against a ceiling of 8.33/s
    assert sleeps[0] == pytest.approx(0.12 * (20 / (1000 / 120)), rel=1e-3)


def test_overloaded_ledger_converges_to_ceiling(ledger, backend, clock):
    """Starting at twice the ceiling, repeated pauses bring the measured rate back under it."""
    backend.add_calls("/Client/GetTitleData", 2000, spread_seconds=120)
    slept = []

    def _sleep(seconds):
        slept.append(seconds)
        clock.advance(seconds=seconds)

    limiter = AdaptiveRateLimiter(ledger, ceiling_per_2min=1000, sleep=_sleep)
    rates = [limiter.current_rate()]
    while sum(slept) < 180:
        limiter.throttle()
        ledger.record("/Client/GetTitleData", 200)
        rates.append(limiter.current_rate())

    assert rates[0] == pytest.approx(2 * limiter.max_rate, rel=0.01)
    assert slept[0] == pytest.approx(0.24, rel=0.01)
    assert rates[-1] <= limiter.max_rate
    assert slept[-1] == pytest.approx(0.12)
    # the rate only falls while the window is still over the ceiling
    over = [r for r in rates if r > limiter.max_rate]
    assert over == sorted(over, reverse=True)
