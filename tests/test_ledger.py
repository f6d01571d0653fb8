"""Tests for the call ledger."""
from datetime import timedelta

import pytest

from titlesync.playfab.ledger import CallLedger, FreshnessMode
from titlesync.utils import EPOCH


def test_record_normalizes_endpoint(ledger, backend):
    """Entries are stored without scheme and host."""
    assert ledger.record("https://abc.playfabapi.com/Client/GetTitleData", 200) is True

    assert backend.calls[0]["call_endpoint"] == "/Client/GetTitleData"
    assert backend.calls[0]["call_client"] == "pytest"
    assert backend.calls[0]["status_code"] == 200


def test_record_never_raises(ledger, backend, events):
    """A ledger outage costs the sample, not the caller's result."""
    backend.ledger_down = True

    assert ledger.record("/Client/GetTitleData", 200) is False
    assert any(e.message == "ledger.write_failed" for e in events)


def test_last_success_time_is_epoch_without_history(ledger):
    assert ledger.last_success_time("/Client/GetTitleData") == EPOCH


def test_last_success_time_any_status_counts_failures(ledger, clock):
    """Default mode: the latest attempt counts, whatever its status."""
    ledger.record("/Client/GetTitleData", 200)
    clock.advance(minutes=5)
    ledger.record("/Client/GetTitleData", 500)

    assert ledger.last_success_time("/Client/GetTitleData") == clock.now


def test_last_success_time_success_only(backend, clock):
    """SUCCESS_ONLY ignores failed attempts."""
    ledger = CallLedger(backend, caller="pytest", freshness=FreshnessMode.SUCCESS_ONLY)
    ledger.record("/Client/GetTitleData", 200)
    first = clock.now
    clock.advance(minutes=5)
    ledger.record("/Client/GetTitleData", 500)

    assert ledger.last_success_time("/Client/GetTitleData") == first


def test_last_success_time_is_per_endpoint(ledger):
    ledger.record("/Client/GetTitleNews", 200)
    assert ledger.last_success_time("/Client/GetTitleData") == EPOCH


def test_calls_per_second(ledger, backend):
    """240 calls in the last two minutes is 2 calls/s."""
    backend.add_calls("/Client/GetTitleData", 240, spread_seconds=100)

    assert ledger.calls_per_second(2) == pytest.approx(2.0)


def test_calls_per_second_ignores_old_calls(ledger, backend, clock):
    backend.add_calls("/Client/GetTitleData", 50)
    clock.advance(minutes=3)

    assert ledger.calls_per_second(2) == 0.0


def test_calls_per_second_zero_window(ledger, backend):
    backend.add_calls("/Client/GetTitleData", 10)
    assert ledger.calls_per_second(0) == 0.0
    assert ledger.calls_per_second(-5) == 0.0


def test_calls_per_second_window_is_clamped(ledger, backend):
    """Windows beyond the maximum are clamped to it."""
    backend.add_calls("/Client/GetTitleData", 72)

    assert ledger.calls_per_second(10_000, max_window=120) == pytest.approx(72 / 7200)


def test_calls_per_second_on_outage_is_cold_start(ledger, backend):
    backend.add_calls("/Client/GetTitleData", 10)
    backend.ledger_down = True

    assert ledger.calls_per_second(2) == 0.0


def test_trim_removes_entries_past_retention(ledger, backend, clock):
    backend.add_calls("/Client/GetTitleData", 3)
    clock.advance(days=10)
    ledger.record("/Client/GetTitleData", 200)

    removed = ledger.trim(7)

    # Setup: three old calls, one fresh
    assert removed == 3
    assert len(backend.calls) == 1
    assert backend.calls[0]["call_time"] == clock.now


def test_trim_keeps_entries_inside_horizon(ledger, backend, clock):
    """Entries a day inside the horizon survive; a day outside are gone."""
    now = clock.now
    for age_days, endpoint in ((29, "/inside"), (31, "/outside")):
        backend.calls.append(
            {
                "call_endpoint": endpoint,
                "call_client": "test",
                "call_time": now - timedelta(days=age_days),
                "status_code": 200,
            }
        )

    assert ledger.trim(30) == 1
    assert [c["call_endpoint"] for c in backend.calls] == ["/inside"]


def test_entries_newest_first(ledger, clock):
    ledger.record("/Client/GetTitleData", 200)
    clock.advance(seconds=30)
    ledger.record("/Client/GetTitleNews", 401)

    entries = ledger.entries(limit=10)

    assert [e.endpoint for e in entries] == ["/Client/GetTitleNews", "/Client/GetTitleData"]
    assert entries[0].status_code == 401
    assert entries[0].timestamp - entries[1].timestamp == timedelta(seconds=30)


def test_entries_filtered_by_endpoint(ledger):
    ledger.record("/Client/GetTitleData", 200)
    ledger.record("/Client/GetTitleNews", 200)

    entries = ledger.entries(endpoint="https://x.playfabapi.com/Client/GetTitleNews")

    assert len(entries) == 1
    assert entries[0].endpoint == "/Client/GetTitleNews"


def test_caller_is_truncated(backend):
    ledger = CallLedger(backend, caller="c" * 100)
    assert len(ledger.caller) == 64
