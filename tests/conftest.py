from __future__ import annotations

from typing import List

import pytest

from titlesync.playfab.auth import SessionToken, TokenProvider
from titlesync.playfab.config import TitleSyncSettings
from titlesync.playfab.http import PlayFabApi
from titlesync.playfab.ledger import CallLedger
from titlesync.playfab.ratelimit import AdaptiveRateLimiter
from titlesync.runtime.events import EventRecorder, emitting

from .fakes import FakeClock, FakeTransport, InMemoryBackend


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock) -> InMemoryBackend:
    b = InMemoryBackend(clock)
    b.ensure_core_tables()
    return b


@pytest.fixture
def ledger(backend) -> CallLedger:
    return CallLedger(backend, caller="pytest")


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def limiter(ledger, sleeps) -> AdaptiveRateLimiter:
    return AdaptiveRateLimiter(ledger, sleep=sleeps.append)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def tokens(clock) -> TokenProvider:
    return TokenProvider(lambda: SessionToken(ticket="ticket-1", playfab_id="P1"), clock=clock)


@pytest.fixture
def api(transport, limiter, ledger, tokens) -> PlayFabApi:
    return PlayFabApi(transport, limiter, ledger, tokens)


@pytest.fixture
def settings() -> TitleSyncSettings:
    return TitleSyncSettings()


@pytest.fixture
def events():
    """Collect runtime events emitted during a test."""
    recorder = EventRecorder()
    with emitting(recorder):
        yield recorder
