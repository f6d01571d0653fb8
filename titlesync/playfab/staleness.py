from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from titlesync.utils import EPOCH, utc_now

from .ledger import CallLedger


class StalenessOracle:
    """Answers "may cached data for this endpoint still be served?"; TTLs come from the caller."""

    def __init__(self, ledger: CallLedger, *, clock: Callable[[], datetime] = utc_now):
        self.ledger = ledger
        self.clock = clock

    def is_stale(self, endpoint: str, ttl_hours: float) -> bool:
        last = self.ledger.last_success_time(endpoint)
        if last <= EPOCH:
            return True
        go_stale = last + timedelta(hours=max(0.0, float(ttl_hours)))
        return go_stale <= self.clock()
