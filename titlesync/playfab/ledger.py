from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from titlesync.utils import EPOCH, as_utc

from .constants import (
    DEFAULT_LEDGER_RETENTION_DAYS,
    MAX_RATE_WINDOW_MINUTES,
    RATE_WINDOW_MINUTES,
    SUCCESS_STATUS,
)
from .errors import StorageError
from .events import warn
from .normalization import normalize_endpoint

logger = logging.getLogger(__name__)

MAX_CALLER_LENGTH = 64


class FreshnessMode(str, Enum):
    """
    Which ledger entries count as "the last call" for staleness:
      - any_status: every attempt, failed ones included (a recent failure
        suppresses a retry until the TTL passes)
      - success_only: only entries with status 200
    """

    ANY_STATUS = "any_status"
    SUCCESS_ONLY = "success_only"


@dataclass(frozen=True)
class CallLogEntry:
    endpoint: str
    caller: str
    timestamp: datetime
    status_code: int


class CallLedger:
    """
    Append-only log of outbound call attempts. Feeds both the staleness
    oracle and the rate limiter.
    """

    def __init__(self, backend: Any, *, caller: str = "unknown", freshness: FreshnessMode = FreshnessMode.ANY_STATUS):
        self.backend = backend
        self.caller = (caller or "unknown")[:MAX_CALLER_LENGTH]
        self.freshness = FreshnessMode(freshness)

    def record(self, endpoint: str, status_code: int, *, caller: Optional[str] = None) -> bool:
        """
        Append one entry. Never raises: losing a sample must not cost the
        caller the result of a call that already happened.
        """
        ep = normalize_endpoint(endpoint)
        who = (caller or self.caller)[:MAX_CALLER_LENGTH]
        try:
            self.backend.insert_call(ep, who, int(status_code))
            return True
        except StorageError as e:
            logger.warning(f"Call ledger write failed for {ep} ({status_code}): {e}")
            warn("ledger.write_failed", endpoint=ep, status=status_code, error=str(e))
            return False

    def last_success_time(self, endpoint: str) -> datetime:
        """
        Timestamp of the most recent entry for `endpoint`, or EPOCH if none.

        With FreshnessMode.ANY_STATUS a failed attempt counts too.
        """
        ep = normalize_endpoint(endpoint)
        status = SUCCESS_STATUS if self.freshness == FreshnessMode.SUCCESS_ONLY else None
        last = self.backend.last_call_time(ep, status_code=status)
        if last is None:
            return EPOCH
        return as_utc(last)

    def calls_per_second(self, window_minutes: int = RATE_WINDOW_MINUTES, max_window: int = MAX_RATE_WINDOW_MINUTES) -> float:
        minutes = max(0, min(int(window_minutes), int(max_window)))
        seconds = minutes * 60
        if seconds <= 0:
            return 0.0
        try:
            count = self.backend.count_calls_since(seconds)
        except StorageError as e:
            logger.warning(f"Call ledger read failed, treating rate as cold start: {e}")
            warn("ledger.read_failed", error=str(e))
            return 0.0
        return float(count) / float(seconds)

    def trim(self, retention_days: int = DEFAULT_LEDGER_RETENTION_DAYS) -> int:
        days = max(0, int(retention_days))
        removed = self.backend.delete_calls_older_than(days)
        logger.info(f"Trimmed {removed} ledger entries older than {days} days")
        return removed

    def entries(self, *, endpoint: Optional[str] = None, limit: int = 25) -> List[CallLogEntry]:
        ep = normalize_endpoint(endpoint) if endpoint else None
        rows = self.backend.recent_calls(limit=limit, endpoint=ep)
        return [
            CallLogEntry(
                endpoint=str(r["call_endpoint"]),
                caller=str(r.get("call_client") or ""),
                timestamp=as_utc(r["call_time"]),
                status_code=int(r.get("status_code") or 0),
            )
            for r in rows
        ]
