"""
Shared utilities for the engine.

Goals:
- One consistent HTTP stack (sessions + retry + timeouts)
- Small time/clamp helpers used across modules

Deliberately engine-only:
- NO Rich / Questionary / CLI rendering
- Any "pretty panels" or CLI messaging belongs in titlesync/orchestrator/
"""
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# (connect, read) timeout used unless overridden by settings.
DEFAULT_TIMEOUT: Tuple[float, float] = (
    float(os.getenv("TITLESYNC_CONNECT_TIMEOUT") or "10"),
    float(os.getenv("TITLESYNC_READ_TIMEOUT") or "60"),
)


# -----------------------------
# HTTP sessions + retries
# -----------------------------
def requests_retry_session(
    retries: int = 2,
    backoff_factor: float = 0.6,
    allowed_methods: Tuple[str, ...] = ("GET", "POST"),
    session: Optional[requests.Session] = None,
) -> requests.Session:
    """
    Creates a requests.Session with a connection-level retry strategy.

    Notes:
    - Only connect failures are retried inside the adapter; those never reach
      the remote service. Read and status retries stay off because every
      attempt that reaches the service has to pass through the rate limiter
      and land in the call ledger, which urllib3 retries would bypass.
    """
    sess = session or requests.Session()

    retry = Retry(
        total=retries,
        connect=retries,
        read=0,
        status=0,
        other=0,
        backoff_factor=backoff_factor,
        allowed_methods=set(m.upper() for m in allowed_methods),
        raise_on_status=False,  # we handle status codes ourselves for better messages
        respect_retry_after_header=True,
    )

    adapter = HTTPAdapter(max_retries=retry, pool_connections=4, pool_maxsize=4)
    sess.mount("http://", adapter)
    sess.mount("https://", adapter)
    return sess


# -----------------------------
# Time + clamp helpers
# -----------------------------
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso(s: Optional[str]) -> Optional[datetime]:
    if not s:
        return None
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).astimezone(timezone.utc)
    except ValueError:
        return None


def clamp_int(val: Any, *, default: int, lo: int, hi: int) -> int:
    try:
        n = int(val)
    except (TypeError, ValueError):
        return default
    return max(lo, min(hi, n))
