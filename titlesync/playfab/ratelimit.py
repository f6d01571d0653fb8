from __future__ import annotations

import logging
import time
from typing import Callable

from .constants import CLIENT_2_MIN_LIMIT, RATE_WINDOW_MINUTES
from .events import debug
from .ledger import CallLedger

logger = logging.getLogger(__name__)

_WINDOW_SECONDS = 120.0
_MICROS = 1_000_000


def compute_sleep_us(current_rate: float, ceiling_per_2min: float = CLIENT_2_MIN_LIMIT) -> int:
    """
    Pause (microseconds) to take before the next call.

    At or below the ceiling the pause is the ceiling's nominal spacing
    (120s / ceiling). Above it the pause scales with how far over we are:
    twice the ceiling rate -> twice the nominal spacing. A zero rate (cold
    start) is floored at the ceiling rate.
    """
    ceiling = float(ceiling_per_2min)
    if ceiling <= 0:
        raise ValueError("rate ceiling must be positive")

    max_rate = ceiling / _WINDOW_SECONDS
    current = max(float(current_rate), max_rate)

    limit_us = _MICROS / max_rate
    call_ratio = current / max_rate
    return max(0, int(round(limit_us * call_ratio)))


class AdaptiveRateLimiter:
    """
    Admission control for outbound calls: one blocking pause before each
    attempt, sized from the ledger's trailing call rate.
    """

    def __init__(
        self,
        ledger: CallLedger,
        *,
        ceiling_per_2min: int = CLIENT_2_MIN_LIMIT,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if ceiling_per_2min <= 0:
            raise ValueError("ceiling_per_2min must be positive")
        self.ledger = ledger
        self.ceiling_per_2min = int(ceiling_per_2min)
        self._sleep = sleep

    @property
    def max_rate(self) -> float:
        return self.ceiling_per_2min / _WINDOW_SECONDS

    def current_rate(self) -> float:
        return self.ledger.calls_per_second(RATE_WINDOW_MINUTES)

    def next_sleep_us(self) -> int:
        return compute_sleep_us(self.current_rate(), self.ceiling_per_2min)

    def throttle(self) -> float:
        current = self.current_rate()
        sleep_us = compute_sleep_us(current, self.ceiling_per_2min)
        seconds = sleep_us / _MICROS
        debug(
            "ratelimit.sleep",
            current_rate=round(current, 4),
            max_rate=round(self.max_rate, 4),
            sleep_us=sleep_us,
        )
        if seconds > 0:
            self._sleep(seconds)
        return seconds
