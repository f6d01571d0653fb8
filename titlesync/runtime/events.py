"""
Runtime event bus between the caching engine and whoever is watching it.

Rules:
- No Rich / printing here; the CLI renders events, tests record them.
- Emitting is always safe: with no emitter installed it is a no-op, and a
  broken emitter never takes a cache read down with it.

Engine code goes through the per-package helpers, e.g.
titlesync.playfab.events.info("schema.column_added", stream=table, column=col).
"""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

EventEmitter = Callable[["RuntimeEvent"], None]

LEVELS: Dict[str, int] = {"debug": 10, "info": 20, "warn": 30, "error": 40}

_EMITTER: Optional[EventEmitter] = None


def level_value(level: Optional[str]) -> int:
    return LEVELS.get((level or "info").lower().strip(), LEVELS["info"])


@dataclass(frozen=True)
class RuntimeEvent:
    type: str  # message|records|count
    message: str  # dotted event name, e.g. "schema.column_widened"
    source: Optional[str] = None
    stream: Optional[str] = None  # table, category or endpoint the event is about
    count: Optional[int] = None
    level: str = "info"
    ts: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    fields: Dict[str, Any] = field(default_factory=dict)

    def at_least(self, level: str) -> bool:
        return level_value(self.level) >= level_value(level)


def set_emitter(fn: Optional[EventEmitter]) -> None:
    global _EMITTER
    _EMITTER = fn


def get_emitter() -> Optional[EventEmitter]:
    return _EMITTER


@contextmanager
def emitting(fn: Optional[EventEmitter]) -> Iterator[Optional[EventEmitter]]:
    """Install `fn` for the duration of the block, then put back whatever was there."""
    previous = _EMITTER
    set_emitter(fn)
    try:
        yield fn
    finally:
        set_emitter(previous)


class EventRecorder(list):
    """An emitter that keeps every event; handy for tests and sync reports."""

    def __call__(self, ev: RuntimeEvent) -> None:
        self.append(ev)

    def named(self, message: str) -> List[RuntimeEvent]:
        return [ev for ev in self if ev.message == message]


def emit(
    event_type: str,
    message: str,
    *,
    source: Optional[str] = None,
    stream: Optional[str] = None,
    count: Optional[int] = None,
    level: str = "info",
    **fields: Any,
) -> None:
    fn = _EMITTER
    if fn is None:
        return

    ev = RuntimeEvent(
        type=str(event_type),
        message=str(message),
        source=source,
        stream=stream,
        count=count,
        level=str(level),
        fields=dict(fields),
    )
    try:
        fn(ev)
    except Exception:
        # Progress reporting must never break a sync or a cache read.
        return
