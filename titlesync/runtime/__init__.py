"""
Runtime package: event bus + result types shared by the engine and the CLI.
"""
from __future__ import annotations

from .events import EventRecorder, RuntimeEvent, emit, emitting, set_emitter
from .protocol import RecordFailure, SyncResult

__all__ = [
    "EventRecorder",
    "RuntimeEvent",
    "emit",
    "emitting",
    "set_emitter",
    "RecordFailure",
    "SyncResult",
]
