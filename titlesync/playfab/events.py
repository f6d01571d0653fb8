from __future__ import annotations

from typing import Any, Dict, Optional

from titlesync.runtime.events import emit

from .constants import SOURCE_NAME


def emit_event(
    event_type: str,
    message: str,
    *,
    stream: Optional[str] = None,
    count: Optional[int] = None,
    level: str = "info",
    **fields: Any,
) -> None:
    """Emit structured event to runtime bus. Fails silently."""
    emit(
        event_type,
        message,
        source=SOURCE_NAME,
        stream=stream,
        count=count,
        level=level,
        **(fields or {}),
    )


def debug(message: str, *, stream: Optional[str] = None, **fields: Any) -> None:
    emit_event("message", message, stream=stream, level="debug", **fields)


def info(message: str, *, stream: Optional[str] = None, **fields: Any) -> None:
    emit_event("message", message, stream=stream, level="info", **fields)


def warn(message: str, *, stream: Optional[str] = None, **fields: Any) -> None:
    emit_event("message", message, stream=stream, level="warn", **fields)


def error(message: str, *, stream: Optional[str] = None, **fields: Any) -> None:
    emit_event("message", message, stream=stream, level="error", **fields)


def records(stream: str, count: int, *, message: str = "records") -> None:
    emit_event("records", message, stream=stream, count=int(count), level="info")


def http_start(*, endpoint: str, qualifier: Optional[str] = None) -> None:
    emit_event("message", "http.request.start", stream=endpoint, level="debug", qualifier=qualifier)


def http_ok(*, endpoint: str, status: int, elapsed_ms: int, keys_count: Optional[int] = None) -> None:
    fields: Dict[str, Any] = {"status": status, "elapsed_ms": elapsed_ms}
    if isinstance(keys_count, int):
        fields["keys_count"] = keys_count
    emit_event("message", "http.request.ok", stream=endpoint, level="debug", **fields)


def http_error(*, endpoint: str, status: Optional[int], error: str, elapsed_ms: Optional[int] = None) -> None:
    emit_event(
        "message",
        "http.request.error",
        stream=endpoint,
        level="warn",
        status=status,
        error=error[:500],
        elapsed_ms=elapsed_ms,
    )
