from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from titlesync.playfab.errors import (
    AuthError,
    ConfigError,
    RemoteApiError,
    StorageError,
    TransportError,
)
from titlesync.playfab.ledger import CallLogEntry
from titlesync.runtime.events import RuntimeEvent
from titlesync.runtime.protocol import SyncResult


def truncate(s: Any, n: int = 96) -> str:
    s2 = str(s)
    return s2 if len(s2) <= n else (s2[: n - 1] + "…")


def format_event_line(ev: RuntimeEvent, *, include_level: bool = False) -> str:
    """One line per event: [stream] message, then the interesting fields in a fixed order."""
    stream = ev.stream or ev.source or "titlesync"
    level = (ev.level or "info").lower().strip()

    f: Dict[str, Any] = ev.fields or {}
    parts: List[str] = []

    if include_level and level != "info":
        parts.append(f"[{level}]")
    parts.append(f"[{stream}] {ev.message}")

    key_order = [
        "table",
        "column",
        "width",
        "record_id",
        "field",
        "status",
        "elapsed_ms",
        "keys_count",
        "count",
        "sleep_us",
        "current_rate",
        "upserted",
        "failed",
        "error_type",
        "error",
    ]

    def one(k: str) -> Optional[str]:
        if k == "count":
            return f"count={ev.count}" if isinstance(ev.count, int) else None
        v = f.get(k)
        if v is None:
            return None
        if k == "error":
            return f"error={truncate(v, 180)}"
        return f"{k}={truncate(v, 120) if isinstance(v, str) else v}"

    for k in key_order:
        got = one(k)
        if got:
            parts.append(got)

    return "  ".join(parts)


def make_event_printer(console: Console, *, min_level: str = "info") -> Callable[[RuntimeEvent], None]:
    styles = {"warn": "yellow", "error": "red", "debug": "dim"}

    def _print(ev: RuntimeEvent) -> None:
        if not ev.at_least(min_level):
            return
        line = format_event_line(ev, include_level=True)
        style = styles.get((ev.level or "info").lower())
        console.print(Text(line, style=style or ""), highlight=False)

    return _print


def render_error_panel(e: Exception) -> Panel:
    if isinstance(e, RemoteApiError):
        if e.unauthorized:
            hint = "Session rejected. Check the PlayFab login in the secrets file."
        elif e.status_code == 429:
            hint = "Rate limited by PlayFab. Lower calls_per_2min in config.json."
        else:
            hint = e.message or e.error or "The service rejected the request."
        return Panel(f"[red]PlayFab API Error {e.status_code}[/red]\n{escape(hint)}\n\n[dim]{escape(str(e))}[/dim]", style="red")
    if isinstance(e, AuthError):
        return Panel(f"[red]Login Failed[/red]\n{escape(str(e))}", style="red")
    if isinstance(e, TransportError):
        return Panel(f"[red]Network Error[/red]\nCould not reach PlayFab.\n\n[dim]{escape(str(e))}[/dim]", style="red")
    if isinstance(e, StorageError):
        return Panel(f"[red]Database Error[/red]\n{escape(str(e))}", style="red")
    if isinstance(e, ConfigError):
        return Panel(f"[red]Configuration Error[/red]\n{escape(str(e))}", style="red")
    return Panel(f"[red]Error[/red]\n{escape(str(e))}", style="red")


def rows_table(
    rows: Iterable[Mapping[str, Any]],
    *,
    title: str = "",
    columns: Optional[Sequence[str]] = None,
    max_width: int = 60,
) -> Table:
    rows = list(rows)
    cols: List[str] = list(columns or [])
    if not cols:
        for r in rows:
            for k in r.keys():
                if k not in cols:
                    cols.append(k)

    t = Table(title=title or None, show_lines=False)
    for c in cols:
        t.add_column(c, overflow="fold")
    for r in rows:
        t.add_row(*[Text(truncate("" if r.get(c) is None else r.get(c), max_width)) for c in cols])
    return t


def ledger_table(entries: Iterable[CallLogEntry]) -> Table:
    t = Table(title="Recent API calls")
    t.add_column("time (UTC)")
    t.add_column("endpoint")
    t.add_column("status", justify="right")
    t.add_column("caller")
    for e in entries:
        status = str(e.status_code)
        if e.status_code != 200:
            status = f"[red]{status}[/red]"
        t.add_row(e.timestamp.strftime("%Y-%m-%d %H:%M:%S"), escape(e.endpoint), status, escape(e.caller))
    return t


def sync_panel(result: Optional[SyncResult]) -> Optional[Panel]:
    if result is None:
        return None
    style = "green" if result.ok else "yellow"
    return Panel(Text(result.report_text()), title="Last sync", style=style)
