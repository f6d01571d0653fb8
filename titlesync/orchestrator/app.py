#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

import questionary
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.traceback import install

from titlesync import __version__
from titlesync.playfab.auth import LOGIN_METHODS, register_user
from titlesync.playfab.client import TitleDataCache
from titlesync.playfab.errors import ConfigError, TitleSyncError
from titlesync.runtime.events import emitting

from .config import load_config, settings_from_config, update_settings
from .constants import SECRETS_FILE, SOURCE_KEY
from .engine import build_api, open_backend, open_cache
from .secrets import get_playfab_source, get_postgres_credentials, get_secret, save_postgres_credentials, update_secret
from .ui import ledger_table, make_event_printer, render_error_panel, rows_table, sync_panel

install()
console = Console()
logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_json(data: Any) -> None:
    console.print_json(data=data, default=str)


def _report_refresh(cache: TitleDataCache) -> None:
    if cache.last_error is not None:
        console.print(render_error_panel(cache.last_error))
        console.print("[yellow]Refresh failed; showing stored data.[/yellow]")
    panel = sync_panel(cache.last_sync)
    if panel is not None:
        console.print(panel)


# -----------------------------
# Commands
# -----------------------------
def cmd_init_db(args: argparse.Namespace, cfg: Dict[str, Any]) -> int:
    settings = settings_from_config(cfg)
    backend = open_backend(settings)
    try:
        backend.ensure_core_tables()
    finally:
        backend.close()
    console.print(f"[green]✅ Ledger and news tables ready in schema '{settings.db_schema}'.[/green]")
    return 0


def cmd_title_data(args: argparse.Namespace, cfg: Dict[str, Any]) -> int:
    with open_cache(cfg) as cache:
        rows = cache.get_title_data(args.keys, ttl_hours=args.ttl_hours, force=args.force)
        _report_refresh(cache)
    if args.json:
        _print_json(rows)
    else:
        console.print(rows_table(rows.values(), title=", ".join(args.keys)))
    return 0


def cmd_news(args: argparse.Namespace, cfg: Dict[str, Any]) -> int:
    with open_cache(cfg) as cache:
        posts = cache.get_news(args.count)
        _report_refresh(cache)
    if args.json:
        _print_json(posts)
    else:
        console.print(rows_table(posts, title="Title news", columns=["news_timestamp", "news_title", "news_body"]))
    return 0


def cmd_leaderboard(args: argparse.Namespace, cfg: Dict[str, Any]) -> int:
    with open_cache(cfg) as cache:
        if args.all:
            rows = cache.get_full_leaderboard(args.statistic)
        else:
            rows = cache.get_leaderboard_page(
                args.statistic, max_results=args.max_results, start_position=args.start
            )
        _report_refresh(cache)
    if args.json:
        _print_json(rows)
    else:
        console.print(
            rows_table(rows, title=f"Leaderboard: {args.statistic}", columns=["position", "display_name", "stat_value", "play_fab_id"])
        )
    return 0


def cmd_catalog(args: argparse.Namespace, cfg: Dict[str, Any]) -> int:
    with open_cache(cfg) as cache:
        items = cache.get_catalog(version=args.version)
        _report_refresh(cache)
    if args.json:
        _print_json(items)
    else:
        console.print(rows_table(items.values(), title="Catalog", columns=["data_id", "display_name", "item_class", "virtual_currency_prices"]))
    return 0


def cmd_trim_logs(args: argparse.Namespace, cfg: Dict[str, Any]) -> int:
    with open_cache(cfg) as cache:
        removed = cache.trim_ledger(args.days)
    console.print(f"[green]Removed {removed} call log entries.[/green]")
    return 0


def cmd_calls(args: argparse.Namespace, cfg: Dict[str, Any]) -> int:
    with open_cache(cfg) as cache:
        entries = cache.recent_calls(endpoint=args.endpoint, limit=args.limit)
        rate = cache.calls_per_second(2)
        ceiling = cache.settings.calls_per_2min / 120.0
    console.print(ledger_table(entries))
    console.print(f"[dim]Last 2 min: {rate:.3f} calls/s (ceiling {ceiling:.3f} calls/s)[/dim]")
    return 0


def cmd_register(args: argparse.Namespace, cfg: Dict[str, Any]) -> int:
    settings = settings_from_config(cfg)
    password = args.password or questionary.password("Password:").ask()
    if not password:
        raise ConfigError("A password is required to register a player.")
    backend = open_backend(settings)
    try:
        backend.ensure_core_tables()
        api = build_api(settings, backend, get_playfab_source(), with_login=False)
        data = register_user(api, args.username, args.email, password)
    finally:
        backend.close()
    console.print(f"[green]✅ Registered {args.username} (PlayFabId {data.get('PlayFabId', '?')}).[/green]")
    return 0


# -----------------------------
# Configuration prompts
# -----------------------------
def configure_postgres() -> None:
    console.print(Panel("[bold green]Postgres Configuration[/bold green]"))
    current = get_postgres_credentials() or {}
    host = questionary.text("Host:", default=str(current.get("host") or "localhost")).ask() or "localhost"
    port = questionary.text("Port:", default=str(current.get("port") or "5432")).ask() or "5432"
    database = questionary.text("Database:", default=str(current.get("database") or "titlesync")).ask() or "titlesync"
    user = questionary.text("User:", default=str(current.get("username") or "titlesync")).ask() or "titlesync"
    password = questionary.password("Password:").ask() or ""

    try:
        port_n = int(port)
    except ValueError as e:
        raise ConfigError(f"Port must be a number, got {port!r}") from e

    save_postgres_credentials(
        {
            "host": host,
            "port": port_n,
            "database": database,
            "username": user,
            "password": password,
            "connect_timeout": 15,
        }
    )

    settings = settings_from_config(load_config())
    backend = open_backend(settings)
    try:
        ok = backend.ping()
    finally:
        backend.close()
    console.print(
        "[green]✅ Postgres connected & saved![/green]" if ok else "[red]❌ Connection failed, but config saved.[/red]"
    )


def configure_playfab() -> None:
    console.print(Panel("[bold green]PlayFab Login[/bold green]"))
    current = get_secret(SOURCE_KEY)
    title_id = questionary.text("Title ID:", default=str(current.get("title_id") or "")).ask()
    if not title_id:
        return
    method = questionary.select("Login method:", choices=list(LOGIN_METHODS), default=current.get("login_method") or "email").ask()
    if not method:
        return

    secrets: Dict[str, Any] = {"title_id": title_id.strip(), "login_method": method}
    if method == "email":
        secrets["email"] = questionary.text("Email:", default=str(current.get("email") or "")).ask()
        secrets["password"] = questionary.password("Password:").ask()
    else:
        secrets["google_server_auth_code"] = questionary.password("Google server auth code (optional):").ask() or None
        secrets["google_access_token"] = questionary.password("Google access token (optional):").ask() or None

    update_secret(SOURCE_KEY, secrets)
    console.print(f"[green]✅ Saved [sources.{SOURCE_KEY}] to {SECRETS_FILE}[/green]")


def configure_settings() -> None:
    console.print(Panel("[bold green]Cache Settings[/bold green]"))
    settings = settings_from_config(load_config())
    ceiling = questionary.text("Max API calls per 2 minutes:", default=str(settings.calls_per_2min)).ask()
    title_ttl = questionary.text("Title data TTL (hours):", default=str(settings.title_data_ttl_hours)).ask()
    news_ttl = questionary.text("News TTL (hours):", default=str(settings.news_ttl_hours)).ask()
    mode = questionary.select(
        "Which calls count as a refresh?",
        choices=["any_status", "success_only"],
        default=settings.freshness_mode.value,
    ).ask()
    new = update_settings(
        {
            "calls_per_2min": ceiling or settings.calls_per_2min,
            "title_data_ttl_hours": title_ttl or settings.title_data_ttl_hours,
            "news_ttl_hours": news_ttl or settings.news_ttl_hours,
            "freshness_mode": mode or settings.freshness_mode.value,
        }
    )
    console.print(f"[green]✅ Settings saved (ceiling {new.calls_per_2min}/2min).[/green]")


def cmd_configure(args: argparse.Namespace, cfg: Dict[str, Any]) -> int:
    what = args.section or questionary.select(
        "Configure:", choices=["postgres", "playfab", "settings", "all"]
    ).ask()
    if not what:
        return 0
    if what in ("postgres", "all"):
        configure_postgres()
    if what in ("playfab", "all"):
        configure_playfab()
    if what in ("settings", "all"):
        configure_settings()
    return 0


# -----------------------------
# Interactive menu
# -----------------------------
def _status_panel() -> Panel:
    creds = get_postgres_credentials()
    pg_ok = False
    if creds:
        backend = open_backend(settings_from_config(load_config()))
        try:
            pg_ok = backend.ping()
        finally:
            backend.close()
    title_id = get_secret(SOURCE_KEY).get("title_id") or "[red]not set[/red]"

    t = Table(show_header=False, box=None)
    t.add_row("🗃️  Postgres:", "[green]Connected[/green]" if pg_ok else "[red]Not connected[/red]")
    t.add_row("🎮 Title:", str(title_id))
    return Panel(t, title=f"titlesync {__version__}")


def interactive_menu() -> int:
    while True:
        console.print(_status_panel())
        action = questionary.select(
            "Choose action:",
            choices=[
                "📦 Title Data",
                "📰 News",
                "🏆 Leaderboard",
                "🛒 Catalog",
                "📜 Recent API Calls",
                "🧹 Trim Call Log",
                "⚙️  Configure",
                "👋 Exit",
            ],
        ).ask()
        if not action or "Exit" in action:
            return 0

        cfg = load_config()
        try:
            if "Title Data" in action:
                keys = questionary.text("Keys (comma-separated):").ask() or ""
                key_list = [k.strip() for k in keys.split(",") if k.strip()]
                if key_list:
                    cmd_title_data(argparse.Namespace(keys=key_list, ttl_hours=None, force=False, json=False), cfg)
            elif "News" in action:
                cmd_news(argparse.Namespace(count=10, json=False), cfg)
            elif "Leaderboard" in action:
                stat = questionary.text("Statistic name:").ask()
                if stat:
                    full = questionary.confirm("Fetch the whole leaderboard?", default=False).ask()
                    cmd_leaderboard(
                        argparse.Namespace(statistic=stat, all=bool(full), max_results=10, start=0, json=False), cfg
                    )
            elif "Catalog" in action:
                cmd_catalog(argparse.Namespace(version=None, json=False), cfg)
            elif "Recent API Calls" in action:
                cmd_calls(argparse.Namespace(limit=25, endpoint=None), cfg)
            elif "Trim Call Log" in action:
                if questionary.confirm("Delete call log entries past the retention window?", default=False).ask():
                    cmd_trim_logs(argparse.Namespace(days=None), cfg)
            elif "Configure" in action:
                cmd_configure(argparse.Namespace(section=None), cfg)
        except TitleSyncError as e:
            console.print(render_error_panel(e))

        questionary.press_any_key_to_continue().ask()


# -----------------------------
# Entry point
# -----------------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="titlesync",
        description="Cache PlayFab title data in PostgreSQL, refreshing only when stale.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug events and logs")
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("init-db", help="Create the call log and news tables")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("title-data", help="Read title data keys through the cache")
    p.add_argument("keys", nargs="+", help="Title data keys, e.g. StarSystemData")
    p.add_argument("--force", action="store_true", help="Refresh even if the cache is fresh")
    p.add_argument("--ttl-hours", type=float, default=None, help="Override the title data TTL")
    p.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    p.set_defaults(func=cmd_title_data)

    p = sub.add_parser("news", help="Latest title news")
    p.add_argument("--count", type=int, default=10)
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_news)

    p = sub.add_parser("leaderboard", help="Leaderboard for one statistic")
    p.add_argument("statistic")
    p.add_argument("--max-results", type=int, default=10, help="Page size (10-100)")
    p.add_argument("--start", type=int, default=0, help="Start position")
    p.add_argument("--all", action="store_true", help="Walk every page")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_leaderboard)

    p = sub.add_parser("catalog", help="Catalog items")
    p.add_argument("--version", default=None, help="Catalog version")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_catalog)

    p = sub.add_parser("trim-logs", help="Delete old call log entries")
    p.add_argument("--days", type=int, default=None, help="Retention in days (default from settings)")
    p.set_defaults(func=cmd_trim_logs)

    p = sub.add_parser("calls", help="Show recent API calls and the current call rate")
    p.add_argument("--limit", type=int, default=25)
    p.add_argument("--endpoint", default=None)
    p.set_defaults(func=cmd_calls)

    p = sub.add_parser("register", help="Register a PlayFab player account")
    p.add_argument("username")
    p.add_argument("email")
    p.add_argument("--password", default=None, help="Prompted for when omitted")
    p.set_defaults(func=cmd_register)

    p = sub.add_parser("configure", help="Set Postgres credentials, PlayFab login and cache settings")
    p.add_argument("section", nargs="?", choices=["postgres", "playfab", "settings", "all"])
    p.set_defaults(func=cmd_configure)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    with emitting(make_event_printer(console, min_level="debug" if args.verbose else "info")):
        try:
            if not args.command:
                return interactive_menu()
            return int(args.func(args, load_config()) or 0)
        except TitleSyncError as e:
            console.print(render_error_panel(e))
            return 1
        except KeyboardInterrupt:
            return 130


if __name__ == "__main__":
    sys.exit(main())
