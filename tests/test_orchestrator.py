"""Tests for the CLI layer: config, secrets, event rendering and command wiring."""
import json
from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import pytest

from titlesync.orchestrator import app
from titlesync.orchestrator.config import load_config, settings_from_config, update_settings
from titlesync.orchestrator.engine import build_cache
from titlesync.orchestrator.secrets import (
    get_playfab_source,
    get_postgres_credentials,
    get_secret,
    save_postgres_credentials,
    update_secret,
)
from titlesync.orchestrator.ui import format_event_line, render_error_panel
from titlesync.playfab.auth import TokenProvider
from titlesync.playfab.config import TitleSyncSettings
from titlesync.playfab.errors import ConfigError, StorageError
from titlesync.playfab.ledger import FreshnessMode
from titlesync.runtime.events import RuntimeEvent


@pytest.fixture
def secrets_path(tmp_path):
    return str(tmp_path / ".titlesync" / "secrets.toml")


@pytest.fixture
def clean_env(monkeypatch):
    """Remove environment overrides that would leak into secrets lookups."""
    for var in ("PLAYFAB_TITLE_ID", "TITLESYNC_DSN", "POSTGRES_HOST_OVERRIDE", "POSTGRES_PORT_OVERRIDE"):
        monkeypatch.delenv(var, raising=False)


# -----------------------------
# config.json
# -----------------------------
def test_missing_config_means_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "config.json"))

    assert cfg["settings"] == {}
    assert settings_from_config(cfg) == TitleSyncSettings()


def test_corrupted_config_is_treated_as_empty(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")

    assert load_config(str(path))["settings"] == {}


def test_update_settings_persists(tmp_path):
    path = str(tmp_path / "config.json")

    new = update_settings({"calls_per_2min": "600", "freshness_mode": "success_only"}, path)

    assert new.calls_per_2min == 600
    assert new.freshness_mode == FreshnessMode.SUCCESS_ONLY
    with open(path, encoding="utf-8") as f:
        stored = json.load(f)
    assert stored["settings"]["calls_per_2min"] == 600
    assert stored["settings"]["freshness_mode"] == "success_only"
    assert settings_from_config(load_config(path)).calls_per_2min == 600


def test_invalid_settings_are_rejected(tmp_path):
    path = str(tmp_path / "config.json")

    with pytest.raises(ConfigError):
        update_settings({"calls_per_2min": 0}, path)
    with pytest.raises(ConfigError):
        update_settings({"ignore_categories": "(unclosed"}, path)
    with pytest.raises(ConfigError):
        update_settings({"table_prefix": "Bad-Prefix"}, path)


# -----------------------------
# secrets.toml
# -----------------------------
def test_update_secret_merges(secrets_path, clean_env):
    update_secret("playfab", {"title_id": "ABC123", "email": "a@b.c", "password": "one"}, path=secrets_path)
    update_secret("playfab", {"password": "two", "google_access_token": None}, path=secrets_path)

    src = get_secret("playfab", secrets_path)

    assert src["title_id"] == "ABC123"
    assert src["password"] == "two"
    assert "google_access_token" not in src


def test_update_secret_replace(secrets_path, clean_env):
    update_secret("playfab", {"title_id": "ABC123", "email": "a@b.c"}, path=secrets_path)
    update_secret("playfab", {"title_id": "XYZ"}, merge=False, path=secrets_path)

    assert dict(get_secret("playfab", secrets_path)) == {"title_id": "XYZ"}


def test_playfab_source_env_override(secrets_path, clean_env, monkeypatch):
    update_secret("playfab", {"title_id": "ABC123"}, path=secrets_path)
    monkeypatch.setenv("PLAYFAB_TITLE_ID", "OVERRIDE")

    assert get_playfab_source(secrets_path)["title_id"] == "OVERRIDE"


def test_playfab_source_requires_title_id(secrets_path, clean_env):
    with pytest.raises(ConfigError):
        get_playfab_source(secrets_path)


def test_postgres_credentials(secrets_path, clean_env, monkeypatch):
    assert get_postgres_credentials(secrets_path) is None

    save_postgres_credentials({"host": "localhost", "port": 5432, "database": "t", "username": "u"}, secrets_path)
    assert get_postgres_credentials(secrets_path)["host"] == "localhost"

    monkeypatch.setenv("POSTGRES_HOST_OVERRIDE", "db")
    monkeypatch.setenv("POSTGRES_PORT_OVERRIDE", "6543")
    creds = get_postgres_credentials(secrets_path)
    assert creds["host"] == "db"
    assert creds["port"] == 6543

    monkeypatch.setenv("POSTGRES_PORT_OVERRIDE", "not-a-port")
    with pytest.raises(ConfigError):
        get_postgres_credentials(secrets_path)


def test_dsn_replaces_credentials(secrets_path, clean_env, monkeypatch):
    monkeypatch.setenv("TITLESYNC_DSN", "postgresql://u@h/db")
    assert get_postgres_credentials(secrets_path) == {"dsn": "postgresql://u@h/db"}


def test_secrets_file_is_private(secrets_path, clean_env):
    import os
    import stat

    update_secret("playfab", {"title_id": "ABC123"}, path=secrets_path)

    if os.name != "nt":
        assert stat.S_IMODE(os.stat(secrets_path).st_mode) == 0o600


# -----------------------------
# Event rendering
# -----------------------------
def test_format_event_line():
    ev = RuntimeEvent(
        type="message",
        message="schema.column_widened",
        source="playfab",
        stream="data_shop_data",
        level="info",
        fields={"table": "data_shop_data", "column": "price", "width": 4, "ignored": "x"},
    )

    assert format_event_line(ev) == "[data_shop_data] schema.column_widened  table=data_shop_data  column=price  width=4"


def test_format_event_line_level_and_count():
    ev = RuntimeEvent(type="records", message="records", source="playfab", count=12, level="warn")

    line = format_event_line(ev, include_level=True)

    assert line == "[warn]  [playfab] records  count=12"


def test_error_panel_escapes_markup():
    panel = render_error_panel(StorageError("bad [red]value[/red]"))
    assert "\\[red]" in str(panel.renderable)


# -----------------------------
# Engine wiring
# -----------------------------
def test_build_cache_wires_settings(backend, clock):
    settings = TitleSyncSettings(calls_per_2min=600, caller="worker-1", freshness_mode="success_only")
    source = {"title_id": "ABC123", "email": "a@b.c", "password": "pw"}

    cache = build_cache(settings, backend, source, session=MagicMock(), sleep=lambda s: None, clock=clock)

    assert cache.api.title_id == "ABC123"
    assert cache.api.transport.base_url == "https://ABC123.playfabapi.com"
    assert cache.api.limiter.ceiling_per_2min == 600
    assert cache.ledger.caller == "worker-1"
    assert cache.ledger.freshness == FreshnessMode.SUCCESS_ONLY
    assert isinstance(cache.api.token_provider, TokenProvider)
    assert cache.oracle.clock is clock


# -----------------------------
# CLI entry point
# -----------------------------
@pytest.fixture
def fake_cache():
    cache = MagicMock()
    cache.last_error = None
    cache.last_sync = None
    return cache


@pytest.fixture
def patched_open_cache(fake_cache):
    @contextmanager
    def _open(cfg=None):
        yield fake_cache

    with patch.object(app, "open_cache", _open):
        yield fake_cache


def test_main_trim_logs(patched_open_cache, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    patched_open_cache.trim_ledger.return_value = 3

    assert app.main(["trim-logs", "--days", "30"]) == 0
    patched_open_cache.trim_ledger.assert_called_once_with(30)


def test_main_title_data(patched_open_cache, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    patched_open_cache.get_title_data.return_value = {"item1": {"data_id": "item1", "price": "100"}}

    assert app.main(["title-data", "ShopData", "--force", "--json"]) == 0
    patched_open_cache.get_title_data.assert_called_once_with(["ShopData"], ttl_hours=None, force=True)


def test_main_leaderboard_page(patched_open_cache, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    patched_open_cache.get_leaderboard_page.return_value = []

    assert app.main(["leaderboard", "Kills", "--max-results", "50", "--start", "10"]) == 0
    patched_open_cache.get_leaderboard_page.assert_called_once_with("Kills", max_results=50, start_position=10)


def test_main_returns_1_on_engine_error(patched_open_cache, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    patched_open_cache.get_news.side_effect = StorageError("database is down")

    assert app.main(["news"]) == 1


def test_menu_pauses_with_questionary(patched_open_cache, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    patched_open_cache.get_news.return_value = []
    prompts = MagicMock()
    prompts.select.return_value.ask.side_effect = ["📰 News", "👋 Exit"]

    with patch.object(app, "questionary", prompts), patch.object(app, "_status_panel", return_value="status"):
        assert app.interactive_menu() == 0

    patched_open_cache.get_news.assert_called_once_with(10)
    prompts.press_any_key_to_continue.return_value.ask.assert_called_once_with()
