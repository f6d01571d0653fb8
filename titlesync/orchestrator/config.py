from __future__ import annotations

import json
from typing import Any, Dict

from rich.console import Console

from titlesync.playfab.config import TitleSyncSettings, load_settings

from .constants import CONFIG_FILE, CONFIG_VERSION
from .locking import file_lock

console = Console()


def _empty() -> Dict[str, Any]:
    return {"config_version": CONFIG_VERSION, "settings": {}}


def save_config(cfg: Dict[str, Any], path: str = CONFIG_FILE) -> None:
    with file_lock(path) as f:
        f.seek(0)
        json.dump(cfg, f, indent=2)
        f.truncate()


def load_config(path: str = CONFIG_FILE) -> Dict[str, Any]:
    """
    config.json format:
    {
      "config_version": 1,
      "settings": {"table_prefix": "data_", "calls_per_2min": 1000, ...}
    }

    A missing or empty file means defaults. A corrupted file is reported and
    treated as empty.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read().strip()
    except FileNotFoundError:
        return _empty()
    if not raw:
        return _empty()

    try:
        data = json.loads(raw)
    except ValueError as e:
        console.print(f"[red]ERROR: Corrupted {path}: {e}[/red]")
        return _empty()

    if not isinstance(data, dict):
        return _empty()
    data.setdefault("config_version", CONFIG_VERSION)
    if not isinstance(data.get("settings"), dict):
        data["settings"] = {}
    return data


def settings_from_config(cfg: Dict[str, Any]) -> TitleSyncSettings:
    return load_settings(cfg.get("settings") or {})


def update_settings(changes: Dict[str, Any], path: str = CONFIG_FILE) -> TitleSyncSettings:
    """Validate and persist a partial settings update; returns the new settings."""
    cfg = load_config(path)
    merged = dict(cfg.get("settings") or {})
    merged.update(changes or {})
    settings = load_settings(merged)
    cfg["settings"] = settings.model_dump(mode="json")
    save_config(cfg, path)
    return settings
