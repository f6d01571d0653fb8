from __future__ import annotations

import os

CONFIG_FILE = os.getenv("TITLESYNC_CONFIG_FILE") or "config.json"
SECRETS_DIR = ".titlesync"
SECRETS_FILE = os.getenv("TITLESYNC_SECRETS_FILE") or os.path.join(SECRETS_DIR, "secrets.toml")
CONFIG_VERSION = 1

# [sources.<name>] block holding the PlayFab login
SOURCE_KEY = "playfab"

LOCK_TIMEOUT_SECONDS = 10
