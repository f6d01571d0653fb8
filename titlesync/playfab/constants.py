from __future__ import annotations

from typing import Final

SOURCE_NAME: Final[str] = "playfab"

# "titleId" is replaced with the configured title id.
PLAYFAB_BASE_URL: Final[str] = "https://titleId.playfabapi.com"

ENDPOINT_GET_TITLE_NEWS: Final[str] = "/Client/GetTitleNews"
ENDPOINT_GET_TITLE_DATA: Final[str] = "/Client/GetTitleData"
ENDPOINT_GET_PLAYER_STATS: Final[str] = "/Client/GetPlayerStatistics"
ENDPOINT_GET_USER_CHARS: Final[str] = "/Client/GetAllUsersCharacters"
ENDPOINT_GET_CHAR_STATS: Final[str] = "/Client/GetCharacterStatistics"
ENDPOINT_GET_CHAR_DATA: Final[str] = "/Client/GetCharacterData"
ENDPOINT_GET_USER_DATA: Final[str] = "/Client/GetUserData"
ENDPOINT_GET_LEADERBOARD: Final[str] = "/Client/GetLeaderboard"
ENDPOINT_GET_CATALOG_ITEMS: Final[str] = "/Client/GetCatalogItems"
ENDPOINT_GET_INVENTORY_ITEMS: Final[str] = "/Client/GetUserInventory"
ENDPOINT_LOGIN_EMAIL: Final[str] = "/Client/LoginWithEmailAddress"
ENDPOINT_LOGIN_GOOGLE: Final[str] = "/Client/LoginWithGoogleAccount"
ENDPOINT_REGISTER_USER: Final[str] = "/Client/RegisterPlayFabUser"

AUTH_HEADER: Final[str] = "X-Authorization"

# Cache freshness (hours)
DEFAULT_NEWS_TTL_HOURS: Final[int] = 1
DEFAULT_TITLE_DATA_TTL_HOURS: Final[int] = 168
DEFAULT_CATALOG_TTL_HOURS: Final[int] = 168
DEFAULT_LEADERBOARD_TTL_HOURS: Final[int] = 24

# API limits (calls per 2 minutes)
CLIENT_2_MIN_LIMIT: Final[int] = 1000
SERVER_2_MIN_LIMIT: Final[int] = 12000
RATE_WINDOW_MINUTES: Final[int] = 2
MAX_RATE_WINDOW_MINUTES: Final[int] = 120

# Ledger retention
DEFAULT_LEDGER_RETENTION_DAYS: Final[int] = 366

# Leaderboard paging bounds
LEADERBOARD_MIN_RESULTS: Final[int] = 10
LEADERBOARD_MAX_RESULTS: Final[int] = 100

# Storage layout
DEFAULT_TABLE_PREFIX: Final[str] = "data_"
PRIMARY_KEY_COLUMN: Final[str] = "data_id"
PRIMARY_KEY_WIDTH: Final[int] = 64
LEDGER_TABLE: Final[str] = "playfab_api_calls"
NEWS_TABLE: Final[str] = "playfab_news_entries"

# Category names for cached non-title-data endpoints
CATALOG_CATEGORY: Final[str] = "CatalogItems"
LEADERBOARD_CATEGORY_PREFIX: Final[str] = "Leaderboard"

SUCCESS_STATUS: Final[int] = 200
UNAUTHORIZED_STATUS: Final[int] = 401

# Largest length PostgreSQL accepts in VARCHAR(n); anything wider is TEXT.
MAX_VARCHAR_WIDTH: Final[int] = 10485760
