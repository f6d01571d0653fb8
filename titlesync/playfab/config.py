from __future__ import annotations

import re
from typing import Any, Dict, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from .constants import (
    CLIENT_2_MIN_LIMIT,
    DEFAULT_CATALOG_TTL_HOURS,
    DEFAULT_LEADERBOARD_TTL_HOURS,
    DEFAULT_LEDGER_RETENTION_DAYS,
    DEFAULT_NEWS_TTL_HOURS,
    DEFAULT_TABLE_PREFIX,
    DEFAULT_TITLE_DATA_TTL_HOURS,
    SERVER_2_MIN_LIMIT,
)
from .errors import ConfigError
from .ledger import FreshnessMode


class TitleSyncSettings(BaseModel):
    table_prefix: str = Field(default=DEFAULT_TABLE_PREFIX, pattern=r"^[a-z0-9_]{0,20}$")
    db_schema: str = Field(default="public", min_length=1, max_length=63)

    calls_per_2min: int = Field(default=CLIENT_2_MIN_LIMIT, ge=1, le=SERVER_2_MIN_LIMIT)
    freshness_mode: FreshnessMode = Field(default=FreshnessMode.ANY_STATUS)

    news_ttl_hours: int = Field(default=DEFAULT_NEWS_TTL_HOURS, ge=0, le=24 * 365)
    title_data_ttl_hours: int = Field(default=DEFAULT_TITLE_DATA_TTL_HOURS, ge=0, le=24 * 365)
    catalog_ttl_hours: int = Field(default=DEFAULT_CATALOG_TTL_HOURS, ge=0, le=24 * 365)
    leaderboard_ttl_hours: int = Field(default=DEFAULT_LEADERBOARD_TTL_HOURS, ge=0, le=24 * 365)

    ledger_retention_days: int = Field(default=DEFAULT_LEDGER_RETENTION_DAYS, ge=1, le=3650)

    # Categories matching this regex are never synced (empty = none).
    ignore_categories: str = Field(default="")

    http_connect_timeout: float = Field(default=10.0, gt=0, le=120)
    http_read_timeout: float = Field(default=60.0, gt=0, le=600)

    caller: str = Field(default="titlesync", min_length=1, max_length=64)

    @field_validator("ignore_categories")
    @classmethod
    def _valid_regex(cls, v: str) -> str:
        if v:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"ignore_categories is not a valid regex: {e}") from e
        return v

    @property
    def http_timeout(self) -> Tuple[float, float]:
        return (self.http_connect_timeout, self.http_read_timeout)


def load_settings(raw: Dict[str, Any]) -> TitleSyncSettings:
    try:
        return TitleSyncSettings.model_validate(raw or {})
    except ValidationError as e:
        raise ConfigError(f"Invalid titlesync settings: {e}") from e
