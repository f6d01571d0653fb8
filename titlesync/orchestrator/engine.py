from __future__ import annotations

import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, Optional

import requests

from titlesync.playfab.auth import provider_for, strategy_from_config
from titlesync.playfab.client import TitleDataCache
from titlesync.playfab.config import TitleSyncSettings
from titlesync.playfab.errors import ConfigError
from titlesync.playfab.http import PlayFabApi, PlayFabTransport
from titlesync.playfab.ledger import CallLedger
from titlesync.playfab.ratelimit import AdaptiveRateLimiter
from titlesync.storage.postgres import PostgresBackend
from titlesync.utils import utc_now

from .config import load_config, settings_from_config
from .secrets import get_playfab_source, get_postgres_credentials


def build_api(
    settings: TitleSyncSettings,
    backend: Any,
    source: Dict[str, Any],
    *,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], datetime] = utc_now,
    with_login: bool = True,
) -> PlayFabApi:
    """Ledger -> limiter -> transport -> gated API, with the configured login attached."""
    ledger = CallLedger(backend, caller=settings.caller, freshness=settings.freshness_mode)
    limiter = AdaptiveRateLimiter(ledger, ceiling_per_2min=settings.calls_per_2min, sleep=sleep)
    transport = PlayFabTransport(str(source["title_id"]), session=session, timeout=settings.http_timeout)
    api = PlayFabApi(transport, limiter, ledger)
    if with_login:
        provider_for(api, strategy_from_config(source), clock=clock)
    return api


def build_cache(
    settings: TitleSyncSettings,
    backend: Any,
    source: Dict[str, Any],
    **kwargs: Any,
) -> TitleDataCache:
    api = build_api(settings, backend, source, **kwargs)
    return TitleDataCache(api, backend, settings=settings, clock=kwargs.get("clock", utc_now))


def open_backend(settings: TitleSyncSettings) -> PostgresBackend:
    creds = get_postgres_credentials()
    if not creds:
        raise ConfigError("No Postgres credentials configured. Run `titlesync configure` first.")
    return PostgresBackend(creds, schema=settings.db_schema)


@contextmanager
def open_cache(cfg: Optional[Dict[str, Any]] = None) -> Iterator[TitleDataCache]:
    settings = settings_from_config(cfg if cfg is not None else load_config())
    source = get_playfab_source()
    backend = open_backend(settings)
    try:
        yield build_cache(settings, backend, source)
    finally:
        backend.close()
