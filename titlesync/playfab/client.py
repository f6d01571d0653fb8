from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from titlesync.runtime.protocol import SyncResult
from titlesync.utils import clamp_int, utc_now

from .config import TitleSyncSettings
from .constants import (
    CATALOG_CATEGORY,
    ENDPOINT_GET_CATALOG_ITEMS,
    ENDPOINT_GET_CHAR_DATA,
    ENDPOINT_GET_CHAR_STATS,
    ENDPOINT_GET_INVENTORY_ITEMS,
    ENDPOINT_GET_LEADERBOARD,
    ENDPOINT_GET_PLAYER_STATS,
    ENDPOINT_GET_TITLE_DATA,
    ENDPOINT_GET_TITLE_NEWS,
    ENDPOINT_GET_USER_CHARS,
    ENDPOINT_GET_USER_DATA,
    LEADERBOARD_CATEGORY_PREFIX,
    LEADERBOARD_MAX_RESULTS,
    LEADERBOARD_MIN_RESULTS,
    NEWS_TABLE,
)
from .errors import AuthError, MalformedDocumentError, RemoteApiError, StorageError, TransportError
from .events import warn
from .http import PlayFabApi
from .ledger import CallLogEntry
from .normalization import normalize_endpoint
from .schema_registry import SchemaRegistry
from .staleness import StalenessOracle
from .synchronizer import DynamicTableSynchronizer

logger = logging.getLogger(__name__)

# Failures that leave the cache serving whatever it already has.
REFRESH_ERRORS = (TransportError, RemoteApiError, AuthError, StorageError)

Row = Dict[str, Any]


class TitleDataCache:
    """
    Read-through cache over the PlayFab Client API.

    Every cached read follows the same steps: ask the staleness oracle, refresh
    and sync if needed, then answer from the store. A failed refresh is logged,
    kept on `last_error`, and the read serves stored rows (possibly none).
    """

    def __init__(
        self,
        api: PlayFabApi,
        backend: Any,
        *,
        settings: Optional[TitleSyncSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.api = api
        self.backend = backend
        self.settings = settings or TitleSyncSettings()
        self.ledger = api.ledger
        self.registry = SchemaRegistry(backend)
        self.synchronizer = DynamicTableSynchronizer(backend, self.registry, prefix=self.settings.table_prefix)
        self.oracle = StalenessOracle(self.ledger, clock=clock)

        self.last_error: Optional[Exception] = None
        self.last_sync: Optional[SyncResult] = None
        self._bootstrapped = False

    # -----------------------------
    # Setup / maintenance
    # -----------------------------
    def bootstrap(self) -> None:
        """Create the ledger and news tables if missing."""
        self.backend.ensure_core_tables()
        self._bootstrapped = True

    def _ensure_bootstrapped(self) -> None:
        if not self._bootstrapped:
            self.bootstrap()

    def trim_ledger(self, retention_days: Optional[int] = None) -> int:
        self._ensure_bootstrapped()
        days = self.settings.ledger_retention_days if retention_days is None else retention_days
        return self.ledger.trim(days)

    def recent_calls(self, *, endpoint: Optional[str] = None, limit: int = 25) -> List[CallLogEntry]:
        self._ensure_bootstrapped()
        return self.ledger.entries(endpoint=endpoint, limit=limit)

    def calls_per_second(self, window_minutes: int = 2) -> float:
        self._ensure_bootstrapped()
        return self.ledger.calls_per_second(window_minutes)

    # -----------------------------
    # Staleness + refresh plumbing
    # -----------------------------
    def _is_stale(self, endpoint: str, ttl_hours: float) -> bool:
        try:
            return self.oracle.is_stale(endpoint, ttl_hours)
        except StorageError as e:
            logger.warning(f"Staleness check failed for {endpoint}, treating as stale: {e}")
            return True

    def _refresh(self, what: str, fn: Callable[[], Optional[SyncResult]]) -> Optional[SyncResult]:
        try:
            result = fn()
        except REFRESH_ERRORS as e:
            self.last_error = e
            logger.warning(f"Refresh of {what} failed, serving stored data: {type(e).__name__}: {e}")
            warn("cache.refresh_failed", stream=what, error_type=type(e).__name__, error=str(e)[:500])
            return None
        self.last_error = None
        if result is not None:
            self.last_sync = result
        return result

    def _sync(self, documents: Dict[str, Any]) -> SyncResult:
        return self.synchronizer.sync(documents, ignore=self.settings.ignore_categories or None)

    # -----------------------------
    # Title data
    # -----------------------------
    def get_title_data(
        self,
        keys: Union[str, Iterable[str]],
        *,
        ttl_hours: Optional[float] = None,
        force: bool = False,
    ) -> Dict[str, Row]:
        """
        Cached rows for the given title-data keys, merged as {data_id: row}.
        A key with no table yet forces a refresh; the table is created empty
        so a key the service does not know stops forcing refreshes.
        """
        self._ensure_bootstrapped()
        wanted = self._wanted_keys(keys)
        ttl = self.settings.title_data_ttl_hours if ttl_hours is None else ttl_hours

        for key in wanted:
            try:
                table = self.synchronizer.table_for(key)
                if not self.registry.table_exists(table):
                    self.registry.ensure_table(table)
                    force = True
            except (MalformedDocumentError, StorageError) as e:
                logger.warning(f"Cannot prepare table for {key}: {e}")

        if force or self._is_stale(ENDPOINT_GET_TITLE_DATA, ttl):

            def _fetch() -> SyncResult:
                body = {"Keys": wanted} if wanted else {}
                data = self.api.call(ENDPOINT_GET_TITLE_DATA, body)
                return self._sync(data.get("Data") or {})

            self._refresh("title_data", _fetch)

        return self.synchronizer.get_cached(wanted)

    def _wanted_keys(self, keys: Union[str, Iterable[str]]) -> List[str]:
        if isinstance(keys, str):
            keys = [keys]
        skip = self.settings.ignore_categories
        out: List[str] = []
        for k in keys or []:
            k = str(k).strip()
            if not k or k in out:
                continue
            if skip and self.synchronizer.ignores(k, skip):
                continue
            out.append(k)
        return out

    # -----------------------------
    # News
    # -----------------------------
    def get_news(self, count: int = 10, *, ttl_hours: Optional[float] = None) -> List[Row]:
        self._ensure_bootstrapped()
        n = max(1, clamp_int(count, default=10, lo=1, hi=10_000))
        ttl = self.settings.news_ttl_hours if ttl_hours is None else ttl_hours

        if self._is_stale(ENDPOINT_GET_TITLE_NEWS, ttl):

            def _fetch() -> None:
                data = self.api.call(ENDPOINT_GET_TITLE_NEWS, {"Count": n})
                self._store_news(data.get("News") or [])
                return None

            self._refresh("news", _fetch)

        return self.backend.select_rows(NEWS_TABLE, order_by="news_timestamp", descending=True, limit=n)

    def _store_news(self, posts: List[Any]) -> int:
        stored = 0
        for post in posts:
            if not isinstance(post, dict) or not post.get("NewsId"):
                continue
            row = {
                "news_id": str(post["NewsId"]),
                "news_title": post.get("Title"),
                "news_body": post.get("Body"),
                "news_timestamp": post.get("Timestamp") or None,
            }
            try:
                self.backend.upsert(NEWS_TABLE, "news_id", row)
                stored += 1
            except StorageError as e:
                logger.warning(f"Could not store news post {row['news_id']}: {e}")
                warn("sync.record_failed", stream=NEWS_TABLE, record_id=row["news_id"], error=str(e)[:500])
        return stored

    # -----------------------------
    # Leaderboards
    # -----------------------------
    @staticmethod
    def leaderboard_category(statistic: str) -> str:
        return f"{LEADERBOARD_CATEGORY_PREFIX}{statistic}"

    def get_leaderboard_page(
        self,
        statistic: str,
        *,
        max_results: int = LEADERBOARD_MIN_RESULTS,
        start_position: int = 0,
        ttl_hours: Optional[float] = None,
    ) -> List[Row]:
        """
        One page of a leaderboard, ordered by position. Each page has its own
        freshness; rows are stored keyed by position.
        """
        self._ensure_bootstrapped()
        size = clamp_int(
            max_results, default=LEADERBOARD_MIN_RESULTS, lo=LEADERBOARD_MIN_RESULTS, hi=LEADERBOARD_MAX_RESULTS
        )
        start = max(0, clamp_int(start_position, default=0, lo=0, hi=2**31 - 1))
        ttl = self.settings.leaderboard_ttl_hours if ttl_hours is None else ttl_hours
        category = self.leaderboard_category(statistic)
        qualifier = f"{statistic}:{start}:{size}"

        if self._is_stale(normalize_endpoint(ENDPOINT_GET_LEADERBOARD, qualifier), ttl):

            def _fetch() -> SyncResult:
                body = {"StatisticName": statistic, "MaxResultsCount": size, "StartPosition": start}
                data = self.api.call(ENDPOINT_GET_LEADERBOARD, body, qualifier=qualifier)
                entries = {
                    str(e["Position"]): e
                    for e in (data.get("Leaderboard") or [])
                    if isinstance(e, dict) and e.get("Position") is not None
                }
                result = self._sync({category: entries})
                gone = [rid for _, rid, _ in self._stored_positions(category, start, size) if rid not in entries]
                if gone:
                    removed = self.synchronizer.delete_records(category, gone)
                    logger.info(f"Leaderboard {statistic}: dropped {removed} positions no longer returned")
                return result

            self._refresh(f"leaderboard:{statistic}", _fetch)

        return [row for _, _, row in self._stored_positions(category, start, size)]

    def _stored_positions(self, category: str, start: int, size: int) -> List[Tuple[int, str, Row]]:
        page = []
        for rid, row in self.synchronizer.get_cached([category]).items():
            try:
                pos = int(rid)
            except ValueError:
                continue
            if start <= pos < start + size:
                page.append((pos, rid, row))
        return sorted(page, key=lambda p: p[0])

    def get_full_leaderboard(self, statistic: str, *, ttl_hours: Optional[float] = None) -> List[Row]:
        out: List[Row] = []
        start = 0
        while True:
            page = self.get_leaderboard_page(
                statistic, max_results=LEADERBOARD_MAX_RESULTS, start_position=start, ttl_hours=ttl_hours
            )
            out.extend(page)
            if len(page) < LEADERBOARD_MAX_RESULTS:
                break
            start += LEADERBOARD_MAX_RESULTS
        return out

    # -----------------------------
    # Catalog
    # -----------------------------
    def get_catalog(self, *, version: Optional[str] = None, ttl_hours: Optional[float] = None) -> Dict[str, Row]:
        self._ensure_bootstrapped()
        ttl = self.settings.catalog_ttl_hours if ttl_hours is None else ttl_hours
        endpoint = normalize_endpoint(ENDPOINT_GET_CATALOG_ITEMS, version or None)

        if self._is_stale(endpoint, ttl):

            def _fetch() -> SyncResult:
                body = {"CatalogVersion": version} if version else {}
                data = self.api.call(ENDPOINT_GET_CATALOG_ITEMS, body, qualifier=version or None)
                items = {
                    str(i["ItemId"]): i
                    for i in (data.get("Catalog") or [])
                    if isinstance(i, dict) and i.get("ItemId")
                }
                return self._sync({CATALOG_CATEGORY: items})

            self._refresh("catalog", _fetch)

        return self.synchronizer.get_cached([CATALOG_CATEGORY])

    # -----------------------------
    # Uncached player-context calls (errors propagate)
    # -----------------------------
    def get_player_statistics(self, playfab_id: Optional[str] = None) -> Dict[str, Any]:
        return self.api.call(ENDPOINT_GET_PLAYER_STATS, _player_body(playfab_id))

    def get_user_data(self, playfab_id: Optional[str] = None) -> Dict[str, Any]:
        return self.api.call(ENDPOINT_GET_USER_DATA, _player_body(playfab_id))

    def get_all_users_characters(self, playfab_id: Optional[str] = None) -> List[Dict[str, Any]]:
        data = self.api.call(ENDPOINT_GET_USER_CHARS, _player_body(playfab_id))
        return list(data.get("Characters") or [])

    def get_character_statistics(self, character_id: str) -> Dict[str, Any]:
        return self.api.call(ENDPOINT_GET_CHAR_STATS, {"CharacterId": character_id})

    def get_character_data(self, character_id: str) -> Dict[str, Any]:
        return self.api.call(ENDPOINT_GET_CHAR_DATA, {"CharacterId": character_id})

    def get_inventory(self) -> Dict[str, Any]:
        return self.api.call(ENDPOINT_GET_INVENTORY_ITEMS, {})


def _player_body(playfab_id: Optional[str]) -> Dict[str, Any]:
    # PlayFab defaults to the logged-in player when PlayFabId is omitted.
    return {"PlayFabId": playfab_id} if playfab_id else {}
