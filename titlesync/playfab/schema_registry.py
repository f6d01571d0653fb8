from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, TypeVar

from .constants import MAX_VARCHAR_WIDTH, PRIMARY_KEY_COLUMN, PRIMARY_KEY_WIDTH
from .errors import SchemaConflictError, StorageError
from .events import info, warn
from .normalization import check_identifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

# table -> column -> declared width (None = unbounded)
Catalogue = Dict[str, Dict[str, Optional[int]]]

# ensure_column outcomes
UNCHANGED = "unchanged"
ADDED = "added"
WIDENED = "widened"


def target_width(min_width: Optional[int]) -> Optional[int]:
    """None means the column has to be unbounded (TEXT)."""
    if min_width is None:
        return None
    w = int(min_width)
    if w > MAX_VARCHAR_WIDTH:
        return None
    return max(1, w)


def needs_widening(current: Optional[int], wanted: Optional[int]) -> bool:
    if current is None:
        return False
    if wanted is None:
        return True
    return current < wanted


class SchemaRegistry:
    """
    Cached view of which tables/columns exist and how wide they are.

    The catalogue is loaded lazily and only ever replaced wholesale by
    reload(): after every DDL statement, and once when a table lookup misses
    (another process may have created it).
    """

    def __init__(
        self,
        backend: Any,
        *,
        key_column: str = PRIMARY_KEY_COLUMN,
        key_width: int = PRIMARY_KEY_WIDTH,
    ):
        self.backend = backend
        self.key_column = key_column
        self.key_width = int(key_width)
        self._catalogue: Optional[Catalogue] = None

        self.tables_created = 0
        self.columns_added = 0
        self.columns_widened = 0

    # -----------------------------
    # Catalogue
    # -----------------------------
    @property
    def catalogue(self) -> Catalogue:
        if self._catalogue is None:
            self.reload()
        return self._catalogue or {}

    def reload(self) -> None:
        self._catalogue = self.backend.load_catalogue()
        logger.debug(f"Schema catalogue reloaded ({len(self._catalogue)} tables)")

    def counters(self) -> Dict[str, int]:
        return {
            "tables_created": self.tables_created,
            "columns_added": self.columns_added,
            "columns_widened": self.columns_widened,
        }

    # -----------------------------
    # Lookups
    # -----------------------------
    def table_exists(self, table: str) -> bool:
        if table in self.catalogue:
            return True
        self.reload()
        return table in self.catalogue

    def column_exists(self, table: str, column: str) -> bool:
        if not self.table_exists(table):
            return False
        return column in self.catalogue[table]

    def column_width(self, table: str, column: str) -> Optional[int]:
        """Declared width, None for unbounded. Raises StorageError for an unknown column."""
        if not self.column_exists(table, column):
            raise StorageError(f"unknown column {table}.{column}")
        return self.catalogue[table][column]

    def columns(self, table: str) -> Dict[str, Optional[int]]:
        if not self.table_exists(table):
            return {}
        return dict(self.catalogue[table])

    # -----------------------------
    # DDL
    # -----------------------------
    def ensure_table(self, table: str) -> bool:
        """Create `table` with only the primary key column. Returns True if this call created it."""
        check_identifier(table)
        if self.table_exists(table):
            return False

        def _create() -> bool:
            if table in self.catalogue:
                return False
            self.backend.create_table(table, self.key_column, self.key_width)
            self.reload()
            return True

        created = self._with_conflict_retry(f"create {table}", _create)
        if created:
            self.tables_created += 1
            logger.info(f"Created table {table}")
            info("schema.table_created", stream=table, table=table)
        return created

    def ensure_column(self, table: str, column: str, min_width: Optional[int]) -> str:
        """
        Make sure `table.column` exists and holds at least `min_width`
        characters (None = unbounded). Never narrows a column.
        Returns one of UNCHANGED / ADDED / WIDENED.
        """
        check_identifier(column)
        wanted = target_width(min_width)
        if not self.table_exists(table):
            raise StorageError(f"table {table} does not exist")

        def _ensure() -> str:
            action = UNCHANGED
            cols = self.catalogue.get(table) or {}
            if column not in cols:
                self.backend.add_column(table, column, wanted)
                self.reload()
                action = ADDED
                cols = self.catalogue.get(table) or {}
                if column not in cols:
                    raise StorageError(f"column {table}.{column} missing after ADD COLUMN")
            # ADD COLUMN IF NOT EXISTS may have lost a race to a narrower column.
            if needs_widening(cols[column], wanted):
                changed = self.backend.widen_column(table, column, wanted)
                self.reload()
                if changed and action == UNCHANGED:
                    action = WIDENED
            return action

        action = self._with_conflict_retry(f"column {table}.{column}", _ensure)
        if action == ADDED:
            self.columns_added += 1
            info("schema.column_added", stream=table, table=table, column=column, width=wanted)
        elif action == WIDENED:
            self.columns_widened += 1
            info("schema.column_widened", stream=table, table=table, column=column, width=wanted)
        return action

    def _with_conflict_retry(self, what: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except SchemaConflictError as e:
            logger.warning(f"Schema conflict on {what}, reloading and retrying once: {e}")
            warn("schema.conflict_retry", op=what, error=str(e)[:500])
            self.reload()
            return fn()
