from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, Mapping, Optional, Pattern, Union

from titlesync.runtime.protocol import RecordFailure, SyncResult

from .constants import DEFAULT_TABLE_PREFIX
from .errors import MalformedDocumentError, StorageError
from .events import info, records, warn
from .normalization import normalize_identifier, parse_category_content, table_name_for, to_storable_text
from .schema_registry import SchemaRegistry

logger = logging.getLogger(__name__)

Documents = Mapping[str, Any]
Row = Dict[str, Any]


def _compile(ignore: Union[str, Pattern[str], None]) -> Optional[Pattern[str]]:
    if ignore is None or ignore == "":
        return None
    if isinstance(ignore, str):
        return re.compile(ignore)
    return ignore


class DynamicTableSynchronizer:
    """
    Writes a document tree {category: {record_id: {field: value}}} into one
    table per category, growing the schema one field at a time right before
    the write that needs it.

    Each record is upserted in its own transaction; a failing record is
    reported in the SyncResult and the batch moves on.
    """

    def __init__(self, backend: Any, registry: SchemaRegistry, *, prefix: str = DEFAULT_TABLE_PREFIX):
        self.backend = backend
        self.registry = registry
        self.prefix = prefix

    @property
    def key_column(self) -> str:
        return self.registry.key_column

    def table_for(self, category: str) -> str:
        return table_name_for(category, self.prefix)

    @staticmethod
    def ignores(category: str, ignore: Union[str, Pattern[str], None]) -> bool:
        skip = _compile(ignore)
        return skip is not None and skip.search(category) is not None

    # -----------------------------
    # Write path
    # -----------------------------
    def sync(self, documents: Documents, *, ignore: Union[str, Pattern[str], None] = None) -> SyncResult:
        skip = _compile(ignore)
        before = self.registry.counters()
        result = SyncResult()

        for category, content in (documents or {}).items():
            category = str(category)
            if self.ignores(category, skip):
                logger.debug(f"Skipping ignored category {category}")
                continue
            result.categories.append(category)
            self._sync_category(category, content, result)

        after = self.registry.counters()
        result.tables_created = after["tables_created"] - before["tables_created"]
        result.columns_added = after["columns_added"] - before["columns_added"]
        result.columns_widened = after["columns_widened"] - before["columns_widened"]

        info(
            "sync.done",
            categories=len(result.categories),
            upserted=result.upserted,
            failed=result.failed,
            skipped_fields=len(result.warnings),
        )
        return result

    def _sync_category(self, category: str, content: Any, result: SyncResult) -> None:
        try:
            table = self.table_for(category)
            rows = parse_category_content(content)
            self.registry.ensure_table(table)
        except (MalformedDocumentError, StorageError) as e:
            self._fail(result, category, None, e)
            return

        written = 0
        for record_id, fields in rows.items():
            try:
                self._sync_record(table, category, record_id, fields, result)
                written += 1
            except (MalformedDocumentError, StorageError) as e:
                self._fail(result, category, record_id, e)

        result.upserted += written
        records(table, written)

    def _sync_record(self, table: str, category: str, record_id: str, fields: Any, result: SyncResult) -> None:
        if not isinstance(fields, Mapping):
            raise MalformedDocumentError(f"record is a {type(fields).__name__}, expected an object of fields")

        key = self.key_column
        self.registry.ensure_column(table, key, len(record_id))
        row: Row = {key: record_id}

        for field_name, value in fields.items():
            column = normalize_identifier(str(field_name))
            try:
                if not column:
                    raise MalformedDocumentError(f"field {field_name!r} has no usable column name")
                if column == key:
                    raise MalformedDocumentError(f"field {field_name!r} collides with the {key} key column")
                text = to_storable_text(value)
                self.registry.ensure_column(table, column, len(text) if text is not None else 0)
            except MalformedDocumentError as e:
                self._skip_field(result, category, record_id, str(field_name), e)
                continue
            row[column] = text

        self.backend.upsert(table, key, row)

    # -----------------------------
    # Read path
    # -----------------------------
    def get_cached(self, categories: Any) -> Dict[str, Row]:
        """
        All stored rows for the given categories, merged into one
        {record_id: row} mapping (later categories win on id clashes).
        Categories without a table yet contribute nothing.
        """
        if isinstance(categories, str):
            categories = [categories]

        out: Dict[str, Row] = {}
        for category in categories or []:
            try:
                table = self.table_for(str(category))
            except MalformedDocumentError:
                continue
            if not self.registry.table_exists(table):
                continue
            for row in self.backend.select_rows(table):
                rid = row.get(self.key_column)
                if rid is not None:
                    out[str(rid)] = row
        return out

    def delete_records(self, category: str, record_ids: Iterable[str]) -> int:
        """Drop stored records of a category; a category without a table has nothing to drop."""
        table = self.table_for(category)
        if not self.registry.table_exists(table):
            return 0
        return self.backend.delete_rows(table, self.key_column, record_ids)

    # -----------------------------
    # Reporting
    # -----------------------------
    def _fail(self, result: SyncResult, category: str, record_id: Optional[str], e: Exception) -> None:
        result.failures.append(
            RecordFailure(category=category, record_id=record_id, error=str(e), error_type=type(e).__name__)
        )
        where = f"{category}/{record_id}" if record_id is not None else category
        logger.warning(f"Sync failed for {where}: {type(e).__name__}: {e}")
        warn("sync.record_failed", stream=category, record_id=record_id, error_type=type(e).__name__, error=str(e)[:500])

    def _skip_field(self, result: SyncResult, category: str, record_id: str, field_name: str, e: Exception) -> None:
        msg = f"{category}/{record_id}.{field_name}: {e}"
        result.warnings.append(msg)
        logger.warning(f"Skipped field {msg}")
        warn("sync.field_skipped", stream=category, record_id=record_id, field=field_name, error=str(e)[:500])
