from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional

import psycopg2
import psycopg2.extras
from psycopg2 import errors as pg_errors
from psycopg2 import sql

from titlesync.playfab.constants import LEDGER_TABLE, MAX_VARCHAR_WIDTH, NEWS_TABLE
from titlesync.playfab.errors import SchemaConflictError, StorageError

logger = logging.getLogger(__name__)

Catalogue = Dict[str, Dict[str, Optional[int]]]

_CONFLICT_ERRORS = (
    pg_errors.DuplicateTable,
    pg_errors.DuplicateColumn,
    pg_errors.DuplicateObject,
    pg_errors.DeadlockDetected,
    pg_errors.LockNotAvailable,
)

_TEXTUAL_TYPES = {"character varying", "character"}


def column_type(width: Optional[int]) -> sql.Composable:
    if width is None or int(width) > MAX_VARCHAR_WIDTH:
        return sql.SQL("TEXT")
    return sql.SQL("VARCHAR({})").format(sql.SQL(str(max(1, int(width)))))


def catalogue_width(data_type: Optional[str], max_length: Optional[int]) -> Optional[int]:
    """
    Width as the schema registry sees it. None means "no declared limit":
    TEXT, VARCHAR without a length, and non-character columns.
    """
    if (data_type or "").lower() in _TEXTUAL_TYPES and max_length is not None:
        return int(max_length)
    return None


def translate_error(e: psycopg2.Error, *, ddl: bool = False) -> StorageError:
    if isinstance(e, _CONFLICT_ERRORS):
        return SchemaConflictError(f"{type(e).__name__}: {str(e).strip()}")
    # Two sessions racing CREATE TABLE IF NOT EXISTS collide on pg_type.
    if ddl and isinstance(e, pg_errors.UniqueViolation):
        return SchemaConflictError(f"{type(e).__name__}: {str(e).strip()}")
    return StorageError(f"{type(e).__name__}: {str(e).strip()}")


def _connect(pg_creds: Dict[str, Any]):
    if pg_creds.get("dsn"):
        return psycopg2.connect(pg_creds["dsn"], connect_timeout=int(pg_creds.get("connect_timeout", 5)))
    return psycopg2.connect(
        host=pg_creds["host"],
        port=int(pg_creds["port"]),
        dbname=pg_creds["database"],
        user=pg_creds["username"],
        password=pg_creds.get("password", ""),
        connect_timeout=int(pg_creds.get("connect_timeout", 5)),
    )


class PostgresBackend:
    """
    Relational store for the title-data cache.

    One lazily opened connection per process; every public operation is its
    own transaction (commit on success, rollback on error), so a failed
    upsert never takes neighbouring records down with it.
    """

    def __init__(self, pg_creds: Dict[str, Any], *, schema: str = "public"):
        self.pg_creds = dict(pg_creds or {})
        self.schema = schema or "public"
        self._conn = None

    # -----------------------------
    # Connection handling
    # -----------------------------
    def _connection(self):
        if self._conn is not None and not self._conn.closed:
            return self._conn
        try:
            self._conn = _connect(self.pg_creds)
        except psycopg2.Error as e:
            self._conn = None
            raise StorageError(f"could not connect to Postgres: {str(e).strip()}") from e
        return self._conn

    def close(self) -> None:
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
        self._conn = None

    @contextmanager
    def _cursor(self, *, dict_rows: bool = False, ddl: bool = False) -> Iterator[Any]:
        conn = self._connection()
        factory = psycopg2.extras.RealDictCursor if dict_rows else None
        try:
            with conn.cursor(cursor_factory=factory) as cur:
                yield cur
            conn.commit()
        except psycopg2.Error as e:
            if not conn.closed:
                conn.rollback()
            if isinstance(e, (psycopg2.OperationalError, psycopg2.InterfaceError)):
                self.close()
            raise translate_error(e, ddl=ddl) from e
        except Exception:
            if not conn.closed:
                conn.rollback()
            raise

    def _table(self, table: str) -> sql.Composable:
        return sql.Identifier(self.schema, table)

    def ping(self) -> bool:
        try:
            with self._cursor() as cur:
                cur.execute("SELECT 1;")
                return cur.fetchone()[0] == 1
        except StorageError:
            return False

    def server_now(self) -> datetime:
        with self._cursor() as cur:
            cur.execute("SELECT now();")
            return cur.fetchone()[0]

    # -----------------------------
    # Core tables
    # -----------------------------
    def ensure_core_tables(self) -> None:
        ledger = self._table(LEDGER_TABLE)
        news = self._table(NEWS_TABLE)
        ddl = sql.SQL(
            """
            CREATE TABLE IF NOT EXISTS {ledger} (
              call_id BIGSERIAL PRIMARY KEY,
              call_endpoint VARCHAR(255) NOT NULL,
              call_client VARCHAR(64),
              call_time TIMESTAMPTZ NOT NULL DEFAULT now(),
              status_code SMALLINT
            );

            CREATE INDEX IF NOT EXISTS {idx_endpoint}
              ON {ledger} (call_endpoint, call_time DESC);

            CREATE INDEX IF NOT EXISTS {idx_time}
              ON {ledger} (call_time);

            CREATE TABLE IF NOT EXISTS {news} (
              news_id VARCHAR(64) PRIMARY KEY,
              news_title VARCHAR(256),
              news_body TEXT,
              news_timestamp TIMESTAMPTZ
            );
            """
        ).format(
            ledger=ledger,
            news=news,
            idx_endpoint=sql.Identifier(f"idx_{LEDGER_TABLE}_endpoint_time"),
            idx_time=sql.Identifier(f"idx_{LEDGER_TABLE}_time"),
        )
        with self._cursor(ddl=True) as cur:
            cur.execute(ddl)

    # -----------------------------
    # Catalogue + DDL
    # -----------------------------
    def load_catalogue(self) -> Catalogue:
        with self._cursor(dict_rows=True) as cur:
            cur.execute(
                """
                SELECT table_name, column_name, data_type, character_maximum_length
                FROM information_schema.columns
                WHERE table_schema = %s
                ORDER BY table_name, ordinal_position;
                """,
                (self.schema,),
            )
            rows = cur.fetchall() or []

        out: Catalogue = {}
        for r in rows:
            out.setdefault(str(r["table_name"]), {})[str(r["column_name"])] = catalogue_width(
                r.get("data_type"), r.get("character_maximum_length")
            )
        return out

    def create_table(self, table: str, key_column: str, key_width: int) -> None:
        stmt = sql.SQL("CREATE TABLE IF NOT EXISTS {} ({} {} NOT NULL PRIMARY KEY);").format(
            self._table(table), sql.Identifier(key_column), column_type(key_width)
        )
        with self._cursor(ddl=True) as cur:
            cur.execute(stmt)

    def add_column(self, table: str, column: str, width: Optional[int]) -> None:
        stmt = sql.SQL("ALTER TABLE {} ADD COLUMN IF NOT EXISTS {} {} NULL;").format(
            self._table(table), sql.Identifier(column), column_type(width)
        )
        with self._cursor(ddl=True) as cur:
            cur.execute(stmt)

    def widen_column(self, table: str, column: str, width: Optional[int]) -> bool:
        """
        Grow a column to at least `width` (None = TEXT). Returns False when the
        stored column is already wide enough.

        The width check runs under an exclusive table lock so two sessions
        widening the same column can never shrink it.
        """
        with self._cursor(ddl=True) as cur:
            cur.execute(sql.SQL("LOCK TABLE {} IN ACCESS EXCLUSIVE MODE;").format(self._table(table)))
            cur.execute(
                """
                SELECT data_type, character_maximum_length
                FROM information_schema.columns
                WHERE table_schema = %s AND table_name = %s AND column_name = %s;
                """,
                (self.schema, table, column),
            )
            row = cur.fetchone()
            if row is None:
                raise StorageError(f"column {table}.{column} does not exist")
            current = catalogue_width(row[0], row[1])
            if current is None:
                return False
            if width is not None and current >= int(width):
                return False
            cur.execute(
                sql.SQL("ALTER TABLE {} ALTER COLUMN {} TYPE {};").format(
                    self._table(table), sql.Identifier(column), column_type(width)
                )
            )
            return True

    # -----------------------------
    # Rows
    # -----------------------------
    def upsert(self, table: str, key_column: str, row: Dict[str, Optional[str]]) -> None:
        if key_column not in row:
            raise StorageError(f"row for {table} is missing {key_column}")
        columns = [key_column] + [c for c in row.keys() if c != key_column]
        values = [row[c] for c in columns]
        updates = [c for c in columns if c != key_column]

        if updates:
            conflict = sql.SQL("DO UPDATE SET {}").format(
                sql.SQL(", ").join(
                    sql.SQL("{} = EXCLUDED.{}").format(sql.Identifier(c), sql.Identifier(c)) for c in updates
                )
            )
        else:
            conflict = sql.SQL("DO NOTHING")

        stmt = sql.SQL("INSERT INTO {} ({}) VALUES ({}) ON CONFLICT ({}) {};").format(
            self._table(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            sql.SQL(", ").join(sql.Placeholder() for _ in columns),
            sql.Identifier(key_column),
            conflict,
        )
        with self._cursor() as cur:
            cur.execute(stmt, values)

    def delete_rows(self, table: str, key_column: str, ids: Iterable[str]) -> int:
        ids = [str(i) for i in ids]
        if not ids:
            return 0
        stmt = sql.SQL("DELETE FROM {} WHERE {} = ANY(%s);").format(self._table(table), sql.Identifier(key_column))
        with self._cursor() as cur:
            cur.execute(stmt, (ids,))
            return int(cur.rowcount or 0)

    def select_rows(
        self,
        table: str,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        parts = [sql.SQL("SELECT * FROM {}").format(self._table(table))]
        params: List[Any] = []
        if order_by:
            parts.append(
                sql.SQL("ORDER BY {} {}").format(sql.Identifier(order_by), sql.SQL("DESC" if descending else "ASC"))
            )
        if limit is not None:
            parts.append(sql.SQL("LIMIT %s"))
            params.append(int(limit))
        with self._cursor(dict_rows=True) as cur:
            cur.execute(sql.SQL(" ").join(parts), params)
            return [dict(r) for r in (cur.fetchall() or [])]

    # -----------------------------
    # Call ledger
    # -----------------------------
    def insert_call(self, endpoint: str, caller: str, status_code: int) -> None:
        stmt = sql.SQL("INSERT INTO {} (call_endpoint, call_client, status_code) VALUES (%s, %s, %s);").format(
            self._table(LEDGER_TABLE)
        )
        with self._cursor() as cur:
            cur.execute(stmt, (endpoint, caller, int(status_code)))

    def last_call_time(self, endpoint: str, *, status_code: Optional[int] = None) -> Optional[datetime]:
        where = sql.SQL("call_endpoint = %s")
        params: List[Any] = [endpoint]
        if status_code is not None:
            where = sql.SQL("call_endpoint = %s AND status_code = %s")
            params.append(int(status_code))
        stmt = sql.SQL("SELECT call_time FROM {} WHERE {} ORDER BY call_time DESC LIMIT 1;").format(
            self._table(LEDGER_TABLE), where
        )
        with self._cursor() as cur:
            cur.execute(stmt, params)
            row = cur.fetchone()
        return row[0] if row else None

    def count_calls_since(self, seconds: int) -> int:
        stmt = sql.SQL(
            "SELECT COUNT(*) FROM {} WHERE call_time > now() - make_interval(secs => %s);"
        ).format(self._table(LEDGER_TABLE))
        with self._cursor() as cur:
            cur.execute(stmt, (int(seconds),))
            return int(cur.fetchone()[0] or 0)

    def delete_calls_older_than(self, days: int) -> int:
        stmt = sql.SQL("DELETE FROM {} WHERE call_time < now() - make_interval(days => %s);").format(
            self._table(LEDGER_TABLE)
        )
        with self._cursor() as cur:
            cur.execute(stmt, (int(days),))
            return int(cur.rowcount or 0)

    def recent_calls(self, *, limit: int = 25, endpoint: Optional[str] = None) -> List[Dict[str, Any]]:
        where = sql.SQL("")
        params: List[Any] = []
        if endpoint:
            where = sql.SQL("WHERE call_endpoint = %s")
            params.append(endpoint)
        params.append(int(limit))
        stmt = sql.SQL(
            """
            SELECT call_endpoint, call_client, call_time, status_code
            FROM {}
            {}
            ORDER BY call_time DESC
            LIMIT %s;
            """
        ).format(self._table(LEDGER_TABLE), where)
        with self._cursor(dict_rows=True) as cur:
            cur.execute(stmt, params)
            return [dict(r) for r in (cur.fetchall() or [])]
