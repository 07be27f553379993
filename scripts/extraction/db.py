"""Database helpers: connection pool, upsert-returning batches, crawl tracking."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator, Optional, Sequence

import psycopg2
import psycopg2.extras
import psycopg2.pool

from scripts.extraction.config import DatabaseConfig

logger = logging.getLogger("extraction.db")


def dedupe_rows(
    columns: list[str], rows: Sequence[tuple], conflict_columns: list[str]
) -> list[tuple]:
    """Collapse rows sharing a conflict key, keeping the last one.

    PostgreSQL rejects an ON CONFLICT DO UPDATE statement that touches the
    same row twice.
    """
    idx = [columns.index(c) for c in conflict_columns]
    by_key: dict[tuple, tuple] = {}
    for row in rows:
        by_key[tuple(row[i] for i in idx)] = row
    return list(by_key.values())


def build_upsert_sql(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str],
    coalesce_columns: Sequence[str] = (),
) -> str:
    """INSERT ... ON CONFLICT DO UPDATE ... RETURNING * for execute_values.

    ``coalesce_columns`` are overwritten only by non-NULL values.
    ``synced_at`` is always refreshed, so the statement returns the existing
    row even when nothing else is volatile.
    """
    col_list = ", ".join(columns)
    conflict_list = ", ".join(conflict_columns)
    set_clauses = [f"{c} = EXCLUDED.{c}" for c in update_columns]
    set_clauses += [f"{c} = COALESCE(EXCLUDED.{c}, {table}.{c})" for c in coalesce_columns]
    set_clauses.append("synced_at = NOW()")
    return (
        f"INSERT INTO {table} ({col_list}) VALUES %s "
        f"ON CONFLICT ({conflict_list}) DO UPDATE SET {', '.join(set_clauses)} "
        f"RETURNING *"
    )


def build_where(where: dict[str, Any]) -> tuple[str, list[Any]]:
    """Translate ``{column: value}`` into a WHERE clause.

    ``None`` becomes IS NULL and list/tuple values become ``= ANY(...)``.
    """
    if not where:
        return "", []
    clauses: list[str] = []
    params: list[Any] = []
    for column, value in where.items():
        if value is None:
            clauses.append(f"{column} IS NULL")
        elif isinstance(value, (list, tuple)):
            clauses.append(f"{column} = ANY(%s)")
            params.append(list(value))
        else:
            clauses.append(f"{column} = %s")
            params.append(value)
    return " WHERE " + " AND ".join(clauses), params


class Database:
    """Thin wrapper around a ThreadedConnectionPool with upsert helpers."""

    def __init__(self, config: DatabaseConfig) -> None:
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=config.min_connections,
            maxconn=config.max_connections,
            dsn=config.url,
        )

    def close(self) -> None:
        self._pool.closeall()

    @contextmanager
    def connection(self) -> Generator:
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Generator:
        """Yield a dict cursor inside an auto-commit/rollback transaction."""
        with self.connection() as conn:
            try:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def upsert_returning(
        self,
        table: str,
        columns: list[str],
        rows: Sequence[tuple],
        conflict_columns: list[str],
        update_columns: list[str],
        coalesce_columns: Sequence[str] = (),
    ) -> list[dict[str, Any]]:
        """Bulk upsert and return the persisted rows (with surrogate ids).

        Concurrent writers converge on one row per conflict key because the
        unique index arbitrates the insert; volatile columns are last-write-wins.
        """
        if not rows:
            return []
        rows = dedupe_rows(columns, rows, conflict_columns)
        sql = build_upsert_sql(
            table, columns, conflict_columns, update_columns, coalesce_columns
        )
        with self.transaction() as cur:
            result = psycopg2.extras.execute_values(
                cur, sql, rows, page_size=max(len(rows), 1), fetch=True
            )
        return [dict(r) for r in result]

    def select(
        self,
        table: str,
        where: Optional[dict[str, Any]] = None,
        order_by: str = "id",
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        clause, params = build_where(where or {})
        sql = f"SELECT * FROM {table}{clause} ORDER BY {order_by}"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)
        with self.transaction() as cur:
            cur.execute(sql, params)
            return [dict(r) for r in cur.fetchall()]

    def update(
        self, table: str, values: dict[str, Any], where: dict[str, Any]
    ) -> int:
        """UPDATE ``values`` on rows matching ``where``. Returns rowcount."""
        if not values:
            return 0
        set_clause = ", ".join(f"{c} = %s" for c in values)
        clause, params = build_where(where)
        sql = f"UPDATE {table} SET {set_clause}, synced_at = NOW(){clause}"
        with self.transaction() as cur:
            cur.execute(sql, list(values.values()) + params)
            return cur.rowcount

    # ------------------------------------------------------------------
    # Crawl tracking
    # ------------------------------------------------------------------

    def record_crawl_start(
        self,
        tenant_id: int,
        user_id: str,
        repository_id: int,
        since: Optional[datetime],
        until: Optional[datetime],
    ) -> int:
        """Insert a crawl_instances row. Returns the crawl id."""
        with self.transaction() as cur:
            cur.execute(
                """INSERT INTO crawl_instances
                   (tenant_id, user_id, repository_id, since, until)
                   VALUES (%s, %s, %s, %s, %s)
                   RETURNING id""",
                (tenant_id, user_id, repository_id, since, until),
            )
            return cur.fetchone()["id"]

    def record_crawl_event(
        self,
        tenant_id: int,
        crawl_id: int,
        namespace: str,
        detail: str,
        data: Optional[dict] = None,
    ) -> None:
        """Append a crawl_events row (crawlInfo, crawlComplete, crawlFailed)."""
        with self.transaction() as cur:
            cur.execute(
                """INSERT INTO crawl_events
                   (tenant_id, crawl_id, event_namespace, event_detail, data)
                   VALUES (%s, %s, %s, %s, %s)""",
                (
                    tenant_id,
                    crawl_id,
                    namespace,
                    detail,
                    psycopg2.extras.Json(data or {}),
                ),
            )

    def get_recent_crawls(self, tenant_id: int, limit: int = 10) -> list[dict[str, Any]]:
        """Fetch recent crawls with their completion/failure counts."""
        with self.transaction() as cur:
            cur.execute(
                """SELECT ci.id, ci.repository_id, ci.user_id, ci.started_at,
                          ci.since, ci.until,
                          COUNT(*) FILTER (WHERE ce.event_detail = 'crawlComplete') AS completed,
                          COUNT(*) FILTER (WHERE ce.event_detail = 'crawlFailed') AS failed
                   FROM crawl_instances ci
                   LEFT JOIN crawl_events ce ON ce.crawl_id = ci.id
                   WHERE ci.tenant_id = %s
                   GROUP BY ci.id
                   ORDER BY ci.started_at DESC LIMIT %s""",
                (tenant_id, limit),
            )
            return [dict(r) for r in cur.fetchall()]
