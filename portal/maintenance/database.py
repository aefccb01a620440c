"""Dialect-specific database maintenance (PostgreSQL and SQLite).

Both backends expose the same coroutine API so the optimizer never branches
on the dialect. Statements that cannot run inside a transaction (VACUUM,
REINDEX on PostgreSQL) go through an AUTOCOMMIT connection.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Optional, Sequence

from sqlalchemy import Index, inspect, text

from portal.core.db import Database
from portal.domain.analytics_models import AGGREGATION_INDEXES, DailyNewsStats, ViewEvent

logger = logging.getLogger(__name__)

KNOWN_TABLES = ("news", "view_events", "share_events", "daily_news_stats")
HIGH_WRITE_TABLES = ("view_events", "share_events")
MONTHLY_VIEW = "monthly_stats"


def aggregation_indexes() -> list[Index]:
    """The rollup indexes declared on the analytics tables."""
    wanted = set(AGGREGATION_INDEXES)
    return [
        index
        for table in (DailyNewsStats.__table__, ViewEvent.__table__)
        for index in table.indexes
        if index.name in wanted
    ]


def fragmentation_percent(data_size: float, storage_size: float) -> float:
    """Share of allocated storage not holding live data, two decimals."""
    if not storage_size:
        return 0.0
    return round((storage_size - data_size) / storage_size * 100, 2)


@dataclass(frozen=True)
class SlowQuery:
    query: str
    duration_ms: float
    state: Optional[str] = None


@dataclass(frozen=True)
class IndexUsage:
    table: str
    index: str
    scans: Optional[int]
    primary: bool = False

    @property
    def unused(self) -> bool:
        return self.scans == 0 and not self.primary


@dataclass(frozen=True)
class StorageStats:
    table: str
    data_size: int
    storage_size: int

    @property
    def fragmentation(self) -> float:
        return fragmentation_percent(self.data_size, self.storage_size)

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "fragmentation": self.fragmentation}


class DatabaseMaintenance:
    dialect = "generic"

    def __init__(self, database: Database):
        self.database = database

    def _quote(self, name: str) -> str:
        return self.database.engine.dialect.identifier_preparer.quote(name)

    async def _autocommit(self, statements: Sequence[str]) -> None:
        async with self.database.engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            for statement in statements:
                await conn.execute(text(statement))

    async def ping(self) -> float:
        started = time.perf_counter()
        async with self.database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return round((time.perf_counter() - started) * 1000, 2)

    async def find_slow_queries(self, window_seconds: float, threshold_ms: float) -> list[SlowQuery]:
        return []

    async def rebuild_indexes(self, tables: Sequence[str] = KNOWN_TABLES) -> list[str]:
        raise NotImplementedError

    async def index_usage(self, tables: Sequence[str] = KNOWN_TABLES) -> list[IndexUsage]:
        raise NotImplementedError

    async def compact(self, tables: Sequence[str] = HIGH_WRITE_TABLES) -> list[str]:
        raise NotImplementedError

    async def storage_stats(self, tables: Sequence[str] = KNOWN_TABLES) -> list[StorageStats]:
        raise NotImplementedError

    async def ensure_monthly_view(self) -> str:
        raise NotImplementedError

    async def ensure_index(self, index: Index) -> bool:
        """Create `index` if missing; returns True when it was created."""

        def _ensure(sync_conn) -> bool:
            existing = {
                item["name"] for item in inspect(sync_conn).get_indexes(index.table.name)
            }
            if index.name in existing:
                return False
            index.create(sync_conn, checkfirst=True)
            return True

        async with self.database.engine.begin() as conn:
            created = await conn.run_sync(_ensure)
        if created:
            logger.info("Index created", extra={"index": index.name})
        return created

    async def leading_index_columns(self, table: str) -> set[str]:
        def _collect(sync_conn) -> set[str]:
            return {
                item["column_names"][0]
                for item in inspect(sync_conn).get_indexes(table)
                if item.get("column_names") and item["column_names"][0]
            }

        async with self.database.engine.connect() as conn:
            return await conn.run_sync(_collect)

    def pool_status(self) -> dict[str, Any]:
        pool = self.database.engine.pool
        status: dict[str, Any] = {"pool_class": type(pool).__name__, "status": pool.status()}
        for attribute in ("size", "checkedout", "overflow", "checkedin"):
            getter = getattr(pool, attribute, None)
            if callable(getter):
                status[attribute] = getter()
        return status


class PostgresMaintenance(DatabaseMaintenance):
    dialect = "postgresql"

    async def find_slow_queries(self, window_seconds: float, threshold_ms: float) -> list[SlowQuery]:
        """Poll pg_stat_activity during a fixed window for long-running statements."""
        statement = text(
            """
            SELECT pid, query, state,
                   EXTRACT(EPOCH FROM (clock_timestamp() - query_start)) * 1000 AS duration_ms
            FROM pg_stat_activity
            WHERE pid <> pg_backend_pid()
              AND state IS DISTINCT FROM 'idle'
              AND query_start IS NOT NULL
              AND EXTRACT(EPOCH FROM (clock_timestamp() - query_start)) * 1000 > :threshold
            ORDER BY duration_ms DESC
            LIMIT 10
            """
        )
        found: dict[tuple[int, str], SlowQuery] = {}
        deadline = time.monotonic() + window_seconds
        async with self.database.engine.connect() as conn:
            while True:
                rows = (await conn.execute(statement, {"threshold": threshold_ms})).all()
                for pid, query, state, duration in rows:
                    key = (pid, query)
                    duration = round(float(duration or 0), 2)
                    if key not in found or found[key].duration_ms < duration:
                        found[key] = SlowQuery(query=query, duration_ms=duration, state=state)
                await conn.rollback()
                if time.monotonic() >= deadline:
                    break
                await asyncio.sleep(min(0.2, max(window_seconds, 0)))
        return sorted(found.values(), key=lambda item: item.duration_ms, reverse=True)[:10]

    async def rebuild_indexes(self, tables: Sequence[str] = KNOWN_TABLES) -> list[str]:
        await self._autocommit([f"REINDEX TABLE {self._quote(table)}" for table in tables])
        return list(tables)

    async def index_usage(self, tables: Sequence[str] = KNOWN_TABLES) -> list[IndexUsage]:
        async with self.database.engine.connect() as conn:
            rows = (
                await conn.execute(
                    text(
                        "SELECT relname, indexrelname, idx_scan FROM pg_stat_user_indexes "
                        "WHERE relname = ANY(:tables) ORDER BY relname, indexrelname"
                    ),
                    {"tables": list(tables)},
                )
            ).all()
        return [
            IndexUsage(
                table=table,
                index=index,
                scans=int(scans or 0),
                primary=index.endswith("_pkey"),
            )
            for table, index, scans in rows
        ]

    async def compact(self, tables: Sequence[str] = HIGH_WRITE_TABLES) -> list[str]:
        await self._autocommit([f"VACUUM (ANALYZE) {self._quote(table)}" for table in tables])
        return list(tables)

    async def storage_stats(self, tables: Sequence[str] = KNOWN_TABLES) -> list[StorageStats]:
        async with self.database.engine.connect() as conn:
            rows = (
                await conn.execute(
                    text(
                        "SELECT relname, n_live_tup, n_dead_tup, pg_relation_size(relid) "
                        "FROM pg_stat_user_tables WHERE relname = ANY(:tables)"
                    ),
                    {"tables": list(tables)},
                )
            ).all()
        stats = []
        for table, live, dead, size in rows:
            live, dead, size = int(live or 0), int(dead or 0), int(size or 0)
            tuples = live + dead
            data = int(size * live / tuples) if tuples else size
            stats.append(StorageStats(table=table, data_size=data, storage_size=size))
        return stats

    async def ensure_monthly_view(self) -> str:
        await self._autocommit(
            [
                f"""
                CREATE MATERIALIZED VIEW IF NOT EXISTS {MONTHLY_VIEW} AS
                SELECT CAST(EXTRACT(YEAR FROM date) AS INTEGER) AS year,
                       CAST(EXTRACT(MONTH FROM date) AS INTEGER) AS month,
                       news_id,
                       SUM(total_views) AS total_views,
                       SUM(unique_views) AS unique_views,
                       SUM(total_shares) AS total_shares,
                       AVG(avg_reading_time) AS avg_reading_time
                FROM daily_news_stats
                GROUP BY 1, 2, news_id
                """,
                f"REFRESH MATERIALIZED VIEW {MONTHLY_VIEW}",
            ]
        )
        return MONTHLY_VIEW


class SQLiteMaintenance(DatabaseMaintenance):
    """SQLite has no activity view or per-index scan counters; those report empty."""

    dialect = "sqlite"

    async def rebuild_indexes(self, tables: Sequence[str] = KNOWN_TABLES) -> list[str]:
        await self._autocommit([f"REINDEX {self._quote(table)}" for table in tables])
        return list(tables)

    async def index_usage(self, tables: Sequence[str] = KNOWN_TABLES) -> list[IndexUsage]:
        usage: list[IndexUsage] = []
        async with self.database.engine.connect() as conn:
            for table in tables:
                rows = (
                    await conn.execute(text(f"PRAGMA index_list({self._quote(table)})"))
                ).mappings().all()
                usage.extend(
                    IndexUsage(
                        table=table,
                        index=row["name"],
                        scans=None,
                        primary=row["origin"] == "pk",
                    )
                    for row in rows
                )
        return usage

    async def compact(self, tables: Sequence[str] = HIGH_WRITE_TABLES) -> list[str]:
        # VACUUM is database-wide on SQLite.
        await self._autocommit(["VACUUM", "ANALYZE"])
        return list(tables)

    async def storage_stats(self, tables: Sequence[str] = KNOWN_TABLES) -> list[StorageStats]:
        async with self.database.engine.connect() as conn:
            page_size = (await conn.execute(text("PRAGMA page_size"))).scalar() or 0
            page_count = (await conn.execute(text("PRAGMA page_count"))).scalar() or 0
            free_pages = (await conn.execute(text("PRAGMA freelist_count"))).scalar() or 0
        storage = int(page_size) * int(page_count)
        data = int(page_size) * (int(page_count) - int(free_pages))
        return [StorageStats(table="database", data_size=data, storage_size=storage)]

    async def ensure_monthly_view(self) -> str:
        await self._autocommit(
            [
                f"""
                CREATE VIEW IF NOT EXISTS {MONTHLY_VIEW} AS
                SELECT CAST(strftime('%Y', date) AS INTEGER) AS year,
                       CAST(strftime('%m', date) AS INTEGER) AS month,
                       news_id,
                       SUM(total_views) AS total_views,
                       SUM(unique_views) AS unique_views,
                       SUM(total_shares) AS total_shares,
                       AVG(avg_reading_time) AS avg_reading_time
                FROM daily_news_stats
                GROUP BY year, month, news_id
                """
            ]
        )
        return MONTHLY_VIEW


def maintenance_backend_for(database: Database) -> DatabaseMaintenance:
    if database.is_sqlite:
        return SQLiteMaintenance(database)
    return PostgresMaintenance(database)


__all__ = [
    "DatabaseMaintenance",
    "HIGH_WRITE_TABLES",
    "IndexUsage",
    "KNOWN_TABLES",
    "MONTHLY_VIEW",
    "PostgresMaintenance",
    "SQLiteMaintenance",
    "SlowQuery",
    "StorageStats",
    "aggregation_indexes",
    "fragmentation_percent",
    "maintenance_backend_for",
]
