"""
Query Execution & Reliability Layer
===================================

**Version**: 1.0.0
**Status**: Active

Runs compiled analytics queries against PostgreSQL with per-attempt
timeouts, bounded retries, and concurrent data + count execution.

RETRY POLICY
------------
    attempt 1 --fail--> sleep 200ms --> attempt 2 --fail--> sleep 400ms --> attempt 3
                                                                          --fail--> raise

Delay after failed attempt n (1-based) is base_delay_ms * 2**n. Retries are
strictly sequential. On exhaustion:

    last attempt timed out   -> QueryTimeout (504)
    anything else            -> DatabaseQueryFailed (500), cause attached

CONCURRENCY
-----------
Every attempt opens its own session from the async session factory, so the
data query and the count query run at the same time on separate pooled
connections. No transaction is held beyond one statement.

NUMERIC NORMALIZATION
---------------------
PostgreSQL returns SUM() as NUMERIC, which the driver hands back as
Decimal. Rows are normalized to plain int/float so they serialize as JSON
numbers. Integral values stay exact ints at any magnitude.

RELATED FILES
-------------
- engagement_analytics/analytics/compiler.py: CompiledQuery
- engagement_analytics/analytics/errors.py: QueryTimeout / DatabaseQueryFailed
- engagement_analytics/database.py: AsyncSessionLocal
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence
import logging

from sqlalchemy import String, any_, bindparam, select
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_analytics.analytics.compiler import CompiledQuery
from engagement_analytics.analytics.errors import DatabaseQueryFailed, QueryTimeout
from engagement_analytics.analytics.filters import GroupingDimension
from engagement_analytics.models import (
    ActivityCategory,
    ActivityType,
    GeographicArea,
    Role,
    Venue,
)


# =============================================================================
# LOGGING SETUP
# =============================================================================

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_MS = 100


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class ExecutionResult:
    """Rows of the data query and the unpaginated row count."""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    total_count: int = 0


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_value(value: Any) -> Any:
    """Convert driver numerics into JSON-safe Python numbers."""
    if isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    return value


def normalize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {key: normalize_value(value) for key, value in row.items()}


# =============================================================================
# EXECUTOR
# =============================================================================

class QueryExecutor:
    """
    Executes CompiledQuery objects with timeout and retry.

    WHAT: execute / execute_count / execute_with_count plus dimension
    lookups for the identifiers present in a result.

    WHY: Transient store failures should not fail a dashboard request, but
    a request must never hang or retry forever.

    USAGE:
        executor = QueryExecutor(AsyncSessionLocal)
        result = await executor.execute_with_count(
            compilation.data_query, compilation.count_query
        )
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._session_factory = session_factory
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_attempts)
        self.base_delay_ms = base_delay_ms
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def execute(self, query: CompiledQuery) -> List[Dict[str, Any]]:
        rows = await self._with_retries(query)
        return [normalize_row(row) for row in rows]

    async def execute_count(self, query: CompiledQuery) -> int:
        rows = await self._with_retries(query)
        if not rows:
            return 0
        return int(normalize_value(next(iter(rows[0].values()))) or 0)

    async def execute_with_count(
        self,
        data_query: CompiledQuery,
        count_query: CompiledQuery,
    ) -> ExecutionResult:
        """Run both queries concurrently. Either failing fails the call."""
        rows, total_count = await asyncio.gather(
            self.execute(data_query),
            self.execute_count(count_query),
        )
        return ExecutionResult(rows=rows, total_count=total_count)

    async def fetch_dimension_lookups(
        self,
        rows: Sequence[Dict[str, Any]],
        dimensions: Iterable[GroupingDimension],
    ) -> Dict[GroupingDimension, Dict[str, str]]:
        """
        Names for the identifiers present in `rows`, per requested dimension.

        Dimensions with no identifiers in the rows are not queried. Lookups
        for different dimensions run concurrently.
        """
        repository = DimensionLookupRepository(self)
        requested = list(dimensions)

        pending = []
        for dimension in requested:
            ids = sorted({
                row[dimension.column_key]
                for row in rows
                if row.get(dimension.column_key) is not None
            })
            pending.append(repository.find_many(dimension, ids))

        results = await asyncio.gather(*pending)
        return dict(zip(requested, results))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _run(self, query: CompiledQuery) -> List[Dict[str, Any]]:
        async with self._session_factory() as session:
            result = await session.execute(query.statement)
            return [dict(row) for row in result.mappings().all()]

    def _delay_seconds(self, attempt: int) -> float:
        return self.base_delay_ms * (2 ** attempt) / 1000.0

    async def _with_retries(self, query: CompiledQuery) -> List[Dict[str, Any]]:
        last_error: Optional[BaseException] = None
        timed_out = False

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await asyncio.wait_for(self._run(query), timeout=self.timeout_seconds)
            except asyncio.TimeoutError as e:
                last_error = e
                timed_out = True
                logger.warning(
                    "[QUERY_EXECUTOR] Attempt %d/%d timed out after %.1fs",
                    attempt, self.max_attempts, self.timeout_seconds,
                )
            except Exception as e:  # noqa: BLE001
                last_error = e
                timed_out = False
                logger.warning(
                    "[QUERY_EXECUTOR] Attempt %d/%d failed: %s",
                    attempt, self.max_attempts, e,
                )

            if attempt < self.max_attempts:
                delay = self._delay_seconds(attempt)
                logger.info("[QUERY_EXECUTOR] Retrying in %.0fms", delay * 1000)
                await self._sleep(delay)

        details = {"attempts": self.max_attempts}
        if timed_out:
            logger.error("[QUERY_EXECUTOR] Query timed out on every attempt")
            raise QueryTimeout(details=details, original_exception=last_error)

        logger.error(
            "[QUERY_EXECUTOR] Query failed on every attempt: %s", last_error,
            extra={"sql": query.sql},
        )
        raise DatabaseQueryFailed(details=details, original_exception=last_error)


# =============================================================================
# DIMENSION LOOKUPS
# =============================================================================

_LOOKUP_TABLES = {
    GroupingDimension.ACTIVITY_TYPE: ActivityType.__table__,
    GroupingDimension.ACTIVITY_CATEGORY: ActivityCategory.__table__,
    GroupingDimension.GEOGRAPHIC_AREA: GeographicArea.__table__,
    GroupingDimension.VENUE: Venue.__table__,
}


def build_lookup_query(table, ids: List[str]) -> CompiledQuery:
    """SELECT id, name FROM <table> WHERE id = ANY(:ids)"""
    stmt = select(table.c.id, table.c.name).where(
        table.c.id == any_(bindparam("ids", list(ids), type_=ARRAY(String)))
    )
    return CompiledQuery.from_statement(stmt)


class DimensionLookupRepository:
    """
    id -> name lookups for dimensions and roles.

    Only ever queries the identifiers asked for. Queries go through the
    executor, so lookups share its timeout and retry policy.
    """

    def __init__(self, executor: QueryExecutor):
        self.executor = executor

    async def find_many(self, dimension: GroupingDimension, ids: List[str]) -> Dict[str, str]:
        return await self._find_names(_LOOKUP_TABLES[dimension], ids)

    async def find_roles(self, ids: List[str]) -> Dict[str, str]:
        return await self._find_names(Role.__table__, ids)

    async def find_role_id_by_name(self, name: str) -> Optional[str]:
        roles = Role.__table__
        stmt = select(roles.c.id).where(roles.c.name == name).limit(1)
        rows = await self.executor.execute(CompiledQuery.from_statement(stmt))
        return rows[0]["id"] if rows else None

    async def _find_names(self, table, ids: List[str]) -> Dict[str, str]:
        if not ids:
            return {}
        rows = await self.executor.execute(build_lookup_query(table, ids))
        return {row["id"]: row["name"] for row in rows}
