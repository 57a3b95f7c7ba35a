"""
Engagement Analytics Engine
===========================

**Version**: 1.0.0
**Status**: Active

Aggregates engagement, growth and geographic-distribution metrics over
activities, participants and venues, entirely inside PostgreSQL.

ARCHITECTURE OVERVIEW
---------------------
```
Request (filters + groupBy + page)
    |
    v
AnalyticsRequestValidator (analytics/validator.py)
    |
    v
GeographicHierarchyResolver (analytics/hierarchy.py)
    |   authorize explicit areas, expand to descendants
    v
EngagementQueryCompiler (analytics/compiler.py)
    |   data query + count query
    v
QueryExecutor (analytics/executor.py)
    |   concurrent, timeout + retry, dimension lookups
    v
WireFormatTransformer (analytics/transformer.py)
    |
    v
WireResult (flat numeric rows + lookup arrays)
```

SECURITY MODEL
--------------
- Every value is a bound parameter; no request text reaches SQL
- Geographic filters are checked against the caller's authorized set
  before any query runs, and the resolved scope is the only geographic
  input builders accept

COMPONENTS
----------
- errors.py: Error taxonomy and classification
- filters.py: Filters, grouping dimensions, pagination, predicates
- validator.py: Request validation
- model.py: Metric and dimension definitions (single source of truth)
- hierarchy.py: Area tree repository and resolver
- compiler.py: Engagement SQL and shared building blocks
- role_distribution.py: Participation per role
- geographic_breakdown.py: Engagement per area
- growth.py: Per-period time series
- executor.py: Execution, retry, lookups
- transformer.py: Wire format
- telemetry.py: Pipeline observability
- service.py: Orchestration

USAGE
-----
```python
from engagement_analytics.analytics import (
    AnalyticsFilters,
    AuthorizedAreaSet,
    EngagementAnalyticsService,
    GroupingDimension,
    Pagination,
)

filters = AnalyticsFilters(
    start_date=date(2024, 1, 10),
    end_date=date(2024, 1, 31),
    group_by=[GroupingDimension.ACTIVITY_TYPE],
)
wire = await service.get_engagement_metrics(
    filters, AuthorizedAreaSet.unrestricted(), Pagination(page=1, page_size=50)
)
```
"""

from engagement_analytics.analytics.errors import (
    AnalyticsError,
    AnalyticsErrorHandler,
    AuthorizationDenied,
    DatabaseQueryFailed,
    ErrorCategory,
    ErrorCode,
    ErrorSeverity,
    InternalError,
    QueryTimeout,
    ValidationError,
)

from engagement_analytics.analytics.filters import (
    AnalyticsFilters,
    FilterConditionBuilder,
    GroupingDimension,
    Pagination,
    ResolvedAreaScope,
)

from engagement_analytics.analytics.validator import (
    AnalyticsRequestValidator,
    ValidationResult,
)

from engagement_analytics.analytics.model import (
    CURRENT_METRICS,
    DATE_RANGE_METRICS,
    Metric,
    MetricKind,
    metrics_for,
)

from engagement_analytics.analytics.hierarchy import (
    AuthorizedAreaSet,
    GeographicAreaRepository,
    GeographicHierarchyResolver,
    SqlGeographicAreaRepository,
)

from engagement_analytics.analytics.compiler import (
    CompiledQuery,
    EngagementCompilation,
    EngagementQueryCompiler,
)

from engagement_analytics.analytics.role_distribution import RoleDistributionQueryBuilder

from engagement_analytics.analytics.geographic_breakdown import (
    GeographicBreakdownCompilation,
    GeographicBreakdownQueryBuilder,
)

from engagement_analytics.analytics.growth import (
    GrowthCompilation,
    GrowthPeriod,
    GrowthQueryBuilder,
)

from engagement_analytics.analytics.executor import (
    DimensionLookupRepository,
    ExecutionResult,
    QueryExecutor,
)

from engagement_analytics.analytics.transformer import (
    GeographicBreakdownResult,
    GrowthResult,
    RoleDistributionResult,
    WireFormatTransformer,
    WireResult,
    build_pagination_metadata,
)

from engagement_analytics.analytics.telemetry import (
    TelemetryCollector,
    get_telemetry,
    set_telemetry,
)

from engagement_analytics.analytics.service import (
    EngagementAnalyticsService,
    GeographicBreakdownService,
    GrowthService,
    RoleDistributionService,
)


__all__ = [
    # Errors
    "AnalyticsError",
    "AnalyticsErrorHandler",
    "AuthorizationDenied",
    "DatabaseQueryFailed",
    "ErrorCategory",
    "ErrorCode",
    "ErrorSeverity",
    "InternalError",
    "QueryTimeout",
    "ValidationError",
    # Filters
    "AnalyticsFilters",
    "FilterConditionBuilder",
    "GroupingDimension",
    "Pagination",
    "ResolvedAreaScope",
    # Validation
    "AnalyticsRequestValidator",
    "ValidationResult",
    # Model
    "CURRENT_METRICS",
    "DATE_RANGE_METRICS",
    "Metric",
    "MetricKind",
    "metrics_for",
    # Hierarchy
    "AuthorizedAreaSet",
    "GeographicAreaRepository",
    "GeographicHierarchyResolver",
    "SqlGeographicAreaRepository",
    # Compilation
    "CompiledQuery",
    "EngagementCompilation",
    "EngagementQueryCompiler",
    "RoleDistributionQueryBuilder",
    "GeographicBreakdownCompilation",
    "GeographicBreakdownQueryBuilder",
    "GrowthCompilation",
    "GrowthPeriod",
    "GrowthQueryBuilder",
    # Execution
    "DimensionLookupRepository",
    "ExecutionResult",
    "QueryExecutor",
    # Wire format
    "GeographicBreakdownResult",
    "GrowthResult",
    "RoleDistributionResult",
    "WireFormatTransformer",
    "WireResult",
    "build_pagination_metadata",
    # Telemetry
    "TelemetryCollector",
    "get_telemetry",
    "set_telemetry",
    # Services
    "EngagementAnalyticsService",
    "GeographicBreakdownService",
    "GrowthService",
    "RoleDistributionService",
]
