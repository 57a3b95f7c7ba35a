"""
Analytics Services
==================

**Version**: 1.0.0
**Status**: Active

Orchestrates the analytics pipeline for each public operation.

PIPELINE
--------
    validate --> resolve areas --> compile --> execute (+ count)
             --> lookups --> transform

    1. Validation        malformed input fails before any I/O
    2. Authorization     geographic filter expanded and checked
    3. Compilation       pure, synchronous
    4. Execution         data + count concurrently, with retry/timeout
    5. Lookup            names for identifiers present in the rows
    6. Transform         compact wire format

Typed AnalyticsError instances propagate unchanged. Anything else is
classified (usually InternalError), logged with context and reported to
Sentry before being raised.

OPERATIONS
----------
- EngagementAnalyticsService.get_engagement_metrics
- RoleDistributionService.get_role_distribution
- GeographicBreakdownService.get_geographic_breakdown
- GrowthService.get_growth_metrics

RELATED FILES
-------------
- engagement_analytics/deps.py: Builds the services per request
- engagement_analytics/routers/analytics.py: HTTP surface
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional
import logging

from engagement_analytics.analytics.compiler import EngagementQueryCompiler
from engagement_analytics.analytics.errors import (
    AnalyticsError,
    AnalyticsErrorHandler,
    ValidationError,
)
from engagement_analytics.analytics.executor import DimensionLookupRepository, QueryExecutor
from engagement_analytics.analytics.filters import AnalyticsFilters, Pagination
from engagement_analytics.analytics.geographic_breakdown import GeographicBreakdownQueryBuilder
from engagement_analytics.analytics.growth import GrowthPeriod, GrowthQueryBuilder
from engagement_analytics.analytics.hierarchy import (
    AreaNode,
    AuthorizedAreaSet,
    GeographicAreaRepository,
    GeographicHierarchyResolver,
)
from engagement_analytics.analytics.role_distribution import RoleDistributionQueryBuilder
from engagement_analytics.analytics.telemetry import Stage, TelemetryCollector, get_telemetry
from engagement_analytics.analytics.transformer import (
    GeographicBreakdownResult,
    GrowthResult,
    RoleDistributionResult,
    WireFormatTransformer,
    WireResult,
    build_pagination_metadata,
)
from engagement_analytics.analytics.validator import MAX_PAGE_SIZE, AnalyticsRequestValidator
from engagement_analytics.telemetry.sentry import capture_exception


logger = logging.getLogger(__name__)

DEFAULT_PARTICIPATION_ROLE_NAME = "Participant"


def _page_args(pagination: Optional[Pagination]) -> Dict[str, Optional[int]]:
    if pagination is None or not pagination.is_requested:
        return {"page": None, "page_size": None}
    return {"page": pagination.effective_page, "page_size": pagination.effective_page_size}


class _AnalyticsService:
    """Shared wiring and failure handling for the analytics services."""

    operation = "analytics"

    def __init__(
        self,
        resolver: GeographicHierarchyResolver,
        executor: QueryExecutor,
        validator: Optional[AnalyticsRequestValidator] = None,
        transformer: Optional[WireFormatTransformer] = None,
        telemetry: Optional[TelemetryCollector] = None,
        max_page_size: int = MAX_PAGE_SIZE,
    ):
        self.resolver = resolver
        self.executor = executor
        self.validator = validator or AnalyticsRequestValidator(max_page_size=max_page_size)
        self.transformer = transformer or WireFormatTransformer()
        self.telemetry = telemetry or get_telemetry()
        self.error_handler = AnalyticsErrorHandler()
        self.max_page_size = max_page_size

    def _unexpected(self, exc: Exception, filters: AnalyticsFilters) -> AnalyticsError:
        context: Dict[str, Any] = {"operation": self.operation, "filters": filters.describe()}
        error = self.error_handler.classify(exc, context=context)
        self.error_handler.log(error)
        capture_exception(exc, extra=context)
        return error


# =============================================================================
# ENGAGEMENT
# =============================================================================

class EngagementAnalyticsService(_AnalyticsService):
    """
    Engagement metrics with optional grouping and pagination.

    USAGE:
        service = EngagementAnalyticsService(resolver, executor)
        wire = await service.get_engagement_metrics(filters, authorized, Pagination(2, 50))
        return wire.to_dict()
    """

    operation = "engagement"

    def __init__(self, *args, compiler: Optional[EngagementQueryCompiler] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.compiler = compiler or EngagementQueryCompiler(max_page_size=self.max_page_size)

    async def get_engagement_metrics(
        self,
        filters: AnalyticsFilters,
        authorized: AuthorizedAreaSet,
        pagination: Optional[Pagination] = None,
    ) -> WireResult:
        try:
            with self.telemetry.track_request(self.operation, filters) as ctx:
                with ctx.track_stage(Stage.VALIDATION):
                    self.validator.validate_or_raise(filters, pagination)

                with ctx.track_stage(Stage.AUTHORIZATION):
                    filters = await self.resolver.resolve_filters(filters, authorized)

                with ctx.track_stage(Stage.COMPILATION):
                    compilation = self.compiler.compile(filters, filters.group_by, pagination)

                with ctx.track_stage(Stage.EXECUTION):
                    result = await self.executor.execute_with_count(
                        compilation.data_query, compilation.count_query
                    )

                with ctx.track_stage(Stage.LOOKUP):
                    lookups = await self.executor.fetch_dimension_lookups(
                        result.rows, compilation.dimensions
                    )

                with ctx.track_stage(Stage.TRANSFORM):
                    wire = self.transformer.transform(
                        result.rows,
                        lookups,
                        compilation.dimensions,
                        has_date_range=compilation.has_date_range,
                        total_count=result.total_count,
                        **_page_args(compilation.pagination),
                    )

                ctx.set_result(row_count=len(result.rows), total_count=result.total_count)
                return wire
        except AnalyticsError:
            raise
        except Exception as exc:
            raise self._unexpected(exc, filters) from exc


# =============================================================================
# ROLE DISTRIBUTION
# =============================================================================

class RoleDistributionService(_AnalyticsService):
    """Participation per role, bulk attendance attributed to the default role."""

    operation = "role_distribution"

    def __init__(
        self,
        *args,
        builder: Optional[RoleDistributionQueryBuilder] = None,
        default_role_name: str = DEFAULT_PARTICIPATION_ROLE_NAME,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.builder = builder or RoleDistributionQueryBuilder()
        self.default_role_name = default_role_name

    async def get_role_distribution(
        self,
        filters: AnalyticsFilters,
        authorized: AuthorizedAreaSet,
    ) -> RoleDistributionResult:
        lookups = DimensionLookupRepository(self.executor)
        try:
            with self.telemetry.track_request(self.operation, filters) as ctx:
                with ctx.track_stage(Stage.VALIDATION):
                    self.validator.validate_or_raise(filters)

                with ctx.track_stage(Stage.AUTHORIZATION):
                    filters = await self.resolver.resolve_filters(filters, authorized)

                with ctx.track_stage(Stage.LOOKUP):
                    default_role_id = await lookups.find_role_id_by_name(self.default_role_name)

                with ctx.track_stage(Stage.COMPILATION):
                    query = self.builder.build(filters, default_role_id)

                with ctx.track_stage(Stage.EXECUTION):
                    rows = await self.executor.execute(query)

                with ctx.track_stage(Stage.LOOKUP):
                    role_names = await lookups.find_roles(
                        sorted({row["role_id"] for row in rows if row.get("role_id")})
                    )

                with ctx.track_stage(Stage.TRANSFORM):
                    distribution = self.transformer.transform_roles(rows, role_names)

                ctx.set_result(row_count=len(rows), total_count=len(rows))
                return distribution
        except AnalyticsError:
            raise
        except Exception as exc:
            raise self._unexpected(exc, filters) from exc


# =============================================================================
# GEOGRAPHIC BREAKDOWN
# =============================================================================

class GeographicBreakdownService(_AnalyticsService):
    """
    Engagement per area for one level of the area tree.

    WHAT: Reports the children of `parent_area_id`, or the roots when no
    parent is given, each counted over its whole subtree. For a restricted
    caller the "roots" are the top-most areas of their authorized set.

    WHY: Drill-down maps need one row per visible area, not per venue.

    A restricted caller only sees areas in their authorized set, and each
    subtree is cut down to authorized areas before counting.
    """

    operation = "geographic_breakdown"

    def __init__(
        self,
        *args,
        repository: GeographicAreaRepository,
        builder: Optional[GeographicBreakdownQueryBuilder] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.repository = repository
        self.builder = builder or GeographicBreakdownQueryBuilder(max_page_size=self.max_page_size)

    async def get_geographic_breakdown(
        self,
        filters: AnalyticsFilters,
        authorized: AuthorizedAreaSet,
        parent_area_id: Optional[str] = None,
        pagination: Optional[Pagination] = None,
    ) -> GeographicBreakdownResult:
        try:
            with self.telemetry.track_request(self.operation, filters) as ctx:
                with ctx.track_stage(Stage.VALIDATION):
                    self.validator.validate_or_raise(filters, pagination)

                with ctx.track_stage(Stage.AUTHORIZATION):
                    filters = await self.resolver.resolve_filters(filters, authorized)
                    if parent_area_id is not None:
                        parent = await self.repository.find_by_id(parent_area_id)
                        if parent is None:
                            raise ValidationError(
                                "Geographic area not found",
                                field_name="parentGeographicAreaId",
                                details={"parentGeographicAreaId": parent_area_id},
                            )
                        areas = await self.repository.find_children(parent_area_id)
                    elif authorized.has_restrictions:
                        areas = await self._top_authorized_areas(authorized)
                    else:
                        areas = await self.repository.find_roots()

                    areas = [area for area in areas if authorized.allows(area.id)]
                    closures = await self.repository.find_descendants_map([a.id for a in areas])
                    if authorized.has_restrictions:
                        closures = {
                            area_id: descendants & authorized.area_ids
                            for area_id, descendants in closures.items()
                        }

                if not closures:
                    logger.info("[ANALYTICS] No visible areas for geographic breakdown")
                    ctx.set_result(row_count=0, total_count=0)
                    return GeographicBreakdownResult(
                        data=[],
                        areas=[],
                        pagination=build_pagination_metadata(0, **_page_args(pagination)),
                    )

                with ctx.track_stage(Stage.COMPILATION):
                    compilation = self.builder.build(closures, filters, pagination)

                with ctx.track_stage(Stage.EXECUTION):
                    result = await self.executor.execute_with_count(
                        compilation.data_query, compilation.count_query
                    )

                with ctx.track_stage(Stage.TRANSFORM):
                    area_info = {
                        area.id: {
                            "name": area.name,
                            "areaType": area.area_type,
                            "hasChildren": len(closures.get(area.id, ())) > 1,
                        }
                        for area in areas
                    }
                    breakdown = self.transformer.transform_geographic(
                        result.rows,
                        area_info,
                        total_count=result.total_count,
                        **_page_args(compilation.pagination),
                    )

                ctx.set_result(row_count=len(result.rows), total_count=result.total_count)
                return breakdown
        except AnalyticsError:
            raise
        except Exception as exc:
            raise self._unexpected(exc, filters) from exc

    async def _top_authorized_areas(self, authorized: AuthorizedAreaSet) -> List[AreaNode]:
        """Authorized areas whose parent is not authorized (or who have none)."""
        visible = await self.repository.find_by_ids(sorted(authorized.area_ids))
        return [
            area for area in visible
            if area.parent_id is None or not authorized.allows(area.parent_id)
        ]


# =============================================================================
# GROWTH
# =============================================================================

class GrowthService(_AnalyticsService):
    """
    Per-period activity and participation series.

    USAGE:
        service = GrowthService(resolver, executor)
        growth = await service.get_growth_metrics(filters, authorized, GrowthPeriod.WEEK)
        return growth.to_dict()
    """

    operation = "growth"

    def __init__(self, *args, builder: Optional[GrowthQueryBuilder] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.builder = builder or GrowthQueryBuilder()

    async def get_growth_metrics(
        self,
        filters: AnalyticsFilters,
        authorized: AuthorizedAreaSet,
        period: GrowthPeriod = GrowthPeriod.MONTH,
        today: Optional[date] = None,
    ) -> GrowthResult:
        try:
            with self.telemetry.track_request(self.operation, filters) as ctx:
                with ctx.track_stage(Stage.VALIDATION):
                    self.validator.validate_or_raise(filters)

                with ctx.track_stage(Stage.AUTHORIZATION):
                    filters = await self.resolver.resolve_filters(filters, authorized)

                with ctx.track_stage(Stage.COMPILATION):
                    compilation = self.builder.build(filters, period, today=today)

                with ctx.track_stage(Stage.EXECUTION):
                    rows = await self.executor.execute(compilation.query)

                with ctx.track_stage(Stage.LOOKUP):
                    lookups = await self.executor.fetch_dimension_lookups(rows, compilation.dimensions)

                with ctx.track_stage(Stage.TRANSFORM):
                    growth = self.transformer.transform_growth(rows, lookups, compilation)

                ctx.set_result(row_count=len(growth.data), total_count=len(growth.data))
                return growth
        except AnalyticsError:
            raise
        except Exception as exc:
            raise self._unexpected(exc, filters) from exc
