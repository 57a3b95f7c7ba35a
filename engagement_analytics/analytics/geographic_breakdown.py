"""
Geographic Breakdown Query Builder
==================================

**Version**: 1.0.0
**Status**: Active

Engagement per geographic area, for one level of the area tree.

WHAT IT COMPUTES
----------------
For each reported area (the children of a parent area, or the roots), the
activities whose current venue lies anywhere in the area's subtree:

    activity_count       distinct activities
    participant_count    distinct assigned participants
    participation_count  assignments plus bulk attendance

An activity in a grandchild counts for every ancestor being reported, but
only once per area, because each area's subtree is matched independently.

QUERY SHAPE
-----------
    WITH filtered_activities AS (...), participation AS (...)
    SELECT area_closure.area_id, count(DISTINCT ...), ...
      FROM (VALUES (:area, :descendant), ...) AS area_closure (area_id, descendant_id)
      JOIN filtered_activities ON geographic_area_id = area_closure.descendant_id
      LEFT JOIN participation ON ...
     GROUP BY area_closure.area_id
    HAVING count(DISTINCT activity_id) > 0
     ORDER BY area_closure.area_id
     LIMIT :page_size OFFSET :offset

The area -> subtree mapping is bound as parameters, never interpolated.

RELATED FILES
-------------
- engagement_analytics/analytics/hierarchy.py: find_descendants_map
- engagement_analytics/analytics/service.py: GeographicBreakdownService
"""

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional
import logging

from sqlalchemy import String, column, distinct, func, select, values

from engagement_analytics.analytics.compiler import (
    CompiledQuery,
    build_filtered_activities,
    build_participation_source,
    count_of,
    paginate,
)
from engagement_analytics.analytics.errors import ValidationError
from engagement_analytics.analytics.filters import (
    AnalyticsFilters,
    FilterConditionBuilder,
    Pagination,
)
from engagement_analytics.analytics.validator import MAX_PAGE_SIZE, AnalyticsRequestValidator


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeographicBreakdownCompilation:
    data_query: CompiledQuery
    count_query: CompiledQuery
    pagination: Optional[Pagination] = None


class GeographicBreakdownQueryBuilder:
    """
    Builds the per-area breakdown query.

    USAGE:
        closures = await repository.find_descendants_map(["area-1", "area-2"])
        compilation = GeographicBreakdownQueryBuilder().build(closures, filters)
    """

    def __init__(self, max_page_size: int = MAX_PAGE_SIZE):
        self.validator = AnalyticsRequestValidator(max_page_size=max_page_size)

    def build(
        self,
        area_descendants: Mapping[str, Iterable[str]],
        filters: AnalyticsFilters,
        pagination: Optional[Pagination] = None,
    ) -> GeographicBreakdownCompilation:
        """
        PARAMETERS:
            area_descendants: Reported area id -> its subtree (itself included)
            filters: Request filters; area_scope already resolved
            pagination: Optional page request
        """
        self.validator.validate_pagination(pagination)

        pairs = sorted(
            (area_id, descendant_id)
            for area_id, descendants in area_descendants.items()
            for descendant_id in set(descendants) | {area_id}
        )
        if not pairs:
            raise ValidationError("No geographic areas to break down", field_name="parentGeographicAreaId")

        conditions = FilterConditionBuilder.from_filters(filters)
        if filters.has_date_range:
            conditions = conditions.with_active_during(filters.start_date, filters.end_date)
        else:
            conditions = conditions.with_active_on(None)

        activities = build_filtered_activities(conditions, require_venue=True)
        participation = build_participation_source(activities, population=conditions.population)

        closure = values(
            column("area_id", String),
            column("descendant_id", String),
            name="area_closure",
        ).data(pairs)

        source = closure.join(activities, activities.c.geographic_area_id == closure.c.descendant_id)
        join_condition = participation.c.activity_id == activities.c.activity_id
        if conditions.population is not None:
            source = source.join(participation, join_condition)
        else:
            source = source.outerjoin(participation, join_condition)

        activity_count = func.count(distinct(activities.c.activity_id))
        stmt = (
            select(
                closure.c.area_id.label("area_id"),
                activity_count.label("activity_count"),
                func.count(distinct(participation.c.participant_id)).label("participant_count"),
                func.coalesce(func.sum(participation.c.weight), 0).label("participation_count"),
            )
            .select_from(source)
            .group_by(closure.c.area_id)
            .having(activity_count > 0)
        )

        count_stmt = count_of(stmt, "breakdown_rows")
        stmt, limit, offset = paginate(stmt.order_by(closure.c.area_id), pagination)

        logger.debug(
            "[ANALYTICS] Compiled geographic breakdown for %d areas (%d closure pairs)",
            len(area_descendants), len(pairs),
        )

        return GeographicBreakdownCompilation(
            data_query=CompiledQuery.from_statement(stmt, limit=limit, offset=offset),
            count_query=CompiledQuery.from_statement(count_stmt),
            pagination=pagination if limit is not None else None,
        )
