"""
Role Distribution Query Builder
===============================

Counts participation per role over the same filtered activity set the
engagement query uses.

    WITH filtered_activities AS (...),
         participation AS (
             SELECT activity_id, participant_id, role_id, 1 AS weight FROM assignments ...
             UNION ALL
             SELECT activity_id, NULL, :bulk_role_id, additional_participant_count
               FROM filtered_activities WHERE additional_participant_count > 0
         )
    SELECT role_id, SUM(weight) AS count
      FROM participation JOIN filtered_activities USING (activity_id)
     GROUP BY role_id
     ORDER BY count DESC, role_id

Bulk attendance has no role of its own; it is attributed to the default
participation role. Without a default role, bulk rows are left out.

Activity window: overlaps [startDate, endDate] when both are given,
otherwise active today.
"""

from typing import Optional
import logging

from sqlalchemy import func, select

from engagement_analytics.analytics.compiler import (
    CompiledQuery,
    build_filtered_activities,
    build_participation_source,
)
from engagement_analytics.analytics.filters import AnalyticsFilters, FilterConditionBuilder


logger = logging.getLogger(__name__)


class RoleDistributionQueryBuilder:
    """Builds the role distribution query. No grouping sets, no HAVING."""

    def build(self, filters: AnalyticsFilters, default_role_id: Optional[str]) -> CompiledQuery:
        conditions = FilterConditionBuilder.from_filters(filters)
        if filters.has_date_range:
            conditions = conditions.with_active_during(filters.start_date, filters.end_date)
        else:
            conditions = conditions.with_active_on(None)

        if default_role_id is None and conditions.population is None:
            logger.warning(
                "[ANALYTICS] No default participation role found; bulk attendance omitted from role distribution"
            )

        activities = build_filtered_activities(conditions)
        participation = build_participation_source(
            activities,
            population=conditions.population,
            bulk_role_id=default_role_id,
            include_bulk=default_role_id is not None,
        )

        count = func.sum(participation.c.weight).label("count")
        stmt = (
            select(participation.c.role_id.label("role_id"), count)
            .select_from(
                participation.join(activities, activities.c.activity_id == participation.c.activity_id)
            )
            .group_by(participation.c.role_id)
            .order_by(count.desc(), participation.c.role_id)
        )
        return CompiledQuery.from_statement(stmt)
