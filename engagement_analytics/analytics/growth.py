"""
Growth Query Builder
====================

**Version**: 1.0.0
**Status**: Active

Per-period time series of engagement: how many activities ran, how many
distinct participants took part, and how much participation there was in
each day, week, month or year of a date range.

WHAT IT COMPUTES
----------------
For each period [period_start, period_end] (both inclusive):

    uniqueActivities     activities whose window overlaps the period
    uniqueParticipants   distinct assigned participants of those activities
    totalParticipation   their assignments plus bulk attendance

An activity spanning several periods counts in each of them. An activity
whose end date falls before a period starts does not count in it.

PERIODS
-------
Periods are calendar-aligned: weeks start on Monday, months on the 1st,
years on 1 January. The first and last periods are clipped to the
requested range. Labels:

    DAY     2024-01-15
    WEEK    2024-01-15       (the Monday the week starts on)
    MONTH   2024-01
    YEAR    2024

QUERY SHAPE
-----------
    WITH filtered_activities AS (...), participation AS (...)
    SELECT periods.period_index, <dimension columns>,
           count(DISTINCT activity_id), count(DISTINCT participant_id),
           coalesce(sum(weight), 0)
      FROM (VALUES (:i, :start, :end), ...) AS periods (period_index, period_start, period_end)
      LEFT JOIN (filtered_activities LEFT JOIN participation)
        ON <activity window overlaps the period>
     GROUP BY periods.period_index, <dimension columns>
     ORDER BY periods.period_index, <dimension columns> NULLS FIRST

The LEFT JOIN from the period list keeps periods without any activity in
the ungrouped series. Grouped series are zero-filled per group by the
transformer.

RELATED FILES
-------------
- engagement_analytics/analytics/compiler.py: Shared filter building blocks
- engagement_analytics/analytics/transformer.py: transform_growth
- engagement_analytics/analytics/service.py: GrowthService
"""

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import List, Optional, Tuple
import logging

from sqlalchemy import Date, Integer, cast, column, distinct, func, select, values

from engagement_analytics.analytics.compiler import (
    CompiledQuery,
    active_during,
    build_filtered_activities,
    build_participation_source,
)
from engagement_analytics.analytics.errors import ValidationError
from engagement_analytics.analytics.filters import (
    AnalyticsFilters,
    FilterConditionBuilder,
    GroupingDimension,
    canonical_dimensions,
)


logger = logging.getLogger(__name__)


GROWTH_METRICS = ("uniqueActivities", "uniqueParticipants", "totalParticipation")

MAX_GROWTH_PERIODS = 1000


class GrowthPeriod(str, Enum):
    """Length of one time-series bucket."""
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"
    YEAR = "YEAR"


@dataclass(frozen=True)
class PeriodWindow:
    """One bucket of the series, both ends inclusive."""
    label: str
    start: date
    end: date

    def to_dict(self):
        return {"label": self.label, "startDate": self.start.isoformat(), "endDate": self.end.isoformat()}


@dataclass(frozen=True)
class GrowthCompilation:
    query: CompiledQuery
    periods: List[PeriodWindow]
    period: GrowthPeriod
    dimensions: Tuple[GroupingDimension, ...]
    start_date: date
    end_date: date


# =============================================================================
# PERIODS
# =============================================================================

def _align(day: date, period: GrowthPeriod) -> date:
    if period == GrowthPeriod.WEEK:
        return day - timedelta(days=day.weekday())
    if period == GrowthPeriod.MONTH:
        return day.replace(day=1)
    if period == GrowthPeriod.YEAR:
        return date(day.year, 1, 1)
    return day


def _next(day: date, period: GrowthPeriod) -> date:
    if period == GrowthPeriod.DAY:
        return day + timedelta(days=1)
    if period == GrowthPeriod.WEEK:
        return day + timedelta(days=7)
    if period == GrowthPeriod.MONTH:
        if day.month == 12:
            return date(day.year + 1, 1, 1)
        return date(day.year, day.month + 1, 1)
    return date(day.year + 1, 1, 1)


def _label(day: date, period: GrowthPeriod) -> str:
    if period == GrowthPeriod.MONTH:
        return f"{day.year}-{day.month:02d}"
    if period == GrowthPeriod.YEAR:
        return str(day.year)
    return day.isoformat()


def build_periods(start: date, end: date, period: GrowthPeriod) -> List[PeriodWindow]:
    """
    Calendar-aligned periods covering [start, end], clipped to the range.

    Raises ValidationError when the range is inverted or would produce
    more than MAX_GROWTH_PERIODS periods.
    """
    if start > end:
        raise ValidationError(
            "Invalid date range: startDate must be before endDate",
            field_name="startDate",
            details={"startDate": start.isoformat(), "endDate": end.isoformat()},
        )

    windows = []
    current = _align(start, period)
    while current <= end:
        following = _next(current, period)
        windows.append(PeriodWindow(
            label=_label(current, period),
            start=max(current, start),
            end=min(following - timedelta(days=1), end),
        ))
        if len(windows) > MAX_GROWTH_PERIODS:
            raise ValidationError(
                f"Date range spans more than {MAX_GROWTH_PERIODS} periods of {period.value}",
                field_name="period",
                details={"period": period.value, "maxPeriods": MAX_GROWTH_PERIODS},
            )
        current = following
    return windows


def default_range(filters: AnalyticsFilters, today: date) -> Tuple[date, date]:
    """Missing end defaults to today, missing start to 1 January of last year."""
    end = filters.end_date or today
    start = filters.start_date or date(today.year - 1, 1, 1)
    return start, end


# =============================================================================
# BUILDER
# =============================================================================

class GrowthQueryBuilder:
    """
    Builds the growth time-series query.

    USAGE:
        compilation = GrowthQueryBuilder().build(filters, GrowthPeriod.MONTH)
        rows = await executor.execute(compilation.query)
    """

    def build(
        self,
        filters: AnalyticsFilters,
        period: GrowthPeriod,
        today: Optional[date] = None,
    ) -> GrowthCompilation:
        start, end = default_range(filters, today or date.today())
        windows = build_periods(start, end, period)
        dimensions = canonical_dimensions(filters.group_by)

        conditions = FilterConditionBuilder.from_filters(filters).with_active_during(start, end)
        activities = build_filtered_activities(conditions, dimensions)
        participation = build_participation_source(activities, population=conditions.population)

        periods = values(
            column("period_index", Integer),
            column("period_start", Date),
            column("period_end", Date),
            name="periods",
        ).data([(index, w.start, w.end) for index, w in enumerate(windows)])

        join_condition = participation.c.activity_id == activities.c.activity_id
        if conditions.population is not None:
            engaged = activities.join(participation, join_condition)
        else:
            engaged = activities.outerjoin(participation, join_condition)

        overlap = active_during(
            activities.c.start_date, activities.c.end_date,
            cast(periods.c.period_start, Date), cast(periods.c.period_end, Date),
        )
        dimension_columns = [activities.c[d.column_key] for d in dimensions]

        stmt = (
            select(
                periods.c.period_index.label("period_index"),
                *[c.label(d.column_key) for d, c in zip(dimensions, dimension_columns)],
                func.count(distinct(activities.c.activity_id)).label("uniqueActivities"),
                func.count(distinct(participation.c.participant_id)).label("uniqueParticipants"),
                func.coalesce(func.sum(participation.c.weight), 0).label("totalParticipation"),
            )
            .select_from(periods.outerjoin(engaged, overlap))
            .group_by(periods.c.period_index, *dimension_columns)
            .order_by(periods.c.period_index, *[c.asc().nulls_first() for c in dimension_columns])
        )

        logger.debug(
            "[ANALYTICS] Compiled growth query (%s x %d periods, dimensions=%s)",
            period.value, len(windows), [d.value for d in dimensions],
        )

        return GrowthCompilation(
            query=CompiledQuery.from_statement(stmt),
            periods=windows,
            period=period,
            dimensions=dimensions,
            start_date=start,
            end_date=end,
        )
