"""
Temporal Metrics Query Compiler
===============================

**Version**: 1.0.0
**Status**: Active

Compiles an analytics request into one parameterized aggregate query (plus
its count query) for PostgreSQL.

WHY THIS FILE EXISTS
--------------------
Engagement metrics are computed in the database, in one round trip, for
every group and the total at once. Doing it in application code would mean
loading every assignment of every matching activity.

QUERY SHAPE
-----------
    WITH filtered_activities AS (          -- activities + type (+ current venue)
        SELECT ... FROM activities
          [JOIN activity_types]            -- only for category filter/grouping
          [LEFT JOIN current venue]        -- only for venue/area filter/grouping
         WHERE <predicates>
    ),
    participation AS (                      -- one source for all counting
        SELECT activity_id, participant_id, role_id, 1 AS weight FROM assignments
        UNION ALL
        SELECT id, NULL, <role>, additional_participant_count FROM activities
         WHERE additional_participant_count > 0
    )
    SELECT <dimension columns>,
           count(DISTINCT activity_id) FILTER (WHERE <active at D>), ...,
           GROUPING(<dimensions>) AS grouping_mask
      FROM filtered_activities LEFT JOIN participation
     GROUP BY GROUPING SETS ((<dimensions>), ())
    HAVING GROUPING(<dimensions>) = <all bits> OR <any metric> <> 0
     ORDER BY GROUPING(<dimensions>) DESC, <dimensions> NULLS FIRST
     LIMIT :page_size OFFSET :offset

The count query is SELECT count(*) over the same statement without ORDER
BY, LIMIT or OFFSET.

SNAPSHOT SEMANTICS
------------------
An activity is active on D when start_date <= D and (end_date IS NULL or
end_date >= D), compared as calendar dates. Both ends are inclusive.

Distinct participants are counted per output row by the database, so the
total row de-duplicates across groups rather than summing them.

SHARED BUILDING BLOCKS
----------------------
`build_filtered_activities`, `build_participation_source`,
`render_predicate`, `active_on` and `paginate` are module-level so the role
distribution and geographic breakdown builders apply filters identically.

RELATED FILES
-------------
- engagement_analytics/analytics/filters.py: Predicates being rendered
- engagement_analytics/analytics/model.py: Metric order
- engagement_analytics/analytics/executor.py: Runs CompiledQuery
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from sqlalchemy import (
    Date,
    Integer,
    String,
    and_,
    any_,
    bindparam,
    cast,
    distinct,
    exists,
    func,
    literal_column,
    null,
    or_,
    select,
    text,
    tuple_,
    union_all,
)
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.sql import ColumnElement, Select
from sqlalchemy.sql.selectable import CTE

from engagement_analytics.analytics.errors import InternalError
from engagement_analytics.analytics.filters import (
    ActiveDuring,
    ActiveOn,
    ActivityCategoryIn,
    ActivityTypeIn,
    AnalyticsFilters,
    FilterConditionBuilder,
    GeographicAreaIn,
    GroupingDimension,
    Pagination,
    PopulationIn,
    Predicate,
    VenueIn,
    canonical_dimensions,
)
from engagement_analytics.analytics.model import (
    GROUPING_MASK_COLUMN,
    Metric,
    MetricKind,
    ReferencePoint,
    metrics_for,
)
from engagement_analytics.analytics.validator import MAX_PAGE_SIZE, AnalyticsRequestValidator
from engagement_analytics.models import (
    Activity,
    ActivityStatusEnum,
    ActivityType,
    ActivityVenueHistory,
    Assignment,
    ParticipantPopulation,
    Venue,
)


# =============================================================================
# LOGGING SETUP
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class CompiledQuery:
    """
    A statement ready to execute, with its rendered form.

    WHAT: The SQLAlchemy statement, the PostgreSQL SQL text and the bound
    parameters. Values only ever travel as parameters.

    WHY: The executor runs `statement`; logs, telemetry and tests read `sql`
    and `parameters`.

    ATTRIBUTES:
        statement: Executable SQLAlchemy Select
        sql: SQL rendered for the PostgreSQL dialect
        parameters: Bound parameter values by name
        limit / offset: Pagination applied, None when unpaginated
    """
    statement: Select
    sql: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    limit: Optional[int] = None
    offset: Optional[int] = None

    @classmethod
    def from_statement(
        cls,
        statement: Select,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> "CompiledQuery":
        compiled = statement.compile(dialect=postgresql.dialect())
        return cls(
            statement=statement,
            sql=str(compiled),
            parameters=dict(compiled.params),
            limit=limit,
            offset=offset,
        )


@dataclass(frozen=True)
class EngagementCompilation:
    """
    Data query and count query for one engagement request.

    ATTRIBUTES:
        data_query: Grouped, ordered, paginated metrics
        count_query: Row count of the unpaginated data query
        has_date_range: Snapshot-pair (True) or current-snapshot mode
        dimensions: Grouping dimensions in canonical order
        pagination: Page request applied, None when unpaginated
    """
    data_query: CompiledQuery
    count_query: CompiledQuery
    has_date_range: bool
    dimensions: Tuple[GroupingDimension, ...]
    pagination: Optional[Pagination] = None

    @property
    def metric_names(self) -> List[str]:
        return [m.name for m in metrics_for(self.has_date_range)]


# =============================================================================
# SHARED BUILDING BLOCKS
# =============================================================================

def id_array_param(name: str, ids: Iterable[str]):
    """Array parameter for `column = ANY(:name)`."""
    return bindparam(name, list(ids), type_=ARRAY(String))


def date_param(name: str, value: date):
    return bindparam(name, value, type_=Date)


def current_venue_subquery():
    """
    Current venue of every activity that has one.

    A history record is current when no other record for the same activity
    is later. A dated record is later than an undated one; equal dates fall
    back to the higher record id so exactly one record wins.
    """
    history = ActivityVenueHistory.__table__.alias("avh")
    later = ActivityVenueHistory.__table__.alias("avh_later")
    venues = Venue.__table__

    later_exists = exists().where(
        later.c.activity_id == history.c.activity_id,
        or_(
            later.c.effective_from > history.c.effective_from,
            and_(later.c.effective_from.isnot(None), history.c.effective_from.is_(None)),
            and_(later.c.effective_from == history.c.effective_from, later.c.id > history.c.id),
            and_(
                later.c.effective_from.is_(None),
                history.c.effective_from.is_(None),
                later.c.id > history.c.id,
            ),
        ),
    )

    return (
        select(
            history.c.activity_id.label("activity_id"),
            venues.c.id.label("venue_id"),
            venues.c.geographic_area_id.label("geographic_area_id"),
        )
        .select_from(history.join(venues, venues.c.id == history.c.venue_id))
        .where(~later_exists)
        .subquery("current_venue")
    )


def active_on(start_column, end_column, reference) -> ColumnElement:
    """Inclusive calendar-date membership test at `reference`."""
    return and_(
        cast(start_column, Date) <= reference,
        or_(end_column.is_(None), cast(end_column, Date) >= reference),
    )


def active_during(start_column, end_column, start, end) -> ColumnElement:
    """Activity window overlaps the inclusive range [start, end]."""
    return and_(
        cast(start_column, Date) <= end,
        or_(end_column.is_(None), cast(end_column, Date) >= start),
    )


def render_predicate(predicate: Predicate, columns: Dict[str, ColumnElement]) -> ColumnElement:
    """
    Render one activity-level predicate against the given source columns.

    `columns` must carry every column the predicate needs; builders check
    `requires_venue` / `requires_activity_type` before rendering.
    """
    if isinstance(predicate, ActivityTypeIn):
        return columns["activity_type_id"] == any_(id_array_param(predicate.param_name, predicate.ids))
    if isinstance(predicate, ActivityCategoryIn):
        return columns["activity_category_id"] == any_(id_array_param(predicate.param_name, predicate.ids))
    if isinstance(predicate, VenueIn):
        return columns["venue_id"] == any_(id_array_param(predicate.param_name, predicate.ids))
    if isinstance(predicate, GeographicAreaIn):
        return columns["geographic_area_id"] == any_(id_array_param(predicate.param_name, predicate.ids))
    if isinstance(predicate, ActiveOn):
        reference = (
            date_param("reference_date", predicate.reference)
            if predicate.reference is not None
            else func.current_date()
        )
        return active_on(columns["start_date"], columns["end_date"], reference)
    if isinstance(predicate, ActiveDuring):
        return active_during(
            columns["start_date"],
            columns["end_date"],
            date_param("start_date", predicate.start),
            date_param("end_date", predicate.end),
        )
    raise InternalError(details={"predicate": predicate.kind})


def build_filtered_activities(
    conditions: FilterConditionBuilder,
    dimensions: Sequence[GroupingDimension] = (),
    name: str = "filtered_activities",
    require_venue: bool = False,
) -> CTE:
    """
    Filtered-activity CTE.

    Always carries activity_id, activity_type_id, start_date, end_date,
    status and additional_participant_count. activity_category_id is added
    when a category filter or grouping needs it; venue_id and
    geographic_area_id when a venue/area filter or grouping does.

    The current venue is LEFT joined: activities without a venue stay in
    the result (null venue) unless a venue/area predicate excludes them.
    """
    activities = Activity.__table__
    activity_types = ActivityType.__table__

    needs_type = conditions.requires_activity_type or GroupingDimension.ACTIVITY_CATEGORY in dimensions
    needs_venue = (
        require_venue
        or conditions.requires_venue
        or any(d.requires_venue for d in dimensions)
    )

    columns: Dict[str, ColumnElement] = {
        "activity_id": activities.c.id,
        "activity_type_id": activities.c.activity_type_id,
        "start_date": activities.c.start_date,
        "end_date": activities.c.end_date,
        "status": activities.c.status,
        "additional_participant_count": activities.c.additional_participant_count,
    }
    source = activities

    if needs_type:
        source = source.join(activity_types, activity_types.c.id == activities.c.activity_type_id)
        columns["activity_category_id"] = activity_types.c.activity_category_id

    if needs_venue:
        current_venue = current_venue_subquery()
        source = source.outerjoin(current_venue, current_venue.c.activity_id == activities.c.id)
        columns["venue_id"] = current_venue.c.venue_id
        columns["geographic_area_id"] = current_venue.c.geographic_area_id

    stmt = select(*[column.label(key) for key, column in columns.items()]).select_from(source)
    for predicate in conditions.activity_predicates:
        stmt = stmt.where(render_predicate(predicate, columns))

    return stmt.cte(name)


def build_participation_source(
    activities: CTE,
    population: Optional[PopulationIn] = None,
    bulk_role_id: Optional[str] = None,
    include_bulk: bool = True,
    name: str = "participation",
) -> CTE:
    """
    Participation source: assignment rows UNION ALL bulk-count rows.

        assignment row:  (activity_id, participant_id, role_id, 1)
        bulk row:        (activity_id, NULL, bulk_role_id, additional_participant_count)

    With a population filter only assignments of member participants are
    kept and bulk rows are dropped, since bulk attendees have no
    population membership.
    """
    assignments = Assignment.__table__
    memberships = ParticipantPopulation.__table__

    assignment_rows = select(
        assignments.c.activity_id.label("activity_id"),
        assignments.c.participant_id.label("participant_id"),
        assignments.c.role_id.label("role_id"),
        literal_column("1", Integer).label("weight"),
    ).where(assignments.c.activity_id.in_(select(activities.c.activity_id)))

    if population is not None:
        assignment_rows = assignment_rows.where(
            exists().where(
                memberships.c.participant_id == assignments.c.participant_id,
                memberships.c.population_id == any_(id_array_param(population.param_name, population.ids)),
            )
        )

    if population is not None or not include_bulk:
        return assignment_rows.cte(name)

    role = (
        bindparam("bulk_role_id", bulk_role_id, type_=String)
        if bulk_role_id is not None
        else cast(null(), String)
    )
    bulk_rows = select(
        activities.c.activity_id.label("activity_id"),
        cast(null(), String).label("participant_id"),
        role.label("role_id"),
        activities.c.additional_participant_count.label("weight"),
    ).where(activities.c.additional_participant_count > 0)

    return union_all(assignment_rows, bulk_rows).cte(name)


def paginate(
    stmt: Select,
    pagination: Optional[Pagination],
) -> Tuple[Select, Optional[int], Optional[int]]:
    """Apply LIMIT/OFFSET. Returns (statement, limit, offset)."""
    if pagination is None or not pagination.is_requested:
        return stmt, None, None
    limit = pagination.effective_page_size
    offset = pagination.offset
    return stmt.limit(limit).offset(offset), limit, offset


def count_of(stmt: Select, name: str) -> Select:
    """SELECT count(*) over an unordered, unpaginated statement."""
    return select(func.count().label("total_count")).select_from(stmt.subquery(name))


# =============================================================================
# ENGAGEMENT COMPILER
# =============================================================================

class EngagementQueryCompiler:
    """
    Builds the engagement data and count queries.

    WHAT: Filters + grouping + pagination -> EngagementCompilation.

    WHY: One grouped query returns every group and the total row; the count
    query sizes pagination.

    USAGE:
        compiler = EngagementQueryCompiler()
        compilation = compiler.compile(filters, [GroupingDimension.VENUE], Pagination(2, 50))
        # compilation.data_query.limit == 50, .offset == 50

    Compilation is pure and synchronous. Nothing is cached between
    requests.
    """

    def __init__(self, max_page_size: int = MAX_PAGE_SIZE):
        self.validator = AnalyticsRequestValidator(max_page_size=max_page_size)

    def compile(
        self,
        filters: AnalyticsFilters,
        group_by: Optional[List[GroupingDimension]] = None,
        pagination: Optional[Pagination] = None,
    ) -> EngagementCompilation:
        self.validator.validate_pagination(pagination)

        dimensions = canonical_dimensions(group_by if group_by is not None else filters.group_by)
        has_date_range = filters.has_date_range

        conditions = FilterConditionBuilder.from_filters(filters)
        if has_date_range:
            conditions = conditions.with_active_during(filters.start_date, filters.end_date)

        activities = build_filtered_activities(conditions, dimensions)
        participation = build_participation_source(activities, population=conditions.population)

        metrics = self._metric_expressions(activities, participation, filters)
        dimension_columns = [activities.c[d.column_key] for d in dimensions]

        join_condition = participation.c.activity_id == activities.c.activity_id
        if conditions.population is not None:
            source = activities.join(participation, join_condition)
        else:
            source = activities.outerjoin(participation, join_condition)

        stmt = select(
            *[column.label(d.column_key) for d, column in zip(dimensions, dimension_columns)],
            *[expression.label(metric.name) for metric, expression in metrics],
        ).select_from(source)

        grouping = None
        if dimensions:
            grouping = func.grouping(*dimension_columns)
            stmt = stmt.add_columns(grouping.label(GROUPING_MASK_COLUMN))
            total_row = grouping == (1 << len(dimensions)) - 1
            stmt = stmt.group_by(
                func.grouping_sets(tuple_(*dimension_columns), text("()"))
            ).having(or_(total_row, *[expression != 0 for _, expression in metrics]))

        count_stmt = count_of(stmt, "engagement_rows")

        if grouping is not None:
            stmt = stmt.order_by(grouping.desc(), *[c.asc().nulls_first() for c in dimension_columns])
        stmt, limit, offset = paginate(stmt, pagination)

        logger.debug(
            "[ANALYTICS] Compiled engagement query (dimensions=%s, date_range=%s, limit=%s, offset=%s)",
            [d.value for d in dimensions], has_date_range, limit, offset,
        )

        return EngagementCompilation(
            data_query=CompiledQuery.from_statement(stmt, limit=limit, offset=offset),
            count_query=CompiledQuery.from_statement(count_stmt),
            has_date_range=has_date_range,
            dimensions=dimensions,
            pagination=pagination if limit is not None else None,
        )

    # -------------------------------------------------------------------------
    # Metric expressions
    # -------------------------------------------------------------------------

    def _metric_expressions(
        self,
        activities: CTE,
        participation: CTE,
        filters: AnalyticsFilters,
    ) -> List[Tuple[Metric, ColumnElement]]:
        if filters.has_date_range:
            start = date_param("start_date", filters.start_date)
            end = date_param("end_date", filters.end_date)
            references = {ReferencePoint.START: start, ReferencePoint.END: end}
        else:
            start = end = None
            references = {ReferencePoint.CURRENT: func.current_date()}

        expressions = []
        for metric in metrics_for(filters.has_date_range):
            expressions.append(
                (metric, self._metric_expression(metric, activities, participation, references, start, end))
            )
        return expressions

    def _metric_expression(
        self,
        metric: Metric,
        activities: CTE,
        participation: CTE,
        references: Dict[ReferencePoint, Any],
        start,
        end,
    ) -> ColumnElement:
        start_day = cast(activities.c.start_date, Date)
        end_day = cast(activities.c.end_date, Date)

        if metric.is_snapshot:
            active = active_on(activities.c.start_date, activities.c.end_date, references[metric.reference])
            if metric.kind == MetricKind.ACTIVITIES:
                return func.count(distinct(activities.c.activity_id)).filter(active)
            if metric.kind == MetricKind.PARTICIPANTS:
                return func.count(distinct(participation.c.participant_id)).filter(active)
            return func.coalesce(func.sum(participation.c.weight).filter(active), 0)

        if metric.kind == MetricKind.STARTED:
            if start is None:
                window = start_day <= func.current_date()
            else:
                window = and_(start_day >= start, start_day <= end)
            return func.count(distinct(activities.c.activity_id)).filter(window)

        if metric.kind == MetricKind.COMPLETED:
            if start is None:
                window = end_day <= func.current_date()
            else:
                window = and_(end_day >= start, end_day <= end)
            return func.count(distinct(activities.c.activity_id)).filter(
                and_(
                    activities.c.status == ActivityStatusEnum.completed,
                    activities.c.end_date.isnot(None),
                    window,
                )
            )

        raise InternalError(details={"metric": metric.name})
