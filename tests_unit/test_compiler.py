"""
Engagement Query Compiler Tests (Unit)
======================================

WHAT: Asserts on the PostgreSQL text and parameters produced for
engagement requests.
WHY: Metric correctness lives in the SQL. These tests pin the query shape
(grouping sets, filtered aggregates, lazy joins, pagination) without a
database.

NOTE:
Statements are compiled with the PostgreSQL dialect only; nothing here
connects to a database.

REFERENCES:
- engagement_analytics/analytics/compiler.py
"""

from datetime import date

import pytest

from engagement_analytics.analytics.compiler import (
    CompiledQuery,
    EngagementQueryCompiler,
    build_filtered_activities,
    build_participation_source,
    render_predicate,
)
from engagement_analytics.analytics.errors import InternalError, ValidationError
from engagement_analytics.analytics.filters import (
    AnalyticsFilters,
    FilterConditionBuilder,
    GroupingDimension,
    Pagination,
    Predicate,
    ResolvedAreaScope,
)
from engagement_analytics.analytics.model import CURRENT_METRICS, DATE_RANGE_METRICS


JANUARY = dict(start_date=date(2024, 1, 10), end_date=date(2024, 1, 31))


@pytest.fixture
def compiler():
    return EngagementQueryCompiler()


def _positions(sql, names):
    return [sql.index(f'"{name}"') for name in names]


class TestMetricColumns:
    def test_date_range_selects_eight_metrics_in_order(self, compiler):
        compilation = compiler.compile(AnalyticsFilters(**JANUARY))
        sql = compilation.data_query.sql

        names = [m.name for m in DATE_RANGE_METRICS]
        assert compilation.has_date_range
        assert compilation.metric_names == names
        positions = _positions(sql, names)
        assert positions == sorted(positions)

    def test_current_mode_selects_five_metrics(self, compiler):
        compilation = compiler.compile(AnalyticsFilters())
        sql = compilation.data_query.sql

        assert not compilation.has_date_range
        assert compilation.metric_names == [m.name for m in CURRENT_METRICS]
        assert '"activeActivities"' in sql
        assert '"activitiesAtStart"' not in sql
        assert "CURRENT_DATE" in sql

    def test_lone_start_date_is_current_mode(self, compiler):
        compilation = compiler.compile(AnalyticsFilters(start_date=date(2024, 1, 1)))
        assert not compilation.has_date_range
        assert "start_date" not in compilation.data_query.parameters

    def test_counts_are_distinct_filtered_aggregates(self, compiler):
        sql = compiler.compile(AnalyticsFilters(**JANUARY)).data_query.sql.lower()
        assert "count(distinct filtered_activities.activity_id) filter (where" in sql
        assert "count(distinct participation.participant_id) filter (where" in sql
        assert "coalesce(sum(participation.weight) filter (where" in sql

    def test_snapshot_boundaries_are_inclusive_calendar_dates(self, compiler):
        compilation = compiler.compile(AnalyticsFilters(**JANUARY))
        sql = compilation.data_query.sql

        assert "CAST(filtered_activities.start_date AS DATE) <= %(start_date)s" in sql
        assert "CAST(filtered_activities.end_date AS DATE) >= %(end_date)s" in sql
        assert "filtered_activities.end_date IS NULL" in sql
        assert compilation.data_query.parameters["start_date"] == date(2024, 1, 10)
        assert compilation.data_query.parameters["end_date"] == date(2024, 1, 31)

    def test_completed_requires_status_and_end_date(self, compiler):
        sql = compiler.compile(AnalyticsFilters(**JANUARY)).data_query.sql
        assert "filtered_activities.status =" in sql
        assert "filtered_activities.end_date IS NOT NULL" in sql


class TestGrouping:
    def test_ungrouped_has_no_group_by(self, compiler):
        compilation = compiler.compile(AnalyticsFilters(**JANUARY))
        sql = compilation.data_query.sql

        assert compilation.dimensions == ()
        assert "GROUP BY" not in sql
        assert "HAVING" not in sql

    def test_grouped_uses_grouping_sets_with_total(self, compiler):
        filters = AnalyticsFilters(group_by=[GroupingDimension.ACTIVITY_TYPE], **JANUARY)
        sql = compiler.compile(filters).data_query.sql

        assert "GROUPING SETS((filtered_activities.activity_type_id), ())" in sql
        assert "HAVING grouping(filtered_activities.activity_type_id) =" in sql
        assert "ORDER BY grouping(filtered_activities.activity_type_id) DESC" in sql
        assert "NULLS FIRST" in sql

    def test_grouped_query_selects_grouping_mask(self, compiler):
        filters = AnalyticsFilters(group_by=[GroupingDimension.VENUE], **JANUARY)
        sql = compiler.compile(filters).data_query.sql

        assert "grouping(filtered_activities.venue_id) AS grouping_mask" in sql

    def test_ungrouped_query_has_no_grouping_mask(self, compiler):
        sql = compiler.compile(AnalyticsFilters(**JANUARY)).data_query.sql
        assert "grouping_mask" not in sql

    def test_total_row_mask_covers_every_dimension(self, compiler):
        filters = AnalyticsFilters(
            group_by=[GroupingDimension.VENUE, GroupingDimension.ACTIVITY_TYPE], **JANUARY
        )
        compilation = compiler.compile(filters)
        assert 3 in compilation.data_query.parameters.values()

    def test_dimensions_follow_canonical_order(self, compiler):
        filters = AnalyticsFilters(group_by=[GroupingDimension.VENUE, GroupingDimension.ACTIVITY_TYPE])
        compilation = compiler.compile(filters)
        sql = compilation.data_query.sql

        assert compilation.dimensions == (GroupingDimension.ACTIVITY_TYPE, GroupingDimension.VENUE)
        assert sql.index("AS activity_type_id") < sql.index("AS venue_id")

    def test_explicit_group_by_overrides_filters(self, compiler):
        compilation = compiler.compile(AnalyticsFilters(), [GroupingDimension.ACTIVITY_CATEGORY])
        assert compilation.dimensions == (GroupingDimension.ACTIVITY_CATEGORY,)


class TestLazyJoins:
    def test_no_category_means_no_activity_types_join(self, compiler):
        sql = compiler.compile(AnalyticsFilters(activity_type_ids=["t-1"])).data_query.sql
        assert "JOIN activity_types" not in sql

    def test_category_filter_joins_activity_types(self, compiler):
        compilation = compiler.compile(AnalyticsFilters(activity_category_ids=["c-1"]))
        assert "JOIN activity_types" in compilation.data_query.sql
        assert compilation.data_query.parameters["activity_category_ids"] == ["c-1"]

    def test_category_grouping_joins_activity_types(self, compiler):
        sql = compiler.compile(AnalyticsFilters(group_by=[GroupingDimension.ACTIVITY_CATEGORY])).data_query.sql
        assert "JOIN activity_types" in sql

    def test_no_venue_need_means_no_venue_history(self, compiler):
        sql = compiler.compile(AnalyticsFilters(**JANUARY)).data_query.sql
        assert "activity_venue_history" not in sql

    def test_venue_grouping_left_joins_current_venue(self, compiler):
        sql = compiler.compile(AnalyticsFilters(group_by=[GroupingDimension.VENUE])).data_query.sql
        assert "LEFT OUTER JOIN (SELECT avh.activity_id" in sql
        assert "NOT (EXISTS" in sql
        assert "current_venue" in sql

    def test_area_scope_filters_on_current_venue_area(self, compiler):
        filters = AnalyticsFilters().with_area_scope(ResolvedAreaScope(area_ids=frozenset({"a-2", "a-1"})))
        compilation = compiler.compile(filters)

        assert "current_venue.geographic_area_id = ANY (%(geographic_area_ids)s" in compilation.data_query.sql
        assert compilation.data_query.parameters["geographic_area_ids"] == ["a-1", "a-2"]

    def test_empty_area_scope_binds_empty_array(self, compiler):
        filters = AnalyticsFilters().with_area_scope(ResolvedAreaScope(area_ids=frozenset()))
        compilation = compiler.compile(filters)
        assert compilation.data_query.parameters["geographic_area_ids"] == []


class TestFilterParameters:
    def test_ids_are_bound_arrays(self, compiler):
        compilation = compiler.compile(
            AnalyticsFilters(activity_type_ids=["t-1", "t-2"], venue_ids=["v-1"])
        )
        sql = compilation.data_query.sql

        assert "filtered_activities" in sql
        assert "t-1" not in sql
        assert compilation.data_query.parameters["activity_type_ids"] == ["t-1", "t-2"]
        assert compilation.data_query.parameters["venue_ids"] == ["v-1"]

    def test_date_range_restricts_activities_to_overlap(self, compiler):
        sql = compiler.compile(AnalyticsFilters(**JANUARY)).data_query.sql
        assert "CAST(activities.start_date AS DATE) <= %(end_date)s" in sql
        assert "CAST(activities.end_date AS DATE) >= %(start_date)s" in sql


class TestParticipationSource:
    def test_bulk_rows_are_unioned(self, compiler):
        sql = compiler.compile(AnalyticsFilters()).data_query.sql
        assert "UNION ALL" in sql
        assert "additional_participant_count >" in sql
        assert "1 AS weight" in sql
        assert "LEFT OUTER JOIN participation" in sql

    def test_population_filter_drops_bulk_rows(self, compiler):
        compilation = compiler.compile(AnalyticsFilters(population_ids=["p-1"]))
        sql = compilation.data_query.sql

        assert "UNION ALL" not in sql
        assert "participant_populations" in sql
        assert "JOIN participation" in sql
        assert "LEFT OUTER JOIN participation" not in sql
        assert compilation.data_query.parameters["population_ids"] == ["p-1"]

    def test_bulk_role_is_bound(self):
        activities = build_filtered_activities(FilterConditionBuilder())
        participation = build_participation_source(activities, bulk_role_id="role-1")
        compiled = CompiledQuery.from_statement(participation.select())
        assert compiled.parameters["bulk_role_id"] == "role-1"

    def test_excluding_bulk_rows(self):
        activities = build_filtered_activities(FilterConditionBuilder())
        participation = build_participation_source(activities, include_bulk=False)
        compiled = CompiledQuery.from_statement(participation.select())
        assert "UNION ALL" not in compiled.sql


class TestPagination:
    def test_limit_and_offset(self, compiler):
        compilation = compiler.compile(AnalyticsFilters(**JANUARY), pagination=Pagination(page=2, page_size=50))

        assert compilation.data_query.limit == 50
        assert compilation.data_query.offset == 50
        assert "LIMIT" in compilation.data_query.sql
        assert "OFFSET" in compilation.data_query.sql
        assert compilation.pagination == Pagination(page=2, page_size=50)

    def test_only_page_size_starts_at_first_page(self, compiler):
        compilation = compiler.compile(AnalyticsFilters(), pagination=Pagination(page_size=25))
        assert compilation.data_query.limit == 25
        assert compilation.data_query.offset == 0

    def test_no_pagination(self, compiler):
        compilation = compiler.compile(AnalyticsFilters())
        assert compilation.data_query.limit is None
        assert "LIMIT" not in compilation.data_query.sql
        assert compilation.pagination is None

    def test_count_query_is_unpaginated(self, compiler):
        filters = AnalyticsFilters(group_by=[GroupingDimension.VENUE], **JANUARY)
        compilation = compiler.compile(filters, pagination=Pagination(page=3, page_size=10))
        sql = compilation.count_query.sql

        assert "count(*) AS total_count" in sql
        assert "LIMIT" not in sql
        assert "ORDER BY" not in sql
        assert "GROUPING SETS" in sql

    def test_invalid_pagination_rejected_before_compiling(self, compiler):
        with pytest.raises(ValidationError):
            compiler.compile(AnalyticsFilters(), pagination=Pagination(page=0))


def test_unknown_predicate_is_internal_error():
    class Unsupported(Predicate):
        kind = "unsupported"

    with pytest.raises(InternalError):
        render_predicate(Unsupported(), {})
