"""
Role Distribution Query Tests (Unit)
====================================

WHAT: SQL shape of the participation-by-role query.
WHY: Bulk attendance must be counted once under the default role and never
multiplied by the number of assignments on the same activity.

REFERENCES:
- engagement_analytics/analytics/role_distribution.py
- engagement_analytics/analytics/compiler.py: build_participation_source
"""

from datetime import date

from engagement_analytics.analytics.filters import AnalyticsFilters, ResolvedAreaScope
from engagement_analytics.analytics.role_distribution import RoleDistributionQueryBuilder


def test_bulk_attendance_attributed_to_default_role():
    query = RoleDistributionQueryBuilder().build(AnalyticsFilters(), default_role_id="role-participant")

    assert "UNION ALL" in query.sql
    assert query.parameters["bulk_role_id"] == "role-participant"


def test_sums_weights_per_role_in_descending_order():
    query = RoleDistributionQueryBuilder().build(AnalyticsFilters(), default_role_id="role-participant")
    sql = query.sql

    assert "sum(participation.weight) AS count" in sql
    assert "GROUP BY participation.role_id" in sql
    assert "ORDER BY count DESC, participation.role_id" in sql
    assert "GROUPING SETS" not in sql
    assert "HAVING" not in sql


def test_missing_default_role_omits_bulk_rows(caplog):
    query = RoleDistributionQueryBuilder().build(AnalyticsFilters(), default_role_id=None)

    assert "UNION ALL" not in query.sql
    assert "bulk_role_id" not in query.parameters
    assert "No default participation role" in caplog.text


def test_current_mode_uses_today():
    query = RoleDistributionQueryBuilder().build(AnalyticsFilters(), default_role_id="r")
    assert "CURRENT_DATE" in query.sql


def test_date_range_uses_overlap():
    filters = AnalyticsFilters(start_date=date(2024, 1, 1), end_date=date(2024, 3, 31))

    query = RoleDistributionQueryBuilder().build(filters, default_role_id="r")

    assert "CURRENT_DATE" not in query.sql
    assert query.parameters["start_date"] == date(2024, 1, 1)
    assert query.parameters["end_date"] == date(2024, 3, 31)


def test_filters_are_applied():
    filters = AnalyticsFilters(
        activity_category_ids=["c-1"],
        population_ids=["p-1"],
    ).with_area_scope(ResolvedAreaScope(area_ids=frozenset({"a-1"})))

    query = RoleDistributionQueryBuilder().build(filters, default_role_id="r")

    assert "JOIN activity_types" in query.sql
    assert "participant_populations" in query.sql
    assert "UNION ALL" not in query.sql
    assert query.parameters["activity_category_ids"] == ["c-1"]
    assert query.parameters["geographic_area_ids"] == ["a-1"]
    assert query.parameters["population_ids"] == ["p-1"]
