"""
Analytics Request Validator Tests (Unit)
========================================

WHAT: Pagination, id-filter, date-range and grouping checks.
WHY: Bad requests must fail with VALIDATION_ERROR and the offending field,
never as a database error or a silently empty result.

REFERENCES:
- engagement_analytics/analytics/validator.py
"""

from datetime import date

import pytest

from engagement_analytics.analytics.errors import ErrorCode, ValidationError
from engagement_analytics.analytics.filters import AnalyticsFilters, GroupingDimension, Pagination
from engagement_analytics.analytics.validator import AnalyticsRequestValidator


@pytest.fixture
def validator():
    return AnalyticsRequestValidator()


class TestPagination:
    def test_page_zero_rejected(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_or_raise(AnalyticsFilters(), Pagination(page=0, page_size=10))
        assert exc_info.value.field_name == "page"
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        assert exc_info.value.status_code == 400

    def test_page_size_above_maximum_rejected(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_or_raise(AnalyticsFilters(), Pagination(page=1, page_size=1001))
        assert exc_info.value.field_name == "pageSize"
        assert "between 1 and 1000" in exc_info.value.message

    def test_page_size_zero_rejected(self, validator):
        with pytest.raises(ValidationError):
            validator.validate_or_raise(AnalyticsFilters(), Pagination(page_size=0))

    def test_boundaries_accepted(self, validator):
        validator.validate_or_raise(AnalyticsFilters(), Pagination(page=1, page_size=1))
        validator.validate_or_raise(AnalyticsFilters(), Pagination(page=1, page_size=1000))

    def test_custom_maximum(self):
        validator = AnalyticsRequestValidator(max_page_size=50)
        with pytest.raises(ValidationError):
            validator.validate_or_raise(AnalyticsFilters(), Pagination(page_size=51))

    def test_non_integer_page_rejected(self, validator):
        with pytest.raises(ValidationError):
            validator.validate_or_raise(AnalyticsFilters(), Pagination(page=True))

    def test_no_pagination_is_valid(self, validator):
        validator.validate_or_raise(AnalyticsFilters(), None)

    def test_validate_pagination_only(self, validator):
        validator.validate_pagination(None)
        with pytest.raises(ValidationError):
            validator.validate_pagination(Pagination(page=-1))


class TestIdFilters:
    @pytest.mark.parametrize(
        "attr, field_name",
        [
            ("activity_type_ids", "activityTypeIds"),
            ("activity_category_ids", "activityCategoryIds"),
            ("geographic_area_ids", "geographicAreaIds"),
            ("venue_ids", "venueIds"),
            ("population_ids", "populationIds"),
        ],
    )
    def test_empty_array_rejected(self, validator, attr, field_name):
        filters = AnalyticsFilters(**{attr: []})
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_or_raise(filters)
        assert exc_info.value.field_name == field_name
        assert "cannot be empty array" in exc_info.value.message

    def test_blank_identifier_rejected(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_or_raise(AnalyticsFilters(venue_ids=["v-1", ""]))
        assert exc_info.value.field_name == "venueIds"

    def test_omitted_filters_are_valid(self, validator):
        validator.validate_or_raise(AnalyticsFilters(activity_type_ids=None))


class TestDateRange:
    def test_inverted_range_rejected(self, validator):
        filters = AnalyticsFilters(start_date=date(2024, 2, 1), end_date=date(2024, 1, 1))
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_or_raise(filters)
        assert exc_info.value.field_name == "startDate"

    def test_single_day_range_is_valid(self, validator):
        filters = AnalyticsFilters(start_date=date(2024, 1, 1), end_date=date(2024, 1, 1))
        validator.validate_or_raise(filters)

    def test_lone_start_date_is_valid(self, validator):
        validator.validate_or_raise(AnalyticsFilters(start_date=date(2024, 1, 1)))


class TestGrouping:
    def test_duplicate_dimension_rejected(self, validator):
        filters = AnalyticsFilters(group_by=[GroupingDimension.VENUE, GroupingDimension.VENUE])
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_or_raise(filters)
        assert exc_info.value.field_name == "groupBy"

    def test_unknown_dimension_rejected(self, validator):
        filters = AnalyticsFilters(group_by=["region"])
        with pytest.raises(ValidationError) as exc_info:
            validator.validate_or_raise(filters)
        assert exc_info.value.field_name == "groupBy"


def test_every_issue_is_reported(validator):
    filters = AnalyticsFilters(
        venue_ids=[],
        start_date=date(2024, 2, 1),
        end_date=date(2024, 1, 1),
    )

    result = validator.validate(filters, Pagination(page=0))

    assert not result.valid
    assert [issue.field for issue in result.issues] == ["page", "venueIds", "startDate"]
    error = result.to_error()
    assert error.field_name == "page"
    assert len(error.details["issues"]) == 3


def test_user_payload_has_no_cause(validator):
    with pytest.raises(ValidationError) as exc_info:
        validator.validate_or_raise(AnalyticsFilters(venue_ids=[]))
    payload = exc_info.value.user_payload()
    assert payload["error"]["code"] == "VALIDATION_ERROR"
    assert payload["error"]["field"] == "venueIds"
    assert "cause" not in payload["error"]
