"""
Analytics Request Validator
===========================

**Version**: 1.0.0
**Status**: Active

Rejects malformed analytics requests before any query is compiled or any
I/O happens.

WHY THIS FILE EXISTS
--------------------
The store would reject some bad input on its own (negative OFFSET), and
silently accept other bad input (an empty id list matching nothing). Both
are caller mistakes and must surface as ValidationError with the offending
field, not as a database error or an empty result.

CHECKS
------
1. Pagination
   - page, when given, is an integer >= 1
   - pageSize, when given, is an integer in [1, max_page_size]
2. Filters
   - id-set filters may be omitted but never present-and-empty
   - startDate <= endDate when both are given
3. Grouping
   - every dimension is a known GroupingDimension
   - no dimension is requested twice

All problems are collected first and reported together, so a caller
fixing a request sees every issue at once.

RELATED FILES
-------------
- engagement_analytics/analytics/errors.py: ValidationError
- engagement_analytics/analytics/filters.py: Structures being validated
- engagement_analytics/analytics/service.py: Calls validate_or_raise first
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from engagement_analytics.analytics.errors import ValidationError
from engagement_analytics.analytics.filters import (
    AnalyticsFilters,
    GroupingDimension,
    Pagination,
)


# =============================================================================
# LOGGING SETUP
# =============================================================================

logger = logging.getLogger(__name__)


MAX_PAGE_SIZE = 1000

ID_FILTER_FIELDS = {
    "activity_type_ids": "activityTypeIds",
    "activity_category_ids": "activityCategoryIds",
    "geographic_area_ids": "geographicAreaIds",
    "venue_ids": "venueIds",
    "population_ids": "populationIds",
}


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationIssue:
    """
    A single problem found in a request.

    ATTRIBUTES:
        field: Request field (camelCase, as the caller sent it)
        message: Human-readable description
        value: Offending value, when safe to echo
    """
    field: str
    message: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"field": self.field, "message": self.message}
        if self.value is not None:
            result["value"] = self.value
        return result


@dataclass
class ValidationResult:
    """
    Outcome of validating one request.

    USAGE:
        result = validator.validate(filters, pagination)
        if not result.valid:
            raise result.to_error()
    """
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.issues

    def add(self, field_name: str, message: str, value: Any = None) -> None:
        self.issues.append(ValidationIssue(field=field_name, message=message, value=value))

    def to_error(self) -> ValidationError:
        """Build the ValidationError for the first issue, listing all of them."""
        first = self.issues[0]
        return ValidationError(
            message=first.message,
            field_name=first.field,
            details={"issues": [i.to_dict() for i in self.issues]},
        )


# =============================================================================
# VALIDATOR
# =============================================================================

class AnalyticsRequestValidator:
    """
    Validates filters and pagination for every analytics operation.

    WHAT: Pure checks over request structures; no I/O.

    WHY: Validation errors must be raised before compilation or execution.

    USAGE:
        validator = AnalyticsRequestValidator()
        validator.validate_or_raise(filters, pagination)
    """

    def __init__(self, max_page_size: int = MAX_PAGE_SIZE):
        self.max_page_size = max_page_size

    def validate(
        self,
        filters: AnalyticsFilters,
        pagination: Optional[Pagination] = None,
    ) -> ValidationResult:
        result = ValidationResult()

        if pagination is not None:
            self._validate_pagination(pagination, result)

        self._validate_id_filters(filters, result)
        self._validate_date_range(filters, result)
        self._validate_grouping(filters.group_by, result)

        if not result.valid:
            logger.info(
                "[ANALYTICS] Request validation failed",
                extra={"issues": [i.to_dict() for i in result.issues]},
            )
        return result

    def validate_or_raise(
        self,
        filters: AnalyticsFilters,
        pagination: Optional[Pagination] = None,
    ) -> None:
        result = self.validate(filters, pagination)
        if not result.valid:
            raise result.to_error()

    def validate_pagination(self, pagination: Optional[Pagination]) -> None:
        """Pagination-only check, used by builders as a last line of defence."""
        if pagination is None:
            return
        result = ValidationResult()
        self._validate_pagination(pagination, result)
        if not result.valid:
            raise result.to_error()

    # -------------------------------------------------------------------------
    # Individual checks
    # -------------------------------------------------------------------------

    def _validate_pagination(self, pagination: Pagination, result: ValidationResult) -> None:
        page = pagination.page
        if page is not None and (not _is_int(page) or page < 1):
            result.add("page", "Invalid pagination: page must be a positive integer", page)

        page_size = pagination.page_size
        if page_size is not None and (
            not _is_int(page_size) or page_size < 1 or page_size > self.max_page_size
        ):
            result.add(
                "pageSize",
                f"Invalid pagination: pageSize must be between 1 and {self.max_page_size}",
                page_size,
            )

    def _validate_id_filters(self, filters: AnalyticsFilters, result: ValidationResult) -> None:
        for attr, field_name in ID_FILTER_FIELDS.items():
            values = getattr(filters, attr)
            if values is None:
                continue
            if len(values) == 0:
                result.add(field_name, f"{field_name} filter cannot be empty array")
                continue
            if any(not isinstance(v, str) or not v for v in values):
                result.add(field_name, f"{field_name} must contain non-empty string identifiers")

    def _validate_date_range(self, filters: AnalyticsFilters, result: ValidationResult) -> None:
        if filters.start_date and filters.end_date and filters.start_date > filters.end_date:
            result.add(
                "startDate",
                "Invalid date range: startDate must be before endDate",
                {"startDate": filters.start_date.isoformat(), "endDate": filters.end_date.isoformat()},
            )

    def _validate_grouping(self, group_by: List[GroupingDimension], result: ValidationResult) -> None:
        seen = set()
        for dimension in group_by or []:
            if not isinstance(dimension, GroupingDimension):
                result.add("groupBy", f"Unsupported grouping dimension: {dimension}", str(dimension))
                continue
            if dimension in seen:
                result.add("groupBy", f"Grouping dimension requested twice: {dimension.value}", dimension.value)
            seen.add(dimension)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
