"""
Analytics Filter Vocabulary
===========================

**Version**: 1.0.0
**Status**: Active

Request-side structures for the analytics engine: filters, grouping
dimensions, pagination, the resolved geographic scope, and the typed
predicate vocabulary every query builder shares.

WHY THIS FILE EXISTS
--------------------
Three builders (engagement, role distribution, geographic breakdown) apply
the same filters. Keeping the predicates as data, not SQL fragments, means:

    - each predicate can be unit-tested on its own
    - the builders decide joins from the predicate list (lazy joins)
    - values are always bound parameters, never interpolated text

PREDICATE MODEL
---------------
A predicate is one frozen dataclass per kind (a tagged union):

    ActivityTypeIn(ids)        activity.activity_type_id = ANY(:ids)
    ActivityCategoryIn(ids)    activity_type.activity_category_id = ANY(:ids)
    VenueIn(ids)               current venue id = ANY(:ids)
    GeographicAreaIn(ids)      current venue area = ANY(:ids)
    PopulationIn(ids)          participant belongs to a population in :ids
    ActiveOn(reference)        activity active on one date (None = today)
    ActiveDuring(start, end)   activity window overlaps [start, end]

FilterConditionBuilder is immutable: every `with_*` call returns a new
builder with one more predicate, so the accumulated list can never be
mutated behind a caller's back.

GEOGRAPHIC SCOPE
----------------
`AnalyticsFilters.geographic_area_ids` is the raw request list. Builders
never read it. They read `area_scope`, a ResolvedAreaScope that only the
hierarchy resolver produces (see hierarchy.py). A raw list therefore can't
reach SQL without going through authorization and closure expansion.

RELATED FILES
-------------
- engagement_analytics/analytics/validator.py: Validates these structures
- engagement_analytics/analytics/hierarchy.py: Produces ResolvedAreaScope
- engagement_analytics/analytics/compiler.py: Renders predicates to SQL
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple


# =============================================================================
# ENUMS
# =============================================================================

class GroupingDimension(str, Enum):
    """
    Dimensions results can be partitioned by.

    WHAT: The fixed, known set of grouping dimensions.

    WHY: The engine is not a general query planner. Declaration order is
    the canonical order used for SQL columns, index columns and ordering.
    """
    ACTIVITY_TYPE = "activityType"
    ACTIVITY_CATEGORY = "activityCategory"
    GEOGRAPHIC_AREA = "geographicArea"
    VENUE = "venue"

    @property
    def column_key(self) -> str:
        """Result column carrying this dimension's identifier."""
        return _DIMENSION_COLUMNS[self]

    @property
    def index_column(self) -> str:
        """Wire-format column name for this dimension's index."""
        return f"{self.value}Index"

    @property
    def requires_venue(self) -> bool:
        return self in (GroupingDimension.GEOGRAPHIC_AREA, GroupingDimension.VENUE)


_DIMENSION_COLUMNS = {
    GroupingDimension.ACTIVITY_TYPE: "activity_type_id",
    GroupingDimension.ACTIVITY_CATEGORY: "activity_category_id",
    GroupingDimension.GEOGRAPHIC_AREA: "geographic_area_id",
    GroupingDimension.VENUE: "venue_id",
}


def canonical_dimensions(group_by: Optional[List[GroupingDimension]]) -> Tuple[GroupingDimension, ...]:
    """Return the requested dimensions in canonical order, deduplicated."""
    requested = set(group_by or [])
    return tuple(d for d in GroupingDimension if d in requested)


# =============================================================================
# GEOGRAPHIC SCOPE
# =============================================================================

@dataclass(frozen=True)
class ResolvedAreaScope:
    """
    Geographic scope after authorization and descendant expansion.

    WHAT: The area ids a query may match, or "no filter".

    WHY: "No filter" and "match nothing" are different answers. None means
    every area; an empty frozenset means no area at all.

    Construct through GeographicHierarchyResolver, or `unfiltered()` for
    builders that run without a caller context.
    """
    area_ids: Optional[FrozenSet[str]] = None

    @classmethod
    def unfiltered(cls) -> "ResolvedAreaScope":
        return cls(area_ids=None)

    @property
    def is_unfiltered(self) -> bool:
        return self.area_ids is None

    @property
    def matches_nothing(self) -> bool:
        return self.area_ids is not None and len(self.area_ids) == 0

    def sorted_ids(self) -> List[str]:
        return sorted(self.area_ids or ())


# =============================================================================
# REQUEST STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class Pagination:
    """
    Page request.

    Either field may be omitted; when only one is given the other takes
    its default (page 1, page size 100). Both omitted means "no
    pagination" and is represented by passing None instead of a Pagination.
    """
    page: Optional[int] = None
    page_size: Optional[int] = None

    DEFAULT_PAGE = 1
    DEFAULT_PAGE_SIZE = 100

    @property
    def is_requested(self) -> bool:
        return self.page is not None or self.page_size is not None

    @property
    def effective_page(self) -> int:
        return self.page if self.page is not None else self.DEFAULT_PAGE

    @property
    def effective_page_size(self) -> int:
        return self.page_size if self.page_size is not None else self.DEFAULT_PAGE_SIZE

    @property
    def offset(self) -> int:
        return (self.effective_page - 1) * self.effective_page_size


@dataclass(frozen=True)
class AnalyticsFilters:
    """
    Filters for one analytics request.

    WHAT: Date range, id-set filters and grouping dimensions.

    WHY: Built per request and discarded after compilation.

    PARAMETERS:
        start_date / end_date: Both present = snapshot-pair mode
        activity_type_ids, activity_category_ids, venue_ids,
        population_ids: None = no filter; empty lists are rejected by
            the validator
        geographic_area_ids: Raw requested areas (input to the resolver)
        group_by: Requested grouping dimensions
        area_scope: Output of the resolver; the only geographic input
            builders read

    EXAMPLE:
        AnalyticsFilters(
            start_date=date(2024, 1, 10),
            end_date=date(2024, 1, 31),
            activity_type_ids=["type-1"],
            group_by=[GroupingDimension.VENUE],
        )
    """
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    activity_type_ids: Optional[List[str]] = None
    activity_category_ids: Optional[List[str]] = None
    geographic_area_ids: Optional[List[str]] = None
    venue_ids: Optional[List[str]] = None
    population_ids: Optional[List[str]] = None
    group_by: List[GroupingDimension] = field(default_factory=list)
    area_scope: ResolvedAreaScope = field(default_factory=ResolvedAreaScope.unfiltered)

    @property
    def has_date_range(self) -> bool:
        return self.start_date is not None and self.end_date is not None

    def with_area_scope(self, scope: ResolvedAreaScope) -> "AnalyticsFilters":
        return replace(self, area_scope=scope)

    def describe(self) -> str:
        """Short human-readable summary used in telemetry."""
        parts = []
        if self.has_date_range:
            parts.append(f"{self.start_date.isoformat()}..{self.end_date.isoformat()}")
        else:
            parts.append("current")
        for name in ("activity_type_ids", "activity_category_ids", "geographic_area_ids",
                     "venue_ids", "population_ids"):
            values = getattr(self, name)
            if values:
                parts.append(f"{name}={len(values)}")
        if self.group_by:
            parts.append("group_by=" + ",".join(d.value for d in self.group_by))
        return " ".join(parts)


# =============================================================================
# PREDICATES
# =============================================================================

@dataclass(frozen=True)
class Predicate:
    """Base of the predicate tagged union."""
    kind = "predicate"

    @property
    def requires_venue(self) -> bool:
        return False

    @property
    def requires_activity_type(self) -> bool:
        return False


@dataclass(frozen=True)
class ActivityTypeIn(Predicate):
    ids: Tuple[str, ...]
    kind = "activity_type_in"
    param_name = "activity_type_ids"


@dataclass(frozen=True)
class ActivityCategoryIn(Predicate):
    ids: Tuple[str, ...]
    kind = "activity_category_in"
    param_name = "activity_category_ids"

    @property
    def requires_activity_type(self) -> bool:
        return True


@dataclass(frozen=True)
class VenueIn(Predicate):
    ids: Tuple[str, ...]
    kind = "venue_in"
    param_name = "venue_ids"

    @property
    def requires_venue(self) -> bool:
        return True


@dataclass(frozen=True)
class GeographicAreaIn(Predicate):
    ids: Tuple[str, ...]
    kind = "geographic_area_in"
    param_name = "geographic_area_ids"

    @property
    def requires_venue(self) -> bool:
        return True


@dataclass(frozen=True)
class PopulationIn(Predicate):
    """Applies to the participation source, not to the activity rows."""
    ids: Tuple[str, ...]
    kind = "population_in"
    param_name = "population_ids"


@dataclass(frozen=True)
class ActiveOn(Predicate):
    """Activity active on `reference`; None means CURRENT_DATE."""
    reference: Optional[date] = None
    kind = "active_on"


@dataclass(frozen=True)
class ActiveDuring(Predicate):
    """Activity window overlaps the inclusive range [start, end]."""
    start: date
    end: date
    kind = "active_during"


ACTIVITY_ID_PREDICATES = (ActivityTypeIn, ActivityCategoryIn, VenueIn, GeographicAreaIn)


# =============================================================================
# IMMUTABLE BUILDER
# =============================================================================

@dataclass(frozen=True)
class FilterConditionBuilder:
    """
    Immutable accumulator of predicates.

    WHAT: Collects the predicates a request implies.

    WHY: Each `with_*` returns a new builder, so a partially built list can
    be shared between the data query and the count query without risk.

    USAGE:
        conditions = FilterConditionBuilder.from_filters(filters)
        if conditions.requires_venue:
            ...join current venue...
    """
    predicates: Tuple[Predicate, ...] = ()

    def _with(self, predicate: Predicate) -> "FilterConditionBuilder":
        return FilterConditionBuilder(predicates=self.predicates + (predicate,))

    def with_activity_types(self, ids: Optional[List[str]]) -> "FilterConditionBuilder":
        return self._with(ActivityTypeIn(tuple(ids))) if ids else self

    def with_activity_categories(self, ids: Optional[List[str]]) -> "FilterConditionBuilder":
        return self._with(ActivityCategoryIn(tuple(ids))) if ids else self

    def with_venues(self, ids: Optional[List[str]]) -> "FilterConditionBuilder":
        return self._with(VenueIn(tuple(ids))) if ids else self

    def with_area_scope(self, scope: ResolvedAreaScope) -> "FilterConditionBuilder":
        # An empty scope still produces a predicate: it must match nothing.
        if scope.is_unfiltered:
            return self
        return self._with(GeographicAreaIn(tuple(scope.sorted_ids())))

    def with_populations(self, ids: Optional[List[str]]) -> "FilterConditionBuilder":
        return self._with(PopulationIn(tuple(ids))) if ids else self

    def with_active_on(self, reference: Optional[date] = None) -> "FilterConditionBuilder":
        return self._with(ActiveOn(reference))

    def with_active_during(self, start: date, end: date) -> "FilterConditionBuilder":
        return self._with(ActiveDuring(start, end))

    @classmethod
    def from_filters(cls, filters: AnalyticsFilters) -> "FilterConditionBuilder":
        """Id-set predicates for a request (no temporal predicate)."""
        return (
            cls()
            .with_activity_types(filters.activity_type_ids)
            .with_activity_categories(filters.activity_category_ids)
            .with_venues(filters.venue_ids)
            .with_area_scope(filters.area_scope)
            .with_populations(filters.population_ids)
        )

    @property
    def activity_predicates(self) -> Tuple[Predicate, ...]:
        """Predicates evaluated against activity rows."""
        return tuple(p for p in self.predicates if not isinstance(p, PopulationIn))

    @property
    def population(self) -> Optional[PopulationIn]:
        for p in self.predicates:
            if isinstance(p, PopulationIn):
                return p
        return None

    @property
    def requires_venue(self) -> bool:
        return any(p.requires_venue for p in self.predicates)

    @property
    def requires_activity_type(self) -> bool:
        return any(p.requires_activity_type for p in self.predicates)
