"""
Wire-Format Transformer
=======================

**Version**: 1.0.0
**Status**: Active

Compresses grouped result rows into the compact wire format the dashboards
consume.

WHY THIS FILE EXISTS
--------------------
A grouped result repeats the same identifiers on many rows. Sending names
inline would multiply payload size; sending rows as objects would repeat
every key. The wire format sends each name once and every row as a flat
array of numbers.

FORMAT
------
    {
      "data": [[0, -1, 3, 5, 7, ...], ...],
      "lookups": {
        "activityTypes": [{"id": "t-1", "name": "Study Circle"}],
        "venues": [{"id": "v-1", "name": "Community Hall"}]
      },
      "metadata": {
        "columns": ["activityTypeIndex", "venueIndex", "activitiesAtStart", ...],
        "groupingDimensions": ["activityType", "venue"],
        "hasDateRange": true,
        "pagination": {"page": 1, "pageSize": 100, "totalRecords": 12,
                       "totalPages": 1, "hasNextPage": false,
                       "hasPreviousPage": false}
      }
    }

Each row holds one index per requested dimension (canonical order) and
then the metrics in the fixed order for the mode. An index points into
that dimension's lookup array; -1 means the dimension is aggregated away
(the total row). Activities with no value for a dimension (an activity
without a venue) form a real group: it gets a lookup entry with a null id
and a "No Venue" style name, told apart from the total row by the
GROUPING() mask the compiler selects. Lookup arrays are deduplicated and
ordered by first appearance in the rows.

Role distribution, geographic breakdown and growth results use the same
idea with their own columns (see `transform_roles`, `transform_geographic`
and `transform_growth`).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from engagement_analytics.analytics.filters import GroupingDimension, canonical_dimensions
from engagement_analytics.analytics.growth import GROWTH_METRICS, GrowthCompilation
from engagement_analytics.analytics.model import GROUPING_MASK_COLUMN, get_dimension, metric_names


UNKNOWN_ROLE = "Unknown Role"
UNKNOWN_AREA = "Unknown Geographic Area"

ROLE_COLUMNS = ["roleIndex", "count"]
GEOGRAPHIC_COLUMNS = ["geographicAreaIndex", "activityCount", "participantCount", "participationCount"]


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class PaginationMetadata:
    page: int
    page_size: int
    total_records: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page": self.page,
            "pageSize": self.page_size,
            "totalRecords": self.total_records,
            "totalPages": self.total_pages,
            "hasNextPage": self.has_next_page,
            "hasPreviousPage": self.has_previous_page,
        }


@dataclass
class WireResult:
    """
    Compact engagement result.

    ATTRIBUTES:
        data: Flat numeric rows
        lookups: Lookup arrays keyed by dimension lookup key
        columns: Name of every row position
        grouping_dimensions: Requested dimensions, canonical order
        has_date_range: Snapshot-pair or current-snapshot mode
        pagination: Pagination bookkeeping
    """
    data: List[List[Any]]
    lookups: Dict[str, List[Dict[str, str]]]
    columns: List[str]
    grouping_dimensions: List[GroupingDimension]
    has_date_range: bool
    pagination: PaginationMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "lookups": self.lookups,
            "metadata": {
                "columns": self.columns,
                "groupingDimensions": [d.value for d in self.grouping_dimensions],
                "hasDateRange": self.has_date_range,
                "pagination": self.pagination.to_dict(),
            },
        }


@dataclass
class RoleDistributionResult:
    data: List[List[Any]]
    roles: List[Dict[str, str]]
    columns: List[str] = field(default_factory=lambda: list(ROLE_COLUMNS))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "lookups": {"roles": self.roles},
            "metadata": {"columns": self.columns},
        }


@dataclass
class GeographicBreakdownResult:
    data: List[List[Any]]
    areas: List[Dict[str, Any]]
    pagination: PaginationMetadata
    columns: List[str] = field(default_factory=lambda: list(GEOGRAPHIC_COLUMNS))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "lookups": {"geographicAreas": self.areas},
            "metadata": {
                "columns": self.columns,
                "pagination": self.pagination.to_dict(),
            },
        }


@dataclass
class GrowthResult:
    """
    Growth time series.

    ATTRIBUTES:
        data: [periodIndex, <dimension indexes>, metrics..., percentageChange]
        periods: Period windows referenced by periodIndex
        lookups: Lookup arrays keyed by dimension lookup key
        compilation: The compiled growth request (period, range, dimensions)
    """
    data: List[List[Any]]
    periods: List[Dict[str, str]]
    lookups: Dict[str, List[Dict[str, str]]]
    columns: List[str]
    compilation: GrowthCompilation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "lookups": {"periods": self.periods, **self.lookups},
            "metadata": {
                "columns": self.columns,
                "period": self.compilation.period.value,
                "groupingDimensions": [d.value for d in self.compilation.dimensions],
                "startDate": self.compilation.start_date.isoformat(),
                "endDate": self.compilation.end_date.isoformat(),
            },
        }


# =============================================================================
# PAGINATION
# =============================================================================

def build_pagination_metadata(
    total_count: int,
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> PaginationMetadata:
    """
    Pagination bookkeeping.

    Without pagination the whole result is one page. With only one of
    page/page_size given, the other takes its default (1 / 100).
    """
    if page is None and page_size is None:
        return PaginationMetadata(
            page=1,
            page_size=total_count,
            total_records=total_count,
            total_pages=1,
            has_next_page=False,
            has_previous_page=False,
        )

    page = page if page is not None else 1
    page_size = page_size if page_size is not None else 100
    total_pages = math.ceil(total_count / page_size) if page_size else 0
    return PaginationMetadata(
        page=page,
        page_size=page_size,
        total_records=total_count,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_previous_page=page > 1,
    )


# =============================================================================
# INDEXING
# =============================================================================

class _LookupIndex:
    """First-appearance index of identifiers, with names resolved lazily."""

    def __init__(self, names: Mapping[str, str], unknown_label: str, missing_label: Optional[str] = None):
        self._names = names
        self._unknown_label = unknown_label
        self._missing_label = missing_label
        self._missing_position: Optional[int] = None
        self._positions: Dict[str, int] = {}
        self.entries: List[Dict[str, str]] = []

    def index_of(self, identifier: Optional[str]) -> int:
        if identifier is None:
            return -1
        position = self._positions.get(identifier)
        if position is None:
            position = len(self.entries)
            self._positions[identifier] = position
            self.entries.append({
                "id": identifier,
                "name": self._names.get(identifier) or self._unknown_label,
            })
        return position

    def index_of_missing(self) -> int:
        if self._missing_position is None:
            self._missing_position = len(self.entries)
            self.entries.append({"id": None, "name": self._missing_label or self._unknown_label})
        return self._missing_position


def _metric_value(value: Any) -> Any:
    return 0 if value is None else value


def _is_aggregated(mask: int, position: int, dimension_count: int) -> bool:
    """GROUPING(a, b, c) sets the highest bit for a, the lowest for c."""
    return bool(mask >> (dimension_count - 1 - position) & 1)


def _percentage_change(previous: Optional[int], current: int) -> Optional[float]:
    """Change against the previous period in percent; None without a base."""
    if not previous:
        return None
    return round((current - previous) / previous * 100, 2)


# =============================================================================
# TRANSFORMER
# =============================================================================

class WireFormatTransformer:
    """
    Builds wire-format payloads from executor rows.

    USAGE:
        wire = WireFormatTransformer().transform(
            rows, lookups, [GroupingDimension.VENUE],
            has_date_range=True, total_count=12, page=1, page_size=50,
        )
        payload = wire.to_dict()
    """

    def transform(
        self,
        rows: Sequence[Mapping[str, Any]],
        lookups: Mapping[GroupingDimension, Mapping[str, str]],
        group_by: Sequence[GroupingDimension],
        has_date_range: bool,
        total_count: int,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> WireResult:
        dimensions = canonical_dimensions(list(group_by))
        metrics = metric_names(has_date_range)

        indexes = {
            d: _LookupIndex(
                lookups.get(d, {}), get_dimension(d).unknown_label, get_dimension(d).missing_label
            )
            for d in dimensions
        }

        data = []
        for row in rows:
            mask = row.get(GROUPING_MASK_COLUMN)
            encoded = []
            for position, d in enumerate(dimensions):
                identifier = row.get(d.column_key)
                if identifier is not None:
                    encoded.append(indexes[d].index_of(identifier))
                elif mask is None or _is_aggregated(mask, position, len(dimensions)):
                    encoded.append(-1)
                else:
                    encoded.append(indexes[d].index_of_missing())
            encoded.extend(_metric_value(row.get(name)) for name in metrics)
            data.append(encoded)

        return WireResult(
            data=data,
            lookups={get_dimension(d).lookup_key: indexes[d].entries for d in dimensions},
            columns=[d.index_column for d in dimensions] + metrics,
            grouping_dimensions=list(dimensions),
            has_date_range=has_date_range,
            pagination=build_pagination_metadata(total_count, page, page_size),
        )

    def transform_roles(
        self,
        rows: Sequence[Mapping[str, Any]],
        role_names: Mapping[str, str],
    ) -> RoleDistributionResult:
        index = _LookupIndex(role_names, UNKNOWN_ROLE)
        data = [
            [index.index_of(row["role_id"]), _metric_value(row.get("count"))]
            for row in rows
        ]
        return RoleDistributionResult(data=data, roles=index.entries)

    def transform_geographic(
        self,
        rows: Sequence[Mapping[str, Any]],
        areas: Mapping[str, Mapping[str, Any]],
        total_count: int,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> GeographicBreakdownResult:
        """
        `areas` maps area id to {"name", "areaType", "hasChildren"}; entries
        in the lookup array carry those fields.
        """
        positions: Dict[str, int] = {}
        entries: List[Dict[str, Any]] = []
        data = []

        for row in rows:
            area_id = row["area_id"]
            if area_id not in positions:
                positions[area_id] = len(entries)
                info = areas.get(area_id) or {}
                entries.append({
                    "id": area_id,
                    "name": info.get("name") or UNKNOWN_AREA,
                    "areaType": info.get("areaType"),
                    "hasChildren": bool(info.get("hasChildren", False)),
                })
            data.append([
                positions[area_id],
                _metric_value(row.get("activity_count")),
                _metric_value(row.get("participant_count")),
                _metric_value(row.get("participation_count")),
            ])

        return GeographicBreakdownResult(
            data=data,
            areas=entries,
            pagination=build_pagination_metadata(total_count, page, page_size),
        )

    def transform_growth(
        self,
        rows: Sequence[Mapping[str, Any]],
        lookups: Mapping[GroupingDimension, Mapping[str, str]],
        compilation: GrowthCompilation,
    ) -> GrowthResult:
        """
        One row per period and group, zero-filled.

        Ungrouped, every period appears once. Grouped, every group seen in
        any period appears in every period; the empty-period rows the
        query emits (no activity, null dimensions) are not groups.
        percentageChange compares uniqueParticipants with the previous
        period of the same group.
        """
        dimensions = list(compilation.dimensions)
        indexes = {
            d: _LookupIndex(
                lookups.get(d, {}), get_dimension(d).unknown_label, get_dimension(d).missing_label
            )
            for d in dimensions
        }

        by_period: Dict[int, Dict[tuple, Mapping[str, Any]]] = {}
        groups: List[tuple] = []
        for row in rows:
            if dimensions and not row.get("uniqueActivities"):
                continue
            group = tuple(row.get(d.column_key) for d in dimensions)
            by_period.setdefault(row["period_index"], {})[group] = row
            if group not in groups:
                groups.append(group)
        if not dimensions:
            groups = [()]

        encoded_groups = {
            group: [
                indexes[d].index_of(identifier) if identifier is not None else indexes[d].index_of_missing()
                for d, identifier in zip(dimensions, group)
            ]
            for group in groups
        }

        data = []
        previous: Dict[tuple, int] = {}
        for period_index in range(len(compilation.periods)):
            for group in groups:
                row = by_period.get(period_index, {}).get(group, {})
                metrics = [_metric_value(row.get(name)) for name in GROWTH_METRICS]
                participants = metrics[1]
                data.append(
                    [period_index, *encoded_groups[group], *metrics,
                     _percentage_change(previous.get(group), participants)]
                )
                previous[group] = participants

        return GrowthResult(
            data=data,
            periods=[window.to_dict() for window in compilation.periods],
            lookups={get_dimension(d).lookup_key: indexes[d].entries for d in dimensions},
            columns=["periodIndex"] + [d.index_column for d in dimensions]
            + list(GROWTH_METRICS) + ["percentageChange"],
            compilation=compilation,
        )
