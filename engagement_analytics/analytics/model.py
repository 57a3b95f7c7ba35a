"""
Engagement Metric Model
=======================

**Version**: 1.0.0
**Status**: Active

Single source of truth for the metrics and grouping dimensions the engine
reports. This module defines WHAT is reported and in which order; the
compiler (compiler.py) decides HOW each metric becomes SQL.

WHY THIS FILE EXISTS
--------------------
The metric order is part of the wire contract: data rows are flat numeric
arrays and callers read positions, not names. The compiler's SELECT list,
the HAVING clause, the transformer's column metadata and the row encoder
must all agree on that order. Declaring it once here keeps them in step.

MODES
-----
Snapshot-pair mode (startDate and endDate both given), 8 metrics:

    activitiesAtStart, participantsAtStart, participationAtStart,
    activitiesAtEnd, participantsAtEnd, participationAtEnd,
    activitiesStarted, activitiesCompleted

Current-snapshot mode (no complete date range), 5 metrics:

    activeActivities, uniqueParticipants, totalParticipation,
    activitiesStarted, activitiesCompleted

METRIC KINDS
------------
- ACTIVITIES: distinct activities active at the reference date
- PARTICIPANTS: distinct individually assigned participants active at the
  reference date (bulk attendance has no identity and is not counted)
- PARTICIPATION: assignment count plus bulk attendance at the reference date
- STARTED: activities whose start date falls in the period
- COMPLETED: COMPLETED activities whose end date falls in the period
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from engagement_analytics.analytics.filters import GroupingDimension


# =============================================================================
# ENUMS
# =============================================================================

class MetricKind(Enum):
    """What a metric counts."""
    ACTIVITIES = "activities"
    PARTICIPANTS = "participants"
    PARTICIPATION = "participation"
    STARTED = "started"
    COMPLETED = "completed"


class ReferencePoint(Enum):
    """
    Which instant a snapshot metric is evaluated at.

    START/END bind the request's startDate/endDate; CURRENT uses the
    store's CURRENT_DATE.
    """
    START = "start"
    END = "end"
    CURRENT = "current"


# =============================================================================
# DEFINITIONS
# =============================================================================

@dataclass(frozen=True)
class Metric:
    """
    Definition of a single reported metric.

    PARAMETERS:
        name: Wire-format column name
        kind: What is counted
        reference: Instant for snapshot kinds; None for lifecycle kinds
        description: Human-readable meaning
    """
    name: str
    kind: MetricKind
    reference: Optional[ReferencePoint]
    description: str

    @property
    def is_snapshot(self) -> bool:
        return self.reference is not None and self.kind in (
            MetricKind.ACTIVITIES,
            MetricKind.PARTICIPANTS,
            MetricKind.PARTICIPATION,
        )


@dataclass(frozen=True)
class Dimension:
    """
    Definition of a grouping dimension's lookup behaviour.

    PARAMETERS:
        dimension: The GroupingDimension
        lookup_key: Key of the lookup array in the wire format
        unknown_label: Name used when an id has no resolvable name
        missing_label: Name of the group of activities with no value
    """
    dimension: GroupingDimension
    lookup_key: str
    unknown_label: str
    missing_label: str


DATE_RANGE_METRICS: Tuple[Metric, ...] = (
    Metric("activitiesAtStart", MetricKind.ACTIVITIES, ReferencePoint.START,
           "Activities active on the start date"),
    Metric("participantsAtStart", MetricKind.PARTICIPANTS, ReferencePoint.START,
           "Distinct participants in activities active on the start date"),
    Metric("participationAtStart", MetricKind.PARTICIPATION, ReferencePoint.START,
           "Assignments plus bulk attendance in activities active on the start date"),
    Metric("activitiesAtEnd", MetricKind.ACTIVITIES, ReferencePoint.END,
           "Activities active on the end date"),
    Metric("participantsAtEnd", MetricKind.PARTICIPANTS, ReferencePoint.END,
           "Distinct participants in activities active on the end date"),
    Metric("participationAtEnd", MetricKind.PARTICIPATION, ReferencePoint.END,
           "Assignments plus bulk attendance in activities active on the end date"),
    Metric("activitiesStarted", MetricKind.STARTED, None,
           "Activities that started within the range"),
    Metric("activitiesCompleted", MetricKind.COMPLETED, None,
           "Activities completed within the range"),
)

CURRENT_METRICS: Tuple[Metric, ...] = (
    Metric("activeActivities", MetricKind.ACTIVITIES, ReferencePoint.CURRENT,
           "Activities active today"),
    Metric("uniqueParticipants", MetricKind.PARTICIPANTS, ReferencePoint.CURRENT,
           "Distinct participants in activities active today"),
    Metric("totalParticipation", MetricKind.PARTICIPATION, ReferencePoint.CURRENT,
           "Assignments plus bulk attendance in activities active today"),
    Metric("activitiesStarted", MetricKind.STARTED, None,
           "Activities started on or before today"),
    Metric("activitiesCompleted", MetricKind.COMPLETED, None,
           "Activities completed on or before today"),
)

# Result column holding GROUPING(<dimensions>): bit set = dimension aggregated away.
GROUPING_MASK_COLUMN = "grouping_mask"

DIMENSIONS: Dict[GroupingDimension, Dimension] = {
    GroupingDimension.ACTIVITY_TYPE: Dimension(
        GroupingDimension.ACTIVITY_TYPE, "activityTypes", "Unknown Activity Type", "No Activity Type"),
    GroupingDimension.ACTIVITY_CATEGORY: Dimension(
        GroupingDimension.ACTIVITY_CATEGORY, "activityCategories", "Unknown Activity Category", "No Activity Category"),
    GroupingDimension.GEOGRAPHIC_AREA: Dimension(
        GroupingDimension.GEOGRAPHIC_AREA, "geographicAreas", "Unknown Geographic Area", "No Geographic Area"),
    GroupingDimension.VENUE: Dimension(
        GroupingDimension.VENUE, "venues", "Unknown Venue", "No Venue"),
}


# =============================================================================
# ACCESSORS
# =============================================================================

def metrics_for(has_date_range: bool) -> Tuple[Metric, ...]:
    """Metrics reported in the given mode, in wire order."""
    return DATE_RANGE_METRICS if has_date_range else CURRENT_METRICS


def metric_names(has_date_range: bool) -> List[str]:
    return [m.name for m in metrics_for(has_date_range)]


def get_dimension(dimension: GroupingDimension) -> Dimension:
    return DIMENSIONS[dimension]
