"""SQLAlchemy ORM models and enums.

This module declares the read-only schema the analytics engine aggregates
over. The tables are owned by the CRUD services (activities, venues,
participants, geographic areas); the engine never writes to them.

Identifiers are text UUIDs, matching how the owning services store them,
so array parameters bind as `text[]` without casts.
"""

import uuid
from datetime import datetime
import enum

from sqlalchemy import Column, String, DateTime, Enum, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship, declarative_base


# Single Base used by the entire application
Base = declarative_base()


def _uuid_str() -> str:
    return str(uuid.uuid4())


# Enums ---------------------------------------------------------

class ActivityStatusEnum(str, enum.Enum):
    planned = "PLANNED"
    active = "ACTIVE"
    completed = "COMPLETED"
    cancelled = "CANCELLED"


class AreaTypeEnum(str, enum.Enum):
    neighbourhood = "NEIGHBOURHOOD"
    community = "COMMUNITY"
    city = "CITY"
    cluster = "CLUSTER"
    county = "COUNTY"
    province = "PROVINCE"
    state = "STATE"
    country = "COUNTRY"
    continent = "CONTINENT"
    world = "WORLD"


# Reference data -------------------------------------------------

class ActivityCategory(Base):
    __tablename__ = "activity_categories"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, nullable=False, unique=True)

    activity_types = relationship("ActivityType", back_populates="activity_category")

    def __str__(self):
        return self.name


class ActivityType(Base):
    """ActivityType belongs to exactly one ActivityCategory.

    Grouping by category goes through this table, so the base activity
    query always joins it.
    """
    __tablename__ = "activity_types"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, nullable=False)
    activity_category_id = Column(String(36), ForeignKey("activity_categories.id"), nullable=False)

    activity_category = relationship("ActivityCategory", back_populates="activity_types")
    activities = relationship("Activity", back_populates="activity_type")

    def __str__(self):
        return self.name


class Role(Base):
    __tablename__ = "roles"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, nullable=False, unique=True)

    def __str__(self):
        return self.name


class Population(Base):
    __tablename__ = "populations"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, nullable=False, unique=True)

    def __str__(self):
        return self.name


# Geography ------------------------------------------------------

class GeographicArea(Base):
    """GeographicArea is a node in the area tree.

    parent_geographic_area_id is NULL for roots. The tree has no cycles;
    real data is rarely deeper than six levels.
    """
    __tablename__ = "geographic_areas"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, nullable=False)
    area_type = Column(Enum(AreaTypeEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    parent_geographic_area_id = Column(String(36), ForeignKey("geographic_areas.id"), nullable=True)

    venues = relationship("Venue", back_populates="geographic_area")
    parent = relationship("GeographicArea", remote_side=[id], backref="children")

    def __str__(self):
        return f"{self.name} ({self.area_type.value})"


class Venue(Base):
    __tablename__ = "venues"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    geographic_area_id = Column(String(36), ForeignKey("geographic_areas.id"), nullable=False)

    geographic_area = relationship("GeographicArea", back_populates="venues")

    def __str__(self):
        return self.name


# Activities and participation ----------------------------------

class Activity(Base):
    """Activity is the unit every engagement metric counts.

    end_date NULL means the activity is ongoing. When present it is never
    before start_date.

    additional_participant_count records bulk attendance that is not
    individually assigned; analytics adds it to participation totals and
    attributes it to the default participation role.
    """
    __tablename__ = "activities"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, nullable=False)
    activity_type_id = Column(String(36), ForeignKey("activity_types.id"), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)
    status = Column(Enum(ActivityStatusEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    additional_participant_count = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    activity_type = relationship("ActivityType", back_populates="activities")
    assignments = relationship("Assignment", back_populates="activity")
    venue_history = relationship("ActivityVenueHistory", back_populates="activity")

    def __str__(self):
        return self.name


class ActivityVenueHistory(Base):
    """Time-versioned link between an activity and its venue.

    The current venue is the record with the latest effective_from. A NULL
    effective_from means "since the activity began", so it loses to any
    dated record.
    """
    __tablename__ = "activity_venue_history"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    activity_id = Column(String(36), ForeignKey("activities.id"), nullable=False)
    venue_id = Column(String(36), ForeignKey("venues.id"), nullable=False)
    effective_from = Column(DateTime, nullable=True)

    activity = relationship("Activity", back_populates="venue_history")
    venue = relationship("Venue")


class Participant(Base):
    __tablename__ = "participants"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, nullable=False)

    assignments = relationship("Assignment", back_populates="participant")

    def __str__(self):
        return self.name


class Assignment(Base):
    """Links a Participant to an Activity through a Role.

    Assignments carry no dates; their active window is the activity's.
    """
    __tablename__ = "assignments"
    __table_args__ = (
        UniqueConstraint("activity_id", "participant_id", "role_id", name="uq_assignment_activity_participant_role"),
    )

    id = Column(String(36), primary_key=True, default=_uuid_str)
    activity_id = Column(String(36), ForeignKey("activities.id"), nullable=False)
    participant_id = Column(String(36), ForeignKey("participants.id"), nullable=False)
    role_id = Column(String(36), ForeignKey("roles.id"), nullable=False)

    activity = relationship("Activity", back_populates="assignments")
    participant = relationship("Participant", back_populates="assignments")
    role = relationship("Role")


class ParticipantPopulation(Base):
    __tablename__ = "participant_populations"
    __table_args__ = (
        UniqueConstraint("participant_id", "population_id", name="uq_participant_population"),
    )

    id = Column(String(36), primary_key=True, default=_uuid_str)
    participant_id = Column(String(36), ForeignKey("participants.id"), nullable=False)
    population_id = Column(String(36), ForeignKey("populations.id"), nullable=False)
