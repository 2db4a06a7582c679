"""
Trip document storage.

A trip is one row; its collaborators live inside it as an embedded JSON array.
``trip_members`` and ``trip_tags`` are derived index rows rewritten in the
same transaction as every trip write so listings can filter in SQL.
"""
from sqlalchemy import Column, Integer, String, Boolean, Float, Text, Index
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
import enum

from tripshare.core.db import Base, UTCDateTime

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class TripStatus(str, enum.Enum):
    """Trip planning status"""
    DRAFT = "draft"
    PLANNING = "planning"
    BOOKED = "booked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TripVisibility(str, enum.Enum):
    PRIVATE = "private"
    SHARED = "shared"
    PUBLIC = "public"


class CollaboratorStatus(str, enum.Enum):
    """Invitation lifecycle status"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REMOVED = "removed"


class ActivityAction(str, enum.Enum):
    TRIP_CREATED = "trip_created"
    TRIP_UPDATED = "trip_updated"
    TRIP_ARCHIVED = "trip_archived"
    TRIP_DELETED = "trip_deleted"
    COLLABORATOR_INVITED = "collaborator_invited"
    COLLABORATOR_ACCEPTED = "collaborator_accepted"
    COLLABORATOR_DECLINED = "collaborator_declined"
    COLLABORATOR_REMOVED = "collaborator_removed"
    COLLABORATOR_ROLE_UPDATED = "collaborator_role_updated"


class TripRecord(Base):
    __tablename__ = "trips"

    id = Column(String(32), primary_key=True)
    owner_id = Column(String(128), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    destination_name = Column(String(200), nullable=False)
    destination_country = Column(String(100), nullable=False)
    destination_city = Column(String(100), nullable=True)
    start_date = Column(UTCDateTime, nullable=False, index=True)
    end_date = Column(UTCDateTime, nullable=False)
    budget_total = Column(Float, nullable=False, default=0.0)
    budget_currency = Column(String(3), nullable=False, default="USD")
    tags = Column(JSONDocument, nullable=False, default=list)
    status = Column(String(32), nullable=False, default=TripStatus.DRAFT.value, index=True)
    visibility = Column(String(16), nullable=False, default=TripVisibility.PRIVATE.value)
    collaborators = Column(JSONDocument, nullable=False, default=list)
    version = Column(Integer, nullable=False, default=1)
    last_modified_by = Column(String(128), nullable=True)
    is_archived = Column(Boolean, nullable=False, default=False, index=True)
    archived_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False, index=True)


class TripMember(Base):
    """Accepted collaborators of a trip, owner included."""
    __tablename__ = "trip_members"

    trip_id = Column(String(32), primary_key=True)
    user_id = Column(String(128), primary_key=True, index=True)


class TripTag(Base):
    __tablename__ = "trip_tags"

    trip_id = Column(String(32), primary_key=True)
    tag = Column(String(64), primary_key=True, index=True)


class TripActivity(Base):
    """Append-only activity log. Rows outlive the trip they describe."""
    __tablename__ = "trip_activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(String(32), nullable=False)
    actor_id = Column(String(128), nullable=False)
    action = Column(String(64), nullable=False)
    payload = Column(JSONDocument, nullable=False, default=dict)
    timestamp = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_trip_activities_trip_ts", "trip_id", "timestamp"),
    )
