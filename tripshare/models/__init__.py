"""
Persistence models for the trip collaboration service.
"""

from .trip import (
    TripStatus,
    TripVisibility,
    CollaboratorStatus,
    ActivityAction,
    TripRecord,
    TripMember,
    TripTag,
    TripActivity,
)
from .user import User

__all__ = [
    "TripStatus",
    "TripVisibility",
    "CollaboratorStatus",
    "ActivityAction",
    "TripRecord",
    "TripMember",
    "TripTag",
    "TripActivity",
    "User",
]
