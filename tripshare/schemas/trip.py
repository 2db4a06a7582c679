"""
Trip schemas: the aggregate, its embedded collaborators, and request/response shapes
"""
import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tripshare.core.permissions import CollaboratorRole, Permission
from tripshare.models.trip import (
    ActivityAction,
    CollaboratorStatus,
    TripStatus,
    TripVisibility,
)

MAX_TAGS = 20
MAX_TAG_LENGTH = 64
LIVE_STATUSES = (CollaboratorStatus.PENDING, CollaboratorStatus.ACCEPTED)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive datetimes are taken to be UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    CAD = "CAD"
    AUD = "AUD"
    JPY = "JPY"
    CNY = "CNY"
    INR = "INR"
    BRL = "BRL"
    MXN = "MXN"


class Destination(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    country: str = Field(..., min_length=1, max_length=100)
    city: Optional[str] = Field(None, max_length=100)


class Budget(BaseModel):
    total: float = Field(0.0, ge=0)
    currency: Currency = Currency.USD


class Collaborator(BaseModel):
    """Membership record embedded in a trip"""
    user_id: str
    role: CollaboratorRole
    status: CollaboratorStatus
    invited_by: str
    invited_at: datetime
    accepted_at: Optional[datetime] = None
    last_active_at: datetime

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES


def _clean_tags(tags: List[str]) -> List[str]:
    cleaned = []
    for tag in tags:
        tag = tag.strip().lower()
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Tags cannot be longer than {MAX_TAG_LENGTH} characters")
        if tag and tag not in cleaned:
            cleaned.append(tag)
    if len(cleaned) > MAX_TAGS:
        raise ValueError(f"Cannot have more than {MAX_TAGS} tags")
    return cleaned


class TripCreate(BaseModel):
    """Schema for creating a new trip"""
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=3, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    destination: Destination
    start_date: datetime
    end_date: datetime
    budget: Budget = Field(default_factory=Budget)
    tags: List[str] = Field(default_factory=list)
    status: TripStatus = TripStatus.DRAFT
    visibility: TripVisibility = TripVisibility.PRIVATE

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Trip title must be at least 3 characters")
        return v

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: List[str]) -> List[str]:
        return _clean_tags(v)

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self


class TripUpdate(BaseModel):
    """Schema for patching business fields.

    Ownership, membership, identity, versioning and timestamps are not
    fields here; ``extra="forbid"`` turns an attempt to set them into a
    validation error.
    """
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=3, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    destination: Optional[Destination] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    budget: Optional[Budget] = None
    tags: Optional[List[str]] = None
    status: Optional[TripStatus] = None
    visibility: Optional[TripVisibility] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return None if v is None else _clean_tags(v)

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self


class Trip(BaseModel):
    """The shared planning aggregate"""
    id: str
    owner_id: str
    title: str
    description: Optional[str] = None
    destination: Destination
    start_date: datetime
    end_date: datetime
    budget: Budget
    tags: List[str] = []
    status: TripStatus
    visibility: TripVisibility
    collaborators: List[Collaborator]
    version: int = 1
    last_modified_by: Optional[str] = None
    is_archived: bool = False
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("start_date", "end_date", "archived_at", "created_at", "updated_at")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    def live_entry(self, user_id: str) -> Optional[Collaborator]:
        """The pending or accepted entry for ``user_id``, if any."""
        for collaborator in self.collaborators:
            if collaborator.user_id == user_id and collaborator.is_live:
                return collaborator
        return None

    def accepted_entry(self, user_id: str) -> Optional[Collaborator]:
        entry = self.live_entry(user_id)
        if entry is not None and entry.status == CollaboratorStatus.ACCEPTED:
            return entry
        return None

    def accepted_user_ids(self) -> List[str]:
        return [
            c.user_id for c in self.collaborators
            if c.status == CollaboratorStatus.ACCEPTED
        ]

    def owner_entries(self) -> List[Collaborator]:
        return [c for c in self.collaborators if c.role == CollaboratorRole.OWNER]


class TripMutation(BaseModel):
    """Snapshots around one atomic trip write"""
    before: Trip
    after: Trip
    activity: Optional["ActivityRecord"] = None

    @property
    def changed(self) -> bool:
        return self.activity is not None


class TripFilters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Optional[TripStatus] = None
    destination: Optional[str] = Field(None, min_length=1, max_length=200)
    start_after: Optional[datetime] = None
    end_before: Optional[datetime] = None
    budget_min: Optional[float] = Field(None, ge=0)
    budget_max: Optional[float] = Field(None, ge=0)
    tags: List[str] = Field(default_factory=list)

    @field_validator("start_after", "end_before")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: List[str]) -> List[str]:
        return sorted({t.strip().lower() for t in v if t.strip()})


class PageRequest(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PageInfo(BaseModel):
    page: int
    limit: int
    total_count: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, page: PageRequest, total_count: int) -> "PageInfo":
        total_pages = (total_count + page.limit - 1) // page.limit
        return cls(
            page=page.page,
            limit=page.limit,
            total_count=total_count,
            total_pages=total_pages,
            has_next_page=page.page < total_pages,
            has_prev_page=page.page > 1,
        )


class TripPage(BaseModel):
    trips: List[Trip]
    page_info: PageInfo


def query_fingerprint(*parts: Any) -> str:
    """Stable short digest of query parameters, used as a cache key suffix."""
    canonical = json.dumps(
        [p.model_dump(mode="json") if isinstance(p, BaseModel) else p for p in parts],
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


class ActivityDraft(BaseModel):
    """What a mutation wants recorded; the store stamps actor and time."""
    action: ActivityAction
    payload: Dict[str, Any] = {}


class ActivityRecord(BaseModel):
    id: int
    trip_id: str
    actor_id: str
    action: ActivityAction
    payload: Dict[str, Any] = {}
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class Invitation(BaseModel):
    trip_id: str
    invitee_id: str
    role: CollaboratorRole
    status: CollaboratorStatus
    invited_by: str
    invited_at: datetime


class Collaboration(BaseModel):
    trip_id: str
    user_id: str
    role: CollaboratorRole
    status: CollaboratorStatus
    accepted_at: Optional[datetime] = None
    updated_by: Optional[str] = None


class DecisionReason(str, Enum):
    GRANTED = "granted"
    NOT_COLLABORATOR = "not_collaborator"
    MISSING_PERMISSION = "missing_permission"
    TRIP_NOT_FOUND = "trip_not_found"
    LOOKUP_FAILED = "lookup_failed"


class PermissionDecision(BaseModel):
    allowed: bool
    permission: Permission
    role: Optional[CollaboratorRole] = None
    reason: DecisionReason

    @property
    def cacheable(self) -> bool:
        return self.reason not in (DecisionReason.TRIP_NOT_FOUND, DecisionReason.LOOKUP_FAILED)


TripMutation.model_rebuild()


class InviteRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=128)
    role: str = Field(..., description="editor, contributor or viewer")


class RoleChangeRequest(BaseModel):
    role: str = Field(..., description="editor, contributor or viewer")
