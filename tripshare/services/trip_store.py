"""
Trip Record Store - persistence of the Trip aggregate

No caching happens here. Every write is a single-document atomic
read-modify-write guarded by a compare-and-swap on ``version``.
"""
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import ValidationError
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tripshare.config.settings import settings
from tripshare.core.db import utcnow
from tripshare.core.exceptions import (
    ConcurrentModificationError,
    StoreUnavailableError,
    TripValidationError,
    VersionConflictError,
)
from tripshare.core.permissions import CollaboratorRole
from tripshare.models.trip import (
    ActivityAction,
    CollaboratorStatus,
    TripActivity,
    TripMember,
    TripRecord,
    TripTag,
)
from tripshare.schemas.trip import (
    ActivityDraft,
    ActivityRecord,
    Collaborator,
    PageInfo,
    PageRequest,
    Trip,
    TripCreate,
    TripFilters,
    TripMutation,
    TripPage,
    TripUpdate,
)

logger = logging.getLogger(__name__)

# Fields that only change through dedicated collaboration or lifecycle operations
PROTECTED_FIELDS = frozenset({
    "id", "owner_id", "owner", "collaborators", "created_at", "updated_at",
    "version", "last_modified_by", "is_archived", "archived_at",
})

Mutator = Callable[[Trip], Optional[ActivityDraft]]


def record_to_trip(record: TripRecord) -> Trip:
    return Trip(
        id=record.id,
        owner_id=record.owner_id,
        title=record.title,
        description=record.description,
        destination={
            "name": record.destination_name,
            "country": record.destination_country,
            "city": record.destination_city,
        },
        start_date=record.start_date,
        end_date=record.end_date,
        budget={"total": record.budget_total, "currency": record.budget_currency},
        tags=list(record.tags or []),
        status=record.status,
        visibility=record.visibility,
        collaborators=record.collaborators or [],
        version=record.version,
        last_modified_by=record.last_modified_by,
        is_archived=record.is_archived,
        archived_at=record.archived_at,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def trip_to_values(trip: Trip) -> Dict[str, Any]:
    return {
        "owner_id": trip.owner_id,
        "title": trip.title,
        "description": trip.description,
        "destination_name": trip.destination.name,
        "destination_country": trip.destination.country,
        "destination_city": trip.destination.city,
        "start_date": trip.start_date,
        "end_date": trip.end_date,
        "budget_total": trip.budget.total,
        "budget_currency": trip.budget.currency.value,
        "tags": list(trip.tags),
        "status": trip.status.value,
        "visibility": trip.visibility.value,
        "collaborators": [c.model_dump(mode="json") for c in trip.collaborators],
        "version": trip.version,
        "last_modified_by": trip.last_modified_by,
        "is_archived": trip.is_archived,
        "archived_at": trip.archived_at,
        "created_at": trip.created_at,
        "updated_at": trip.updated_at,
    }


def validate_patch(patch: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Check an update patch and return the business-field changes it sets

    Raises:
        TripValidationError: patch touches a protected field or is malformed
    """
    protected = sorted(PROTECTED_FIELDS.intersection(patch))
    if protected:
        raise TripValidationError(
            "These fields cannot be changed through an update",
            {"fields": protected},
        )
    try:
        return TripUpdate.model_validate(dict(patch)).model_dump(exclude_unset=True)
    except ValidationError as e:
        raise TripValidationError("Invalid trip update", {"errors": e.errors(include_url=False)}) from e


def activity_to_record(row: TripActivity) -> ActivityRecord:
    return ActivityRecord.model_validate(row)


class TripRepository:
    """Manages trip documents, their derived index rows and the activity log"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_write_retries: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self.max_write_retries = max_write_retries or settings.store.max_write_retries

    @contextmanager
    def _store_errors(self, operation: str, trip_id: Optional[str] = None):
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(
                f"Trip store failure during {operation}: {e}",
                exc_info=True,
                extra={"operation": operation, "trip_id": trip_id},
            )
            raise StoreUnavailableError(operation, {"operation": operation, "trip_id": trip_id}) from e

    async def create(self, owner_id: str, data: TripCreate) -> Trip:
        """
        Persist a new trip together with its sole owner collaborator

        Args:
            owner_id: Creating user, becomes the immutable owner
            data: Validated business fields

        Returns:
            Created trip
        """
        now = utcnow()
        owner = Collaborator(
            user_id=owner_id,
            role=CollaboratorRole.OWNER,
            status=CollaboratorStatus.ACCEPTED,
            invited_by=owner_id,
            invited_at=now,
            accepted_at=now,
            last_active_at=now,
        )
        trip = Trip(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            collaborators=[owner],
            version=1,
            last_modified_by=owner_id,
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )

        with self._store_errors("create", trip.id):
            async with self._session_factory() as session:
                session.add(TripRecord(id=trip.id, **trip_to_values(trip)))
                await self._rewrite_indexes(session, trip)
                self._append_activity(
                    session,
                    trip.id,
                    owner_id,
                    ActivityDraft(
                        action=ActivityAction.TRIP_CREATED,
                        payload={"title": trip.title, "destination": trip.destination.name},
                    ),
                    now,
                )
                await session.commit()

        logger.info(f"Trip created: {trip.id}", extra={"trip_id": trip.id, "owner_id": owner_id})
        return trip

    async def get_by_id(self, trip_id: str) -> Optional[Trip]:
        with self._store_errors("get_by_id", trip_id):
            async with self._session_factory() as session:
                record = await session.get(TripRecord, trip_id)
                return record_to_trip(record) if record is not None else None

    async def mutate(
        self,
        trip_id: str,
        mutator: Mutator,
        *,
        actor_id: str,
        expected_version: Optional[int] = None,
    ) -> Optional[TripMutation]:
        """
        Atomic read-modify-write of one trip document

        The mutator receives a deep copy of the current trip, edits it in
        place and returns the activity to record, or None for a no-op. If
        another writer bumps the version between our read and our write, the
        mutator runs again on the fresh document.

        Returns:
            The before/after snapshots, or None if the trip does not exist

        Raises:
            VersionConflictError: ``expected_version`` does not match
            ConcurrentModificationError: retries exhausted
        """
        for attempt in range(1, self.max_write_retries + 1):
            with self._store_errors("mutate", trip_id):
                async with self._session_factory() as session:
                    record = await session.get(TripRecord, trip_id)
                    if record is None:
                        return None
                    before = record_to_trip(record)
                    if expected_version is not None and before.version != expected_version:
                        raise VersionConflictError(trip_id, expected_version, before.version)

                    after = before.model_copy(deep=True)
                    draft = mutator(after)
                    if draft is None:
                        return TripMutation(before=before, after=before)

                    now = utcnow()
                    after.version = before.version + 1
                    after.last_modified_by = actor_id
                    after.updated_at = now

                    result = await session.execute(
                        update(TripRecord)
                        .where(TripRecord.id == trip_id, TripRecord.version == before.version)
                        .values(**trip_to_values(after))
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        await session.rollback()
                        logger.info(
                            f"Version race on trip {trip_id}, retrying (attempt {attempt})",
                            extra={"trip_id": trip_id, "attempt": attempt},
                        )
                        continue

                    await self._rewrite_indexes(session, after)
                    row = self._append_activity(session, trip_id, actor_id, draft, now)
                    await session.commit()
                    return TripMutation(before=before, after=after, activity=activity_to_record(row))

        raise ConcurrentModificationError(trip_id, self.max_write_retries)

    async def update(
        self,
        trip_id: str,
        patch: Mapping[str, Any],
        *,
        actor_id: str,
        expected_version: Optional[int] = None,
    ) -> Optional[TripMutation]:
        """
        Apply a business-field patch

        Raises:
            TripValidationError: patch touches a protected field or is malformed
        """
        changes = validate_patch(patch)
        fields = set(changes)

        def apply(trip: Trip) -> Optional[ActivityDraft]:
            if not changes:
                return None
            # Revalidate the merged document so cross-field rules hold
            try:
                merged = Trip.model_validate({**trip.model_dump(), **changes})
            except ValidationError as e:
                raise TripValidationError("Invalid trip update", {"errors": e.errors(include_url=False)}) from e
            if merged.end_date <= merged.start_date:
                raise TripValidationError("End date must be after start date")

            previous = trip.model_dump(mode="json", include=fields)
            current = merged.model_dump(mode="json", include=fields)
            if previous == current:
                return None
            for field in fields:
                setattr(trip, field, getattr(merged, field))
            return ActivityDraft(
                action=ActivityAction.TRIP_UPDATED,
                payload={"changes": current, "previous": previous},
            )

        return await self.mutate(trip_id, apply, actor_id=actor_id, expected_version=expected_version)

    async def delete(self, trip_id: str, *, actor_id: str) -> Optional[Trip]:
        """
        Delete a trip and its index rows

        Returns:
            The trip as it was just before deletion, or None if absent
        """
        with self._store_errors("delete", trip_id):
            async with self._session_factory() as session:
                record = await session.get(TripRecord, trip_id)
                if record is None:
                    return None
                snapshot = record_to_trip(record)
                await session.delete(record)
                await session.execute(delete(TripMember).where(TripMember.trip_id == trip_id))
                await session.execute(delete(TripTag).where(TripTag.trip_id == trip_id))
                self._append_activity(
                    session,
                    trip_id,
                    actor_id,
                    ActivityDraft(action=ActivityAction.TRIP_DELETED, payload={"title": snapshot.title}),
                    utcnow(),
                )
                await session.commit()

        logger.info(f"Trip deleted: {trip_id}", extra={"trip_id": trip_id, "actor_id": actor_id})
        return snapshot

    async def list_for_user(
        self,
        user_id: str,
        filters: Optional[TripFilters] = None,
        page: Optional[PageRequest] = None,
    ) -> TripPage:
        """
        List non-archived trips the user owns or has accepted, newest change first
        """
        filters = filters or TripFilters()
        page = page or PageRequest(limit=settings.store.default_page_size)
        conditions = self._membership_conditions(user_id)

        if filters.status:
            conditions.append(TripRecord.status == filters.status.value)
        if filters.destination:
            conditions.append(or_(
                TripRecord.destination_name.icontains(filters.destination, autoescape=True),
                TripRecord.destination_country.icontains(filters.destination, autoescape=True),
            ))
        if filters.start_after:
            conditions.append(TripRecord.start_date >= filters.start_after)
        if filters.end_before:
            conditions.append(TripRecord.end_date <= filters.end_before)
        if filters.budget_min is not None:
            conditions.append(TripRecord.budget_total >= filters.budget_min)
        if filters.budget_max is not None:
            conditions.append(TripRecord.budget_total <= filters.budget_max)
        if filters.tags:
            conditions.append(TripRecord.id.in_(
                select(TripTag.trip_id).where(TripTag.tag.in_(filters.tags))
            ))

        return await self._page(conditions, page, "list_for_user")

    async def search_for_user(
        self,
        user_id: str,
        query: str,
        page: Optional[PageRequest] = None,
    ) -> TripPage:
        """
        Case-insensitive substring search over title, description, destination and tags
        """
        page = page or PageRequest(limit=settings.store.default_page_size)
        term = query.strip()
        conditions = self._membership_conditions(user_id)
        conditions.append(or_(
            TripRecord.title.icontains(term, autoescape=True),
            TripRecord.description.icontains(term, autoescape=True),
            TripRecord.destination_name.icontains(term, autoescape=True),
            TripRecord.destination_country.icontains(term, autoescape=True),
            TripRecord.id.in_(
                select(TripTag.trip_id).where(TripTag.tag.icontains(term, autoescape=True))
            ),
        ))
        return await self._page(conditions, page, "search_for_user")

    async def list_activity(self, trip_id: str, limit: Optional[int] = None) -> List[ActivityRecord]:
        limit = limit or settings.store.activity_log_limit
        with self._store_errors("list_activity", trip_id):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(TripActivity)
                    .where(TripActivity.trip_id == trip_id)
                    .order_by(TripActivity.timestamp.desc(), TripActivity.id.desc())
                    .limit(limit)
                )
                return [activity_to_record(row) for row in result.scalars().all()]

    def _membership_conditions(self, user_id: str) -> list:
        return [
            or_(
                TripRecord.owner_id == user_id,
                TripRecord.id.in_(select(TripMember.trip_id).where(TripMember.user_id == user_id)),
            ),
            TripRecord.is_archived.is_(False),
        ]

    async def _page(self, conditions: list, page: PageRequest, operation: str) -> TripPage:
        with self._store_errors(operation):
            async with self._session_factory() as session:
                total = (await session.execute(
                    select(func.count(TripRecord.id)).where(*conditions)
                )).scalar_one()
                result = await session.execute(
                    select(TripRecord)
                    .where(*conditions)
                    .order_by(TripRecord.updated_at.desc(), TripRecord.id)
                    .offset(page.offset)
                    .limit(page.limit)
                )
                trips = [record_to_trip(r) for r in result.scalars().all()]
        return TripPage(trips=trips, page_info=PageInfo.build(page, total))

    async def _rewrite_indexes(self, session: AsyncSession, trip: Trip) -> None:
        await session.execute(delete(TripMember).where(TripMember.trip_id == trip.id))
        await session.execute(delete(TripTag).where(TripTag.trip_id == trip.id))
        session.add_all(
            TripMember(trip_id=trip.id, user_id=user_id)
            for user_id in dict.fromkeys(trip.accepted_user_ids())
        )
        session.add_all(TripTag(trip_id=trip.id, tag=tag) for tag in dict.fromkeys(trip.tags))

    def _append_activity(
        self,
        session: AsyncSession,
        trip_id: str,
        actor_id: str,
        draft: ActivityDraft,
        timestamp,
    ) -> TripActivity:
        row = TripActivity(
            trip_id=trip_id,
            actor_id=actor_id,
            action=draft.action.value,
            payload=draft.payload,
            timestamp=timestamp,
        )
        session.add(row)
        return row
