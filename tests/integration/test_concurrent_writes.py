"""
Racing writers against a file-backed SQLite store: every write lands on
the freshest document and losers see typed results.
"""
import asyncio

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from tripshare.core.db import create_all, make_session_factory
from tripshare.core.exceptions import ErrorCode
from tripshare.models.trip import CollaboratorStatus
from tripshare.services import (
    CacheCoordinator,
    TripEventPublisher,
    TripRepository,
    TripService,
    UserDirectory,
)

INVITEE = "user-invitee"


@pytest_asyncio.fixture
async def shared_service(tmp_path, cache_client, cache_settings, users):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'race.db'}",
        connect_args={"timeout": 30},
    )
    await create_all(engine)
    session_factory = make_session_factory(engine)
    directory = UserDirectory(session_factory)
    for user_id in (*users.values(), INVITEE):
        await directory.register(user_id, f"{user_id}@example.com", user_id.title())

    yield TripService(
        repository=TripRepository(session_factory, max_write_retries=10),
        user_directory=directory,
        cache=CacheCoordinator(cache_client, cache_settings),
        publisher=TripEventPublisher(cache_client),
    )
    await engine.dispose()


@pytest.mark.asyncio
async def test_simultaneous_invites_create_one_entry(shared_service, users, make_trip_data):
    trip = (await shared_service.create_trip(users["owner"], make_trip_data())).data

    results = await asyncio.gather(*[
        shared_service.invite_collaborator(trip.id, users["owner"], INVITEE, "viewer")
        for _ in range(5)
    ])

    assert sum(1 for r in results if r.ok) == 1
    assert [r.error_code for r in results if not r.ok] == [ErrorCode.INVITATION_PENDING] * 4

    stored = (await shared_service.get_trip(trip.id, users["owner"])).data
    assert stored.version == 2
    assert [c.user_id for c in stored.collaborators].count(INVITEE) == 1


@pytest.mark.asyncio
async def test_invite_and_remove_race_keeps_both(shared_service, users, make_trip_data):
    owner, editor = users["owner"], users["editor"]
    trip = (await shared_service.create_trip(owner, make_trip_data())).data
    await shared_service.invite_collaborator(trip.id, owner, editor, "editor")
    await shared_service.accept_invitation(trip.id, editor)

    invited, removed = await asyncio.gather(
        shared_service.invite_collaborator(trip.id, owner, INVITEE, "viewer"),
        shared_service.remove_collaborator(trip.id, owner, editor),
    )

    assert invited.ok, invited.error
    assert removed.ok, removed.error
    stored = (await shared_service.get_trip(trip.id, owner)).data
    statuses = {c.user_id: c.status for c in stored.collaborators}
    assert statuses[INVITEE] == CollaboratorStatus.PENDING
    assert statuses[editor] == CollaboratorStatus.REMOVED
    assert stored.version == 5
