"""
HTTP surface: envelope shape and status mapping for the trips API
"""
import pytest

from tripshare.core.exceptions import StoreUnavailableError


def as_json(data):
    return {k: v.isoformat() if hasattr(v, "isoformat") else v for k, v in data.items()}


async def create_trip(client, headers, payload):
    r = await client.post("/trips", json=as_json(payload), headers=headers)
    assert r.status_code == 201, r.text
    return r.json()["data"]


@pytest.mark.asyncio
async def test_create_and_get_trip(async_client, authenticated_headers, users, make_trip_data):
    owner = authenticated_headers(users["owner"])

    trip = await create_trip(async_client, owner, make_trip_data())
    r = await async_client.get(f"/trips/{trip['id']}", headers=owner)

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["error"] is None
    assert body["data"]["title"] == "Lisbon Weekend"
    assert body["data"]["owner_id"] == users["owner"]
    assert body["data"]["version"] == 1


@pytest.mark.asyncio
async def test_missing_identity_header(async_client):
    r = await async_client.get("/trips")

    assert r.status_code == 401
    assert r.json()["status"] == "error"
    assert r.json()["error_code"] == "HTTP_401"


@pytest.mark.asyncio
async def test_invalid_body_is_422(async_client, authenticated_headers, users, make_trip_data):
    payload = as_json(make_trip_data(title=""))

    r = await async_client.post("/trips", json=payload, headers=authenticated_headers(users["owner"]))

    assert r.status_code == 422
    assert r.json()["error_code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_unknown_trip_is_404(async_client, authenticated_headers, users):
    r = await async_client.get("/trips/does-not-exist", headers=authenticated_headers(users["owner"]))

    assert r.status_code == 404
    assert r.json() == {
        "status": "error",
        "data": None,
        "error": r.json()["error"],
        "error_code": "TRIP_NOT_FOUND",
    }


@pytest.mark.asyncio
async def test_outsider_update_is_403(async_client, authenticated_headers, users, make_trip_data):
    trip = await create_trip(async_client, authenticated_headers(users["owner"]), make_trip_data())

    r = await async_client.patch(
        f"/trips/{trip['id']}", json={"title": "Hijacked"}, headers=authenticated_headers(users["outsider"])
    )

    assert r.status_code == 403
    assert r.json()["error_code"] == "PERMISSION_DENIED"


@pytest.mark.asyncio
async def test_collaboration_flow(async_client, authenticated_headers, users, make_trip_data):
    owner = authenticated_headers(users["owner"])
    editor = authenticated_headers(users["editor"])
    trip = await create_trip(async_client, owner, make_trip_data())

    invited = await async_client.post(
        f"/trips/{trip['id']}/collaborators",
        json={"user_id": users["editor"], "role": "editor"},
        headers=owner,
    )
    assert invited.status_code == 201
    assert invited.json()["data"]["status"] == "pending"

    again = await async_client.post(
        f"/trips/{trip['id']}/collaborators",
        json={"user_id": users["editor"], "role": "viewer"},
        headers=owner,
    )
    assert again.status_code == 409
    assert again.json()["error_code"] == "INVITATION_PENDING"

    accepted = await async_client.post(f"/trips/{trip['id']}/invitation/accept", headers=editor)
    assert accepted.status_code == 200
    assert accepted.json()["data"]["status"] == "accepted"

    check = await async_client.get(f"/trips/{trip['id']}/permissions/edit_trip", headers=editor)
    assert check.json()["data"]["allowed"] is True

    updated = await async_client.patch(
        f"/trips/{trip['id']}", json={"title": "Porto Weekend"}, headers=editor
    )
    assert updated.json()["data"]["version"] == 4

    reroled = await async_client.patch(
        f"/trips/{trip['id']}/collaborators/{users['editor']}", json={"role": "viewer"}, headers=owner
    )
    assert reroled.json()["data"]["role"] == "viewer"

    removed = await async_client.delete(f"/trips/{trip['id']}/collaborators/{users['editor']}", headers=owner)
    assert removed.json()["data"]["status"] == "removed"

    gone = await async_client.get(f"/trips/{trip['id']}", headers=editor)
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_invite_with_owner_role_is_422(async_client, authenticated_headers, users, make_trip_data):
    owner = authenticated_headers(users["owner"])
    trip = await create_trip(async_client, owner, make_trip_data())

    r = await async_client.post(
        f"/trips/{trip['id']}/collaborators",
        json={"user_id": users["editor"], "role": "owner"},
        headers=owner,
    )

    assert r.status_code == 422
    assert r.json()["error_code"] == "INVALID_ROLE"


@pytest.mark.asyncio
async def test_stale_expected_version_is_409(async_client, authenticated_headers, users, make_trip_data):
    owner = authenticated_headers(users["owner"])
    trip = await create_trip(async_client, owner, make_trip_data())
    await async_client.patch(f"/trips/{trip['id']}", json={"title": "Porto Weekend"}, headers=owner)

    r = await async_client.patch(
        f"/trips/{trip['id']}",
        params={"expected_version": 1},
        json={"title": "Faro Weekend"},
        headers=owner,
    )

    assert r.status_code == 409
    assert r.json()["error_code"] == "VERSION_CONFLICT"


@pytest.mark.asyncio
async def test_list_and_search(async_client, authenticated_headers, users, make_trip_data):
    owner = authenticated_headers(users["owner"])
    lisbon = await create_trip(async_client, owner, make_trip_data())
    await create_trip(async_client, owner, make_trip_data(title="Alpine Hiking", tags=["hiking"]))

    listed = await async_client.get("/trips", params={"tags": "food"}, headers=owner)
    found = await async_client.get("/trips/search", params={"q": "alpine"}, headers=owner)

    assert [t["id"] for t in listed.json()["data"]["trips"]] == [lisbon["id"]]
    assert listed.json()["data"]["page_info"]["total_count"] == 1
    assert [t["title"] for t in found.json()["data"]["trips"]] == ["Alpine Hiking"]


@pytest.mark.asyncio
async def test_archive_delete_and_activity(async_client, authenticated_headers, users, make_trip_data):
    owner = authenticated_headers(users["owner"])
    trip = await create_trip(async_client, owner, make_trip_data())

    archived = await async_client.post(f"/trips/{trip['id']}/archive", headers=owner)
    activity = await async_client.get(f"/trips/{trip['id']}/activity", params={"limit": 1}, headers=owner)
    deleted = await async_client.delete(f"/trips/{trip['id']}", headers=owner)

    assert archived.json()["data"]["is_archived"] is True
    assert [a["action"] for a in activity.json()["data"]] == ["trip_archived"]
    assert deleted.status_code == 200
    assert (await async_client.get(f"/trips/{trip['id']}", headers=owner)).status_code == 404


@pytest.mark.asyncio
async def test_store_outage_is_503(async_client, authenticated_headers, users, trip_service, monkeypatch):
    async def broken(*args, **kwargs):
        raise StoreUnavailableError("list_for_user")

    monkeypatch.setattr(trip_service.repository, "list_for_user", broken)

    r = await async_client.get("/trips", headers=authenticated_headers(users["owner"]))

    assert r.status_code == 503
    assert r.json()["error_code"] == "STORE_UNAVAILABLE"


@pytest.mark.asyncio
async def test_health(async_client):
    r = await async_client.get("/health")

    assert r.status_code == 200
    assert r.json()["status"] == "healthy"
    assert r.json()["cache_enabled"] is True


@pytest.mark.asyncio
async def test_request_id_is_echoed(async_client, authenticated_headers, users):
    headers = {**authenticated_headers(users["owner"]), "X-Request-ID": "req-123"}

    r = await async_client.get("/trips", headers=headers)

    assert r.headers["X-Request-ID"] == "req-123"
    assert (await async_client.get("/")).headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_patch_with_naive_date(async_client, authenticated_headers, users, make_trip_data):
    owner = authenticated_headers(users["owner"])
    trip = await create_trip(async_client, owner, make_trip_data())

    r = await async_client.patch(f"/trips/{trip['id']}", json={"end_date": "2030-05-10T00:00:00"}, headers=owner)

    assert r.status_code == 200, r.text
    assert r.json()["data"]["version"] == 2


@pytest.mark.asyncio
async def test_overlong_tag_is_422(async_client, authenticated_headers, users, make_trip_data):
    payload = as_json(make_trip_data(tags=["x" * 65]))

    r = await async_client.post("/trips", json=payload, headers=authenticated_headers(users["owner"]))

    assert r.status_code == 422
    assert r.json()["error_code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_overlong_identity_header_is_422(async_client, authenticated_headers):
    r = await async_client.get("/trips", headers=authenticated_headers("u" * 129))

    assert r.status_code == 422
    assert r.json()["error_code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_accept_on_missing_trip_is_404(async_client, authenticated_headers, users):
    r = await async_client.post("/trips/does-not-exist/invitation/accept", headers=authenticated_headers(users["editor"]))

    assert r.status_code == 404
    assert r.json()["error_code"] == "INVITATION_NOT_FOUND"
