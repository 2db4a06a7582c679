"""
Trip API endpoints - trip lifecycle, collaboration and queries
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import JSONResponse

from tripshare.api.dependencies import get_current_user_id, get_trip_service
from tripshare.models.trip import TripStatus
from tripshare.schemas.base import ServiceResult
from tripshare.schemas.trip import InviteRequest, RoleChangeRequest, TripCreate
from tripshare.services.trip_service import TripService

router = APIRouter(prefix="/trips", tags=["trips"])


def respond(result: ServiceResult, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """Wrap a service outcome in the response envelope with a matching status."""
    status_code = success_status if result.ok else result.error.status_code
    return JSONResponse(
        status_code=status_code,
        content=result.to_envelope().model_dump(mode="json"),
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_trip(
    trip_data: TripCreate,
    service: TripService = Depends(get_trip_service),
    user_id: str = Depends(get_current_user_id),
):
    """
    Create a new trip owned by the caller

    - **title**: 3 to 200 characters
    - **destination**: name, country and optional city
    - **start_date** / **end_date**: end must be after start
    - **budget**, **tags**, **status**, **visibility**: optional
    """
    result = await service.create_trip(user_id, trip_data)
    return respond(result, status.HTTP_201_CREATED)


@router.get("")
async def list_trips(
    status_filter: Optional[TripStatus] = Query(None, alias="status"),
    destination: Optional[str] = Query(None, max_length=200),
    start_after: Optional[datetime] = Query(None),
    end_before: Optional[datetime] = Query(None),
    budget_min: Optional[float] = Query(None, ge=0),
    budget_max: Optional[float] = Query(None, ge=0),
    tags: Optional[List[str]] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: TripService = Depends(get_trip_service),
    user_id: str = Depends(get_current_user_id),
):
    """
    List the caller's non-archived trips, most recently changed first
    """
    filters = {
        "status": status_filter,
        "destination": destination,
        "start_after": start_after,
        "end_before": end_before,
        "budget_min": budget_min,
        "budget_max": budget_max,
        "tags": tags,
    }
    result = await service.list_trips_for_user(
        user_id,
        {k: v for k, v in filters.items() if v is not None},
        {"page": page, "limit": limit},
    )
    return respond(result)


@router.get("/search")
async def search_trips(
    q: str = Query(..., min_length=1, max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: TripService = Depends(get_trip_service),
    user_id: str = Depends(get_current_user_id),
):
    """
    Search the caller's trips by title, description, destination and tags
    """
    result = await service.search_trips(user_id, q, {"page": page, "limit": limit})
    return respond(result)


@router.get("/{trip_id}")
async def get_trip(
    trip_id: str,
    service: TripService = Depends(get_trip_service),
    user_id: str = Depends(get_current_user_id),
):
    return respond(await service.get_trip(trip_id, user_id))


@router.patch("/{trip_id}")
async def update_trip(
    trip_id: str,
    patch: Dict[str, Any] = Body(...),
    expected_version: Optional[int] = Query(None, ge=1),
    service: TripService = Depends(get_trip_service),
    user_id: str = Depends(get_current_user_id),
):
    """
    Patch business fields of a trip

    Pass **expected_version** to make the write conditional on the trip
    still being at that version.
    """
    result = await service.update_trip(trip_id, user_id, patch, expected_version)
    return respond(result)


@router.post("/{trip_id}/archive")
async def archive_trip(
    trip_id: str,
    service: TripService = Depends(get_trip_service),
    user_id: str = Depends(get_current_user_id),
):
    return respond(await service.archive_trip(trip_id, user_id))


@router.delete("/{trip_id}")
async def delete_trip(
    trip_id: str,
    service: TripService = Depends(get_trip_service),
    user_id: str = Depends(get_current_user_id),
):
    return respond(await service.delete_trip(trip_id, user_id))


@router.post("/{trip_id}/collaborators", status_code=status.HTTP_201_CREATED)
async def invite_collaborator(
    trip_id: str,
    invite: InviteRequest,
    service: TripService = Depends(get_trip_service),
    user_id: str = Depends(get_current_user_id),
):
    """
    Invite a user as editor, contributor or viewer
    """
    result = await service.invite_collaborator(trip_id, user_id, invite.user_id, invite.role)
    return respond(result, status.HTTP_201_CREATED)


@router.post("/{trip_id}/invitation/accept")
async def accept_invitation(
    trip_id: str,
    service: TripService = Depends(get_trip_service),
    user_id: str = Depends(get_current_user_id),
):
    return respond(await service.accept_invitation(trip_id, user_id))


@router.post("/{trip_id}/invitation/decline")
async def decline_invitation(
    trip_id: str,
    service: TripService = Depends(get_trip_service),
    user_id: str = Depends(get_current_user_id),
):
    return respond(await service.decline_invitation(trip_id, user_id))


@router.delete("/{trip_id}/collaborators/{collaborator_id}")
async def remove_collaborator(
    trip_id: str,
    collaborator_id: str,
    service: TripService = Depends(get_trip_service),
    user_id: str = Depends(get_current_user_id),
):
    return respond(await service.remove_collaborator(trip_id, user_id, collaborator_id))


@router.patch("/{trip_id}/collaborators/{collaborator_id}")
async def change_collaborator_role(
    trip_id: str,
    collaborator_id: str,
    change: RoleChangeRequest,
    service: TripService = Depends(get_trip_service),
    user_id: str = Depends(get_current_user_id),
):
    result = await service.change_collaborator_role(trip_id, user_id, collaborator_id, change.role)
    return respond(result)


@router.get("/{trip_id}/activity")
async def get_trip_activity(
    trip_id: str,
    limit: Optional[int] = Query(None, ge=1, le=100),
    service: TripService = Depends(get_trip_service),
    user_id: str = Depends(get_current_user_id),
):
    """
    Recent activity on a trip, newest first
    """
    return respond(await service.get_trip_activity(trip_id, user_id, limit))


@router.get("/{trip_id}/permissions/{permission}")
async def check_permission(
    trip_id: str,
    permission: str,
    service: TripService = Depends(get_trip_service),
    user_id: str = Depends(get_current_user_id),
):
    """
    Whether the caller holds a permission on the trip
    """
    return respond(await service.check_permission(trip_id, user_id, permission))
