from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.api.marketplace.common import uuid_or_400
from app.core.deps import get_current_user, get_feed_hub, require_role
from app.db.session import get_db
from app.models.user import ROLE_ADMIN, ROLE_MECHANIC, ROLE_USER
from app.schemas.requests import CancelIn, RequestCreate, StatusAdvance
from app.services.display import status_display, urgency_display
from app.services.feeds import FeedHub
from app.services.geo import SORT_MODES, SORT_RECENT
from app.services.service_requests import (
    accept_request,
    actor_uuid,
    advance_request,
    cancel_request,
    create_request,
    ensure_can_view_or_403,
    get_request_or_404,
    list_assigned_requests,
    list_pending_requests,
    list_status_history,
    list_user_requests,
    pending_board,
    request_actions,
    serialize_request,
    serialize_status_history,
)
from app.services.worker_positions import fresh_position

router = APIRouter()


def _request_view(row, actor: dict) -> dict:
    payload = serialize_request(row)
    payload["status_display"] = status_display(row.status)
    payload["urgency_display"] = urgency_display(row.urgency)
    payload["actions"] = request_actions(row, actor)
    return payload


@router.post("", status_code=201)
def create(
    payload: RequestCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_role(ROLE_USER)),
    feeds: FeedHub = Depends(get_feed_hub),
):
    row = create_request(
        db,
        requester=user,
        service_type=payload.service_type,
        vehicle_type=payload.vehicle_type,
        lat=payload.lat,
        lng=payload.lng,
        address=payload.address,
        description=payload.description,
        urgency=payload.urgency,
        estimated_pay=payload.estimated_pay,
        feeds=feeds,
    )
    return _request_view(row, user)


@router.get("/mine")
def my_requests(db: Session = Depends(get_db), user: dict = Depends(require_role(ROLE_USER))):
    rows = list_user_requests(db, actor_uuid(user))
    return {"rows": [_request_view(row, user) for row in rows], "total": len(rows)}


@router.get("/pending")
def pending(
    sort: str = Query(default=SORT_RECENT),
    lat: float | None = Query(default=None, ge=-90, le=90),
    lng: float | None = Query(default=None, ge=-180, le=180),
    db: Session = Depends(get_db),
    user: dict = Depends(require_role(ROLE_MECHANIC, ROLE_ADMIN)),
):
    mode = str(sort or SORT_RECENT).strip().lower()
    if mode not in SORT_MODES:
        raise HTTPException(status_code=400, detail=f'Unknown sort "{mode}"')
    if (lat is None) != (lng is None):
        raise HTTPException(status_code=400, detail='Both "lat" and "lng" are required for an explicit origin')
    origin = (lat, lng) if lat is not None and lng is not None else fresh_position(user["sub"])
    rows = pending_board([serialize_request(row) for row in list_pending_requests(db)], sort=mode, origin=origin)
    return {
        "rows": rows,
        "total": len(rows),
        "sort": mode,
        "origin": {"lat": origin[0], "lng": origin[1]} if origin else None,
    }


@router.get("/assigned")
def assigned(
    include_closed: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: dict = Depends(require_role(ROLE_MECHANIC)),
):
    rows = list_assigned_requests(db, actor_uuid(user), active_only=not include_closed)
    return {"rows": [_request_view(row, user) for row in rows], "total": len(rows)}


@router.get("/{request_id}")
def get_one(request_id: str, db: Session = Depends(get_db), user: dict = Depends(get_current_user)):
    row = get_request_or_404(db, uuid_or_400(request_id, "request_id"))
    ensure_can_view_or_403(row, user)
    return _request_view(row, user)


@router.get("/{request_id}/timeline")
def timeline(request_id: str, db: Session = Depends(get_db), user: dict = Depends(get_current_user)):
    row = get_request_or_404(db, uuid_or_400(request_id, "request_id"))
    ensure_can_view_or_403(row, user)
    return {"rows": [serialize_status_history(item) for item in list_status_history(db, row.id)]}


@router.post("/{request_id}/accept")
def accept(
    request_id: str,
    db: Session = Depends(get_db),
    user: dict = Depends(require_role(ROLE_MECHANIC)),
    feeds: FeedHub = Depends(get_feed_hub),
):
    row = accept_request(db, request_id=uuid_or_400(request_id, "request_id"), worker=user, feeds=feeds)
    return _request_view(row, user)


@router.post("/{request_id}/status")
def advance(
    request_id: str,
    payload: StatusAdvance | None = None,
    db: Session = Depends(get_db),
    user: dict = Depends(require_role(ROLE_MECHANIC)),
    feeds: FeedHub = Depends(get_feed_hub),
):
    row = advance_request(
        db,
        request_id=uuid_or_400(request_id, "request_id"),
        worker=user,
        target=payload.status if payload else None,
        feeds=feeds,
    )
    return _request_view(row, user)


@router.post("/{request_id}/cancel")
def cancel(
    request_id: str,
    payload: CancelIn | None = None,
    db: Session = Depends(get_db),
    user: dict = Depends(require_role(ROLE_USER, ROLE_MECHANIC)),
    feeds: FeedHub = Depends(get_feed_hub),
):
    row = cancel_request(
        db,
        request_id=uuid_or_400(request_id, "request_id"),
        actor=user,
        reason=payload.reason if payload else None,
        feeds=feeds,
    )
    return _request_view(row, user)
