from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.api.marketplace.common import uuid_or_400
from app.core.deps import get_feed_hub, require_role
from app.db.session import get_db
from app.models.service_request import ServiceRequest
from app.models.user import ROLE_ADMIN
from app.schemas.workers import UserStatusPatch
from app.services.analytics import compute_analytics
from app.services.feeds import TOPIC_PENDING_REQUESTS, FeedHub, notifications_topic, publish_changes
from app.services.request_lifecycle import STATUSES
from app.services.service_requests import serialize_request
from app.services.users import list_users_by_role, serialize_user, set_user_status

router = APIRouter()


@router.get("/users")
def users(
    role: str | None = Query(default=None),
    db: Session = Depends(get_db),
    admin: dict = Depends(require_role(ROLE_ADMIN)),
):
    rows = list_users_by_role(db, role)
    return {"rows": [serialize_user(row) for row in rows], "total": len(rows)}


@router.patch("/users/{user_id}")
def update_user(
    user_id: str,
    payload: UserStatusPatch,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_role(ROLE_ADMIN)),
    feeds: FeedHub = Depends(get_feed_hub),
):
    target = uuid_or_400(user_id, "user_id")
    if str(target) == str(admin.get("sub")) and payload.status != "active":
        raise HTTPException(status_code=400, detail="Administrators cannot deactivate themselves")
    row = set_user_status(db, user_id=target, status=payload.status)
    # Open feeds re-check the account on their next fetch.
    publish_changes(feeds, [notifications_topic(row.id), TOPIC_PENDING_REQUESTS])
    return serialize_user(row)


@router.get("/requests")
def requests(
    status: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    admin: dict = Depends(require_role(ROLE_ADMIN)),
):
    query = db.query(ServiceRequest)
    if status:
        normalized = str(status).strip().lower()
        if normalized not in STATUSES:
            raise HTTPException(status_code=400, detail=f'Unknown status "{normalized}"')
        query = query.filter(ServiceRequest.status == normalized)
    total = query.count()
    rows = (
        query.order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {"rows": [serialize_request(row) for row in rows], "total": int(total)}


@router.get("/analytics")
def analytics(db: Session = Depends(get_db), admin: dict = Depends(require_role(ROLE_ADMIN))):
    return compute_analytics(db)
