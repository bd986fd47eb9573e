from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.api.marketplace.common import uuid_or_400
from app.core.deps import get_current_user, get_feed_hub
from app.db.session import get_db
from app.services.feeds import FeedHub, notifications_topic, publish_changes
from app.services.notifications import (
    get_notification,
    list_notifications,
    mark_notifications_read,
    serialize_notification,
    unread_count,
)

router = APIRouter()


@router.get("")
def list_mine(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    rows, total = list_notifications(db, user_id=user["sub"], unread_only=unread_only, limit=limit, offset=offset)
    return {
        "rows": [serialize_notification(row) for row in rows],
        "total": total,
        "unread_total": unread_count(db, user_id=user["sub"]),
    }


@router.post("/read-all")
def read_all(
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    feeds: FeedHub = Depends(get_feed_hub),
):
    changed = mark_notifications_read(db, user_id=user["sub"])
    db.commit()
    if changed:
        publish_changes(feeds, [notifications_topic(user["sub"])])
    return {"status": "ok", "changed": changed, "unread_total": unread_count(db, user_id=user["sub"])}


@router.post("/{notification_id}/read")
def read_one(
    notification_id: str,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    feeds: FeedHub = Depends(get_feed_hub),
):
    notification_uuid = uuid_or_400(notification_id, "notification_id")
    row = get_notification(db, user_id=user["sub"], notification_id=notification_uuid)
    if row is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    changed = mark_notifications_read(db, user_id=user["sub"], notification_id=notification_uuid)
    db.commit()
    db.refresh(row)
    if changed:
        publish_changes(feeds, [notifications_topic(user["sub"])])
    return {"status": "ok", "changed": changed, "notification": serialize_notification(row)}
