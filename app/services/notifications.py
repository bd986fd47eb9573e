from __future__ import annotations

import uuid
from typing import Any

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.models.common import iso_or_none, utcnow
from app.models.notification import Notification
from app.models.service_request import ServiceRequest
from app.services.display import service_label, status_label
from app.services.feeds import LiveQuery, notifications_topic
from app.services.request_lifecycle import STATUS_ACCEPTED, STATUS_CANCELLED, STATUS_COMPLETED
from app.services.users import ensure_active_user

TYPE_REQUEST_UPDATE = "request_update"
TYPE_ASSIGNMENT = "assignment"
TYPE_MESSAGE = "message"
TYPE_SYSTEM = "system"
NOTIFICATION_TYPES = (TYPE_REQUEST_UPDATE, TYPE_ASSIGNMENT, TYPE_MESSAGE, TYPE_SYSTEM)


def _as_uuid_or_none(value: Any) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def send_notification(
    db: Session,
    *,
    user_id: str | uuid.UUID,
    title: str,
    body: str = "",
    notification_type: str = TYPE_SYSTEM,
    data: dict[str, Any] | None = None,
    request_id: uuid.UUID | None = None,
) -> Notification:
    recipient = _as_uuid_or_none(user_id)
    if recipient is None:
        raise HTTPException(status_code=400, detail='Field "user_id" is required')
    kind = str(notification_type or "").strip().lower()
    if kind not in NOTIFICATION_TYPES:
        raise HTTPException(status_code=400, detail=f'Unknown notification type "{kind}"')
    row = Notification(
        user_id=recipient,
        request_id=request_id,
        type=kind,
        title=str(title or "").strip() or "Update",
        body=str(body or "").strip(),
        data=dict(data or {}),
        read=False,
        read_at=None,
    )
    db.add(row)
    return row


def _event_text(request: ServiceRequest, to_status: str, actor_name: str) -> tuple[str, str, str]:
    service = service_label(request.service_type)
    actor = str(actor_name or "").strip() or "Someone"
    if to_status == STATUS_ACCEPTED:
        return TYPE_ASSIGNMENT, "Mechanic assigned", f"{actor} accepted your {service} request"
    if to_status == STATUS_COMPLETED:
        return TYPE_REQUEST_UPDATE, "Job completed", f"Your {service} request has been completed"
    if to_status == STATUS_CANCELLED:
        return TYPE_REQUEST_UPDATE, "Request cancelled", f"{actor} cancelled the {service} request"
    return TYPE_REQUEST_UPDATE, status_label(to_status), f"{service}: {status_label(to_status)}"


def notify_request_event(
    db: Session,
    *,
    request: ServiceRequest,
    from_status: str | None,
    to_status: str,
    actor_id: str | uuid.UUID | None,
    actor_name: str = "",
) -> list[Notification]:
    """Fan a status change out to the parties of the request other than the actor."""
    actor_uuid = _as_uuid_or_none(actor_id)
    recipients: list[uuid.UUID] = []
    for party in (request.user_id, request.assigned_to):
        party_uuid = _as_uuid_or_none(party)
        if party_uuid is None or party_uuid == actor_uuid or party_uuid in recipients:
            continue
        recipients.append(party_uuid)

    kind, title, body = _event_text(request, to_status, actor_name)
    data = {
        "request_id": str(request.id),
        "from_status": from_status,
        "to_status": to_status,
        "actor_id": str(actor_uuid) if actor_uuid else None,
    }
    return [
        send_notification(
            db,
            user_id=recipient,
            title=title,
            body=body,
            notification_type=kind,
            data=data,
            request_id=request.id,
        )
        for recipient in recipients
    ]


def serialize_notification(row: Notification) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "user_id": str(row.user_id),
        "request_id": str(row.request_id) if row.request_id else None,
        "type": row.type,
        "title": row.title,
        "body": row.body,
        "data": row.data or {},
        "read": bool(row.read),
        "read_at": iso_or_none(row.read_at),
        "created_at": iso_or_none(row.created_at),
    }


def list_notifications(
    db: Session,
    *,
    user_id: str | uuid.UUID,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Notification], int]:
    user_uuid = _as_uuid_or_none(user_id)
    if user_uuid is None:
        return [], 0
    query = db.query(Notification).filter(Notification.user_id == user_uuid)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    total = query.count()
    rows = (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(int(max(offset, 0)))
        .limit(int(min(max(limit, 1), 200)))
        .all()
    )
    return rows, int(total)


def unread_count(db: Session, *, user_id: str | uuid.UUID) -> int:
    user_uuid = _as_uuid_or_none(user_id)
    if user_uuid is None:
        return 0
    return int(
        db.query(Notification)
        .filter(Notification.user_id == user_uuid, Notification.read.is_(False))
        .count()
    )


def get_notification(db: Session, *, user_id: str | uuid.UUID, notification_id: uuid.UUID) -> Notification | None:
    user_uuid = _as_uuid_or_none(user_id)
    if user_uuid is None:
        return None
    return (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_uuid)
        .first()
    )


def mark_notifications_read(
    db: Session,
    *,
    user_id: str | uuid.UUID,
    notification_id: uuid.UUID | None = None,
) -> int:
    """Flip unread rows to read; already-read rows keep their original read_at."""
    user_uuid = _as_uuid_or_none(user_id)
    if user_uuid is None:
        return 0
    query = db.query(Notification).filter(
        Notification.user_id == user_uuid,
        Notification.read.is_(False),
    )
    if notification_id is not None:
        query = query.filter(Notification.id == notification_id)
    rows = query.all()
    now = utcnow()
    for row in rows:
        row.read = True
        row.read_at = now
        db.add(row)
    return len(rows)


def notifications_query(user_id: str | uuid.UUID, *, limit: int = 50) -> LiveQuery:
    user_uuid = _as_uuid_or_none(user_id)

    def _fetch(db: Session) -> list[dict[str, Any]]:
        ensure_active_user(db, user_uuid)
        rows, _ = list_notifications(db, user_id=user_uuid, limit=limit)
        return [serialize_notification(row) for row in rows]

    return LiveQuery(topics=(notifications_topic(user_uuid),), fetch=_fetch)
