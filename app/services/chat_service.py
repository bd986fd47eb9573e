from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.models.common import as_utc, iso_or_none, utcnow
from app.models.message import Message
from app.models.service_request import ServiceRequest
from app.models.user import ROLE_ADMIN
from app.services.feeds import FeedHub, FeedTerminated, LiveQuery, messages_topic, notifications_topic, publish_changes
from app.services.notifications import TYPE_MESSAGE, send_notification
from app.services.request_lifecycle import is_terminal
from app.services.service_requests import actor_uuid, party_role
from app.services.users import ensure_active_user

MAX_MESSAGE_LENGTH = 4000


def list_messages_for_request(db: Session, request_id: Any) -> list[Message]:
    return (
        db.query(Message)
        .filter(Message.request_id == request_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )


def serialize_message(row: Message) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "request_id": str(row.request_id),
        "sender_id": str(row.sender_id),
        "sender_name": row.sender_name,
        "to_user_id": str(row.to_user_id) if row.to_user_id else None,
        "body": row.body,
        "read": bool(row.read),
        "created_at": iso_or_none(row.created_at),
    }


def ensure_chat_party_or_403(request: ServiceRequest, actor: dict[str, Any]) -> str | None:
    role = party_role(request, actor)
    if role is None and actor.get("role") != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="No access to this conversation")
    return role


def _next_created_at(db: Session, request_id: uuid.UUID):
    now = utcnow()
    last = (
        db.query(Message.created_at)
        .filter(Message.request_id == request_id)
        .order_by(Message.created_at.desc())
        .first()
    )
    last_at = as_utc(last[0]) if last else None
    # Keep the log strictly ordered even when two sends land on the same clock tick.
    if last_at is not None and last_at >= now:
        return last_at + timedelta(microseconds=1)
    return now


def send_message(
    db: Session,
    *,
    request: ServiceRequest,
    sender: dict[str, Any],
    body: str,
    feeds: FeedHub | None = None,
) -> Message:
    message_body = str(body or "").strip()
    if not message_body:
        raise HTTPException(status_code=400, detail='Field "body" is required')
    if len(message_body) > MAX_MESSAGE_LENGTH:
        raise HTTPException(status_code=400, detail="Message is too long")
    role = ensure_chat_party_or_403(request, sender)
    if role is None:
        raise HTTPException(status_code=403, detail="Only the requester and the assigned mechanic can chat")
    if is_terminal(request.status):
        raise HTTPException(status_code=409, detail=f"Request is {request.status}; chat is closed")

    sender_id = actor_uuid(sender)
    recipient = request.assigned_to if sender_id == request.user_id else request.user_id
    row = Message(
        request_id=request.id,
        sender_id=sender_id,
        sender_name=str(sender.get("name") or "").strip() or "Participant",
        to_user_id=recipient,
        body=message_body,
        read=False,
        created_at=_next_created_at(db, request.id),
    )
    db.add(row)
    topics = [messages_topic(request.id)]
    if recipient is not None:
        preview = message_body if len(message_body) <= 120 else message_body[:117] + "..."
        send_notification(
            db,
            user_id=recipient,
            title=f"New message from {row.sender_name}",
            body=preview,
            notification_type=TYPE_MESSAGE,
            data={"request_id": str(request.id)},
            request_id=request.id,
        )
        topics.append(notifications_topic(recipient))
    db.commit()
    db.refresh(row)
    publish_changes(feeds, topics)
    return row


def mark_messages_read(
    db: Session,
    *,
    request: ServiceRequest,
    reader: dict[str, Any],
    message_ids: list[uuid.UUID] | None = None,
    feeds: FeedHub | None = None,
) -> int:
    """Flip the read flag on messages the reader did not send."""
    reader_id = actor_uuid(reader)
    query = db.query(Message).filter(
        Message.request_id == request.id,
        Message.sender_id != reader_id,
        Message.read.is_(False),
    )
    if message_ids:
        query = query.filter(Message.id.in_(message_ids))
    changed = query.update({Message.read: True}, synchronize_session=False)
    db.commit()
    if changed:
        publish_changes(feeds, [messages_topic(request.id)])
    return int(changed)


def messages_query(request_id: uuid.UUID, viewer: dict[str, Any]) -> LiveQuery:
    viewer_id = actor_uuid(viewer)

    def _fetch(db: Session) -> list[dict[str, Any]]:
        ensure_active_user(db, viewer_id)
        request = db.get(ServiceRequest, request_id)
        if request is None:
            raise FeedTerminated("Request no longer exists")
        if party_role(request, viewer) is None and viewer.get("role") != ROLE_ADMIN:
            raise FeedTerminated("No access to this conversation")
        return [serialize_message(row) for row in list_messages_for_request(db, request_id)]

    return LiveQuery(topics=(messages_topic(request_id),), fetch=_fetch)
