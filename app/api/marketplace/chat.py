from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.marketplace.common import uuid_or_400
from app.core.deps import get_current_user, get_feed_hub
from app.db.session import get_db
from app.schemas.requests import MessageCreate, MessagesRead
from app.services.chat_service import (
    ensure_chat_party_or_403,
    list_messages_for_request,
    mark_messages_read,
    send_message,
    serialize_message,
)
from app.services.feeds import FeedHub
from app.services.service_requests import get_request_or_404

router = APIRouter()


@router.get("/{request_id}/messages")
def list_messages(request_id: str, db: Session = Depends(get_db), user: dict = Depends(get_current_user)):
    req = get_request_or_404(db, uuid_or_400(request_id, "request_id"))
    ensure_chat_party_or_403(req, user)
    rows = list_messages_for_request(db, req.id)
    return {"rows": [serialize_message(row) for row in rows], "total": len(rows)}


@router.post("/{request_id}/messages", status_code=201)
def create_message(
    request_id: str,
    payload: MessageCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    feeds: FeedHub = Depends(get_feed_hub),
):
    req = get_request_or_404(db, uuid_or_400(request_id, "request_id"))
    row = send_message(db, request=req, sender=user, body=payload.body, feeds=feeds)
    return serialize_message(row)


@router.post("/{request_id}/messages/read")
def read_messages(
    request_id: str,
    payload: MessagesRead | None = None,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    feeds: FeedHub = Depends(get_feed_hub),
):
    req = get_request_or_404(db, uuid_or_400(request_id, "request_id"))
    ensure_chat_party_or_403(req, user)
    changed = mark_messages_read(
        db,
        request=req,
        reader=user,
        message_ids=payload.message_ids if payload else None,
        feeds=feeds,
    )
    return {"status": "ok", "changed": changed}
