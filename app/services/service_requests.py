"""Request repository: create, list and move service requests through their lifecycle.

Every status change is a conditional UPDATE keyed on the status the caller
observed (and, after acceptance, on the assignee). Zero affected rows means
somebody else moved the request first; the caller gets a 409 carrying the
re-read document so it can reconcile its local view.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.common import iso_or_none, utcnow
from app.models.service_request import ServiceRequest
from app.models.status_history import StatusHistory
from app.models.user import ROLE_ADMIN, ROLE_MECHANIC
from app.services.completed_jobs import build_completed_job, get_completed_job_for_request
from app.services.feeds import (
    TOPIC_PENDING_REQUESTS,
    FeedHub,
    LiveQuery,
    notifications_topic,
    publish_changes,
    worker_position_topic,
)
from app.services.geo import SORT_RECENT, Point, sort_requests, with_distances
from app.services.notifications import notify_request_event
from app.services.request_lifecycle import (
    ACTOR_ASSIGNED_WORKER,
    ACTOR_REQUESTER,
    ACTOR_WORKER,
    SERVICE_TYPES,
    STATUS_ACCEPTED,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_PENDING,
    TERMINAL_STATUSES,
    URGENCY_LEVELS,
    VEHICLE_TYPES,
    TransitionError,
    allowed_targets,
    next_worker_status,
    validate_transition,
)
from app.services.users import ensure_active_user
from app.services.worker_positions import fresh_position
from app.workers.tasks.geocode import resolve_request_address

_LOG = logging.getLogger("app.requests")


def actor_uuid(actor: dict[str, Any]) -> uuid.UUID:
    try:
        return uuid.UUID(str(actor.get("sub") or ""))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")


def serialize_request(row: ServiceRequest) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "user_id": str(row.user_id),
        "service_type": row.service_type,
        "vehicle_type": row.vehicle_type,
        "description": row.description,
        "urgency": row.urgency,
        "location": {"lat": row.lat, "lng": row.lng, "address": row.address},
        "status": row.status,
        "assigned_to": str(row.assigned_to) if row.assigned_to else None,
        "estimated_pay": float(row.estimated_pay) if row.estimated_pay is not None else None,
        "accepted_at": iso_or_none(row.accepted_at),
        "completed_at": iso_or_none(row.completed_at),
        "created_at": iso_or_none(row.created_at),
        "updated_at": iso_or_none(row.updated_at),
    }


def serialize_status_history(row: StatusHistory) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "request_id": str(row.request_id),
        "from_status": row.from_status,
        "to_status": row.to_status,
        "changed_by": str(row.changed_by) if row.changed_by else None,
        "comment": row.comment,
        "created_at": iso_or_none(row.created_at),
    }


def _conflict(db: Session, request_id: uuid.UUID, message: str) -> HTTPException:
    db.rollback()
    current = db.get(ServiceRequest, request_id)
    return HTTPException(
        status_code=409,
        detail={"message": message, "current": serialize_request(current) if current else None},
    )


def _transition_or_409(current: str, target: str, actor: str) -> None:
    try:
        validate_transition(current, target, actor=actor)
    except TransitionError as exc:
        raise HTTPException(status_code=409, detail=exc.reason)


def get_request_or_404(db: Session, request_id: uuid.UUID) -> ServiceRequest:
    row = db.get(ServiceRequest, request_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Request not found")
    return row


def party_role(row: ServiceRequest, actor: dict[str, Any]) -> str | None:
    actor_id = actor_uuid(actor)
    if row.user_id == actor_id:
        return ACTOR_REQUESTER
    if row.assigned_to is not None and row.assigned_to == actor_id:
        return ACTOR_ASSIGNED_WORKER
    return None


def ensure_can_view_or_403(row: ServiceRequest, actor: dict[str, Any]) -> None:
    if actor.get("role") == ROLE_ADMIN or party_role(row, actor) is not None:
        return
    if actor.get("role") == ROLE_MECHANIC and row.status == STATUS_PENDING:
        return
    raise HTTPException(status_code=403, detail="No access to this request")


def register_status_history(
    db: Session,
    request: ServiceRequest,
    from_status: str | None,
    to_status: str,
    *,
    changed_by: uuid.UUID | None,
    comment: str | None = None,
) -> None:
    db.add(
        StatusHistory(
            request_id=request.id,
            from_status=from_status,
            to_status=to_status,
            changed_by=changed_by,
            comment=comment,
        )
    )


def list_status_history(db: Session, request_id: uuid.UUID) -> list[StatusHistory]:
    return (
        db.query(StatusHistory)
        .filter(StatusHistory.request_id == request_id)
        .order_by(StatusHistory.created_at.asc(), StatusHistory.id.asc())
        .all()
    )


def _enqueue_address_resolution(request_id: uuid.UUID) -> None:
    if not settings.GEOCODE_ON_CREATE:
        return
    try:
        resolve_request_address.delay(str(request_id))
    except Exception:
        _LOG.warning("could not enqueue address resolution request_id=%s", request_id)


def create_request(
    db: Session,
    *,
    requester: dict[str, Any],
    service_type: str,
    vehicle_type: str,
    lat: float,
    lng: float,
    address: str | None = None,
    description: str | None = None,
    urgency: str = "normal",
    estimated_pay: float | None = None,
    feeds: FeedHub | None = None,
) -> ServiceRequest:
    service = str(service_type or "").strip().lower()
    vehicle = str(vehicle_type or "").strip().lower()
    level = str(urgency or "normal").strip().lower()
    if service not in SERVICE_TYPES:
        raise HTTPException(status_code=400, detail=f'Unknown service type "{service}"')
    if vehicle not in VEHICLE_TYPES:
        raise HTTPException(status_code=400, detail=f'Unknown vehicle type "{vehicle}"')
    if level not in URGENCY_LEVELS:
        raise HTTPException(status_code=400, detail=f'Unknown urgency "{level}"')

    requester_id = actor_uuid(requester)
    row = ServiceRequest(
        user_id=requester_id,
        service_type=service,
        vehicle_type=vehicle,
        description=str(description or "").strip() or None,
        urgency=level,
        lat=float(lat),
        lng=float(lng),
        address=str(address or "").strip() or None,
        status=STATUS_PENDING,
        assigned_to=None,
        estimated_pay=estimated_pay,
    )
    db.add(row)
    db.flush()
    register_status_history(db, row, None, STATUS_PENDING, changed_by=requester_id)
    db.commit()
    db.refresh(row)
    _LOG.info("request created id=%s service=%s urgency=%s", row.id, row.service_type, row.urgency)
    publish_changes(feeds, [TOPIC_PENDING_REQUESTS])
    if row.address is None:
        _enqueue_address_resolution(row.id)
    return row


def list_user_requests(db: Session, user_id: uuid.UUID) -> list[ServiceRequest]:
    return (
        db.query(ServiceRequest)
        .filter(ServiceRequest.user_id == user_id)
        .order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc())
        .all()
    )


def list_pending_requests(db: Session) -> list[ServiceRequest]:
    return (
        db.query(ServiceRequest)
        .filter(ServiceRequest.status == STATUS_PENDING)
        .order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc())
        .all()
    )


def list_assigned_requests(db: Session, worker_id: uuid.UUID, *, active_only: bool = True) -> list[ServiceRequest]:
    query = db.query(ServiceRequest).filter(ServiceRequest.assigned_to == worker_id)
    if active_only:
        query = query.filter(ServiceRequest.status.notin_(TERMINAL_STATUSES))
    return query.order_by(ServiceRequest.updated_at.desc(), ServiceRequest.id.desc()).all()


def pending_board(rows: list[dict[str, Any]], *, sort: str = SORT_RECENT, origin: Point | None = None) -> list[dict[str, Any]]:
    return sort_requests(with_distances(rows, origin), sort, origin)


def pending_requests_query(viewer_id: uuid.UUID, *, sort: str = SORT_RECENT) -> LiveQuery:
    def _fetch(db: Session) -> list[dict[str, Any]]:
        ensure_active_user(db, viewer_id)
        rows = [serialize_request(row) for row in list_pending_requests(db)]
        return pending_board(rows, sort=sort, origin=fresh_position(str(viewer_id)))

    return LiveQuery(
        topics=(TOPIC_PENDING_REQUESTS, worker_position_topic(viewer_id)),
        fetch=_fetch,
    )


def accept_request(
    db: Session,
    *,
    request_id: uuid.UUID,
    worker: dict[str, Any],
    feeds: FeedHub | None = None,
) -> ServiceRequest:
    worker_id = actor_uuid(worker)
    row = get_request_or_404(db, request_id)
    try:
        validate_transition(row.status, STATUS_ACCEPTED, actor=ACTOR_WORKER)
    except TransitionError as exc:
        # Late losers get the current document too, not only the exact-race loser.
        raise _conflict(db, request_id, exc.reason)

    now = utcnow()
    changed = (
        db.query(ServiceRequest)
        .filter(
            ServiceRequest.id == request_id,
            ServiceRequest.status == STATUS_PENDING,
            ServiceRequest.assigned_to.is_(None),
        )
        .update(
            {
                ServiceRequest.status: STATUS_ACCEPTED,
                ServiceRequest.assigned_to: worker_id,
                ServiceRequest.accepted_at: now,
                ServiceRequest.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    if changed != 1:
        _LOG.info("accept lost race request_id=%s worker=%s", request_id, worker_id)
        raise _conflict(db, request_id, "Request was already accepted by another mechanic")

    db.refresh(row)
    register_status_history(db, row, STATUS_PENDING, STATUS_ACCEPTED, changed_by=worker_id)
    sent = notify_request_event(
        db,
        request=row,
        from_status=STATUS_PENDING,
        to_status=STATUS_ACCEPTED,
        actor_id=worker_id,
        actor_name=str(worker.get("name") or ""),
    )
    db.commit()
    db.refresh(row)
    _LOG.info("request accepted id=%s worker=%s", row.id, worker_id)
    publish_changes(feeds, [TOPIC_PENDING_REQUESTS, *(notifications_topic(n.user_id) for n in sent)])
    return row


def advance_request(
    db: Session,
    *,
    request_id: uuid.UUID,
    worker: dict[str, Any],
    target: str | None = None,
    feeds: FeedHub | None = None,
) -> ServiceRequest:
    worker_id = actor_uuid(worker)
    row = get_request_or_404(db, request_id)
    observed = row.status
    to_status = str(target or "").strip() or next_worker_status(observed)
    if to_status is None or to_status == STATUS_CANCELLED:
        raise HTTPException(status_code=409, detail=f"Request in status {observed} cannot be advanced")
    _transition_or_409(observed, to_status, ACTOR_ASSIGNED_WORKER)
    if row.assigned_to != worker_id:
        raise HTTPException(status_code=403, detail="Only the assigned mechanic can update this request")

    now = utcnow()
    values: dict[Any, Any] = {ServiceRequest.status: to_status, ServiceRequest.updated_at: now}
    if to_status == STATUS_COMPLETED:
        values[ServiceRequest.completed_at] = now
    changed = (
        db.query(ServiceRequest)
        .filter(
            ServiceRequest.id == request_id,
            ServiceRequest.status == observed,
            ServiceRequest.assigned_to == worker_id,
        )
        .update(values, synchronize_session=False)
    )
    if changed != 1:
        raise _conflict(db, request_id, f"Request is no longer {observed}")

    db.refresh(row)
    if to_status == STATUS_COMPLETED:
        if get_completed_job_for_request(db, row.id) is not None:
            raise _conflict(db, request_id, "Job is already archived")
        db.add(build_completed_job(db, row, worker_id=worker_id))
    register_status_history(db, row, observed, to_status, changed_by=worker_id)
    sent = notify_request_event(
        db,
        request=row,
        from_status=observed,
        to_status=to_status,
        actor_id=worker_id,
        actor_name=str(worker.get("name") or ""),
    )
    try:
        db.commit()
    except IntegrityError:
        # Unique request_id on the archive: a concurrent completion got there first.
        raise _conflict(db, request_id, "Job is already archived")
    db.refresh(row)
    _LOG.info("request advanced id=%s %s->%s", row.id, observed, to_status)
    publish_changes(feeds, [notifications_topic(n.user_id) for n in sent])
    return row


def cancel_request(
    db: Session,
    *,
    request_id: uuid.UUID,
    actor: dict[str, Any],
    reason: str | None = None,
    feeds: FeedHub | None = None,
) -> ServiceRequest:
    actor_id = actor_uuid(actor)
    row = get_request_or_404(db, request_id)
    role = party_role(row, actor)
    if role is None:
        raise HTTPException(status_code=403, detail="Only the requester or the assigned mechanic can cancel")
    observed = row.status
    _transition_or_409(observed, STATUS_CANCELLED, role)

    query = db.query(ServiceRequest).filter(
        ServiceRequest.id == request_id,
        ServiceRequest.status == observed,
    )
    if row.assigned_to is None:
        query = query.filter(ServiceRequest.assigned_to.is_(None))
    else:
        query = query.filter(ServiceRequest.assigned_to == row.assigned_to)
    changed = query.update(
        {
            ServiceRequest.status: STATUS_CANCELLED,
            ServiceRequest.cancelled_by: actor_id,
            ServiceRequest.updated_at: utcnow(),
        },
        synchronize_session=False,
    )
    if changed != 1:
        raise _conflict(db, request_id, f"Request is no longer {observed}")

    db.refresh(row)
    register_status_history(
        db,
        row,
        observed,
        STATUS_CANCELLED,
        changed_by=actor_id,
        comment=str(reason or "").strip()[:400] or None,
    )
    sent = notify_request_event(
        db,
        request=row,
        from_status=observed,
        to_status=STATUS_CANCELLED,
        actor_id=actor_id,
        actor_name=str(actor.get("name") or ""),
    )
    db.commit()
    db.refresh(row)
    _LOG.info("request cancelled id=%s by=%s from=%s", row.id, role, observed)
    topics = [notifications_topic(n.user_id) for n in sent]
    if observed == STATUS_PENDING:
        topics.append(TOPIC_PENDING_REQUESTS)
    publish_changes(feeds, topics)
    return row


def request_actions(row: ServiceRequest, actor: dict[str, Any]) -> list[str]:
    role = party_role(row, actor)
    if role is None and actor.get("role") == ROLE_MECHANIC and row.status == STATUS_PENDING:
        role = ACTOR_WORKER
    if role is None:
        return []
    return allowed_targets(row.status, actor=role)
