from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.orm import Session

from app.models.common import as_utc, iso_or_none, utcnow
from app.models.completed_job import CompletedJob
from app.models.service_request import ServiceRequest
from app.models.user import User
from app.services.geocoding import coordinates_label

MAX_HISTORY_LIMIT = 100


def build_completed_job(db: Session, request: ServiceRequest, *, worker_id: uuid.UUID) -> CompletedJob:
    customer = db.get(User, request.user_id)
    return CompletedJob(
        request_id=request.id,
        worker_id=worker_id,
        customer_name=customer.name if customer else "Customer",
        customer_phone=customer.phone if customer else None,
        service_type=request.service_type,
        vehicle_type=request.vehicle_type,
        location=str(request.address or "").strip() or coordinates_label(request.lat, request.lng),
        lat=request.lat,
        lng=request.lng,
        estimated_pay=request.estimated_pay,
        accepted_at=as_utc(request.accepted_at),
        completed_at=as_utc(request.completed_at) or utcnow(),
    )


def get_completed_job_for_request(db: Session, request_id: uuid.UUID) -> CompletedJob | None:
    return db.query(CompletedJob).filter(CompletedJob.request_id == request_id).first()


def list_worker_completed_jobs(db: Session, *, worker_id: str | uuid.UUID, limit: int = 10) -> list[CompletedJob]:
    worker_uuid = uuid.UUID(str(worker_id))
    return (
        db.query(CompletedJob)
        .filter(CompletedJob.worker_id == worker_uuid)
        .order_by(CompletedJob.completed_at.desc(), CompletedJob.id.desc())
        .limit(int(min(max(limit, 1), MAX_HISTORY_LIMIT)))
        .all()
    )


def serialize_completed_job(row: CompletedJob) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "request_id": str(row.request_id),
        "worker_id": str(row.worker_id),
        "customer_name": row.customer_name,
        "customer_phone": row.customer_phone,
        "service_type": row.service_type,
        "vehicle_type": row.vehicle_type,
        "location": row.location,
        "coordinates": [row.lat, row.lng],
        "estimated_pay": float(row.estimated_pay) if row.estimated_pay is not None else None,
        "accepted_at": iso_or_none(row.accepted_at),
        "completed_at": iso_or_none(row.completed_at),
    }
