from __future__ import annotations

from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.completed_job import CompletedJob
from app.models.service_request import ServiceRequest
from app.models.user import ROLE_MECHANIC, ROLE_USER, User
from app.services.request_lifecycle import STATUS_COMPLETED, STATUS_PENDING, STATUSES


def _count_users(db: Session, role: str) -> int:
    return int(db.query(func.count(User.id)).filter(User.role == role).scalar() or 0)


def request_counts_by_status(db: Session) -> dict[str, int]:
    rows = db.query(ServiceRequest.status, func.count(ServiceRequest.id)).group_by(ServiceRequest.status).all()
    counts = {code: 0 for code in STATUSES}
    for status, count in rows:
        counts[str(status)] = int(count or 0)
    return counts


def compute_analytics(db: Session) -> dict[str, Any]:
    by_status = request_counts_by_status(db)
    revenue = db.query(func.coalesce(func.sum(CompletedJob.estimated_pay), 0)).scalar()
    return {
        "total_users": _count_users(db, ROLE_USER),
        "total_workers": _count_users(db, ROLE_MECHANIC),
        "total_requests": int(sum(by_status.values())),
        "completed_requests": by_status.get(STATUS_COMPLETED, 0),
        "pending_requests": by_status.get(STATUS_PENDING, 0),
        "requests_by_status": by_status,
        "revenue": float(revenue or 0),
    }
