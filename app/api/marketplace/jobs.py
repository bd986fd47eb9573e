from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import require_role
from app.db.session import get_db
from app.models.user import ROLE_MECHANIC
from app.services.completed_jobs import MAX_HISTORY_LIMIT, list_worker_completed_jobs, serialize_completed_job

router = APIRouter()


@router.get("/completed")
def completed_jobs(
    limit: int | None = Query(default=None),
    db: Session = Depends(get_db),
    user: dict = Depends(require_role(ROLE_MECHANIC)),
):
    requested = settings.COMPLETED_JOBS_DEFAULT_LIMIT if limit is None else limit
    effective = min(max(int(requested), 1), MAX_HISTORY_LIMIT)
    rows = list_worker_completed_jobs(db, worker_id=user["sub"], limit=effective)
    total_pay = sum(float(row.estimated_pay or 0) for row in rows)
    return {
        "rows": [serialize_completed_job(row) for row in rows],
        "limit": effective,
        "total_pay": round(total_pay, 2),
    }
