from fastapi import APIRouter, Depends

from app.core.deps import get_feed_hub, require_role
from app.models.user import ROLE_MECHANIC
from app.schemas.workers import PositionIn
from app.services.feeds import FeedHub, publish_changes, worker_position_topic
from app.services.worker_positions import record_position

router = APIRouter()


@router.put("/me/position")
def report_position(
    payload: PositionIn,
    user: dict = Depends(require_role(ROLE_MECHANIC)),
    feeds: FeedHub = Depends(get_feed_hub),
):
    fix = record_position(worker_id=user["sub"], lat=payload.lat, lng=payload.lng, accuracy_m=payload.accuracy_m)
    # The worker's own pending board re-sorts against the new origin.
    publish_changes(feeds, [worker_position_topic(user["sub"])])
    return {"status": "ok", "position": fix}
