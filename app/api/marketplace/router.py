from fastapi import APIRouter
from app.api.marketplace import auth, requests, chat, notifications, jobs, workers, meta, feeds

router = APIRouter()
router.include_router(auth.router, prefix="/auth", tags=["Auth"])
router.include_router(requests.router, prefix="/requests", tags=["Requests"])
router.include_router(chat.router, prefix="/requests", tags=["Chat"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
router.include_router(jobs.router, prefix="/jobs", tags=["Jobs"])
router.include_router(workers.router, prefix="/workers", tags=["Workers"])
router.include_router(meta.router, prefix="/meta", tags=["Meta"])
router.include_router(feeds.router, prefix="/feeds", tags=["Feeds"])
