from celery import Celery
from app.core.config import settings

celery_app = Celery("roadside_assist", broker=settings.REDIS_URL, backend=settings.REDIS_URL)

celery_app.conf.task_routes = {
    "app.workers.tasks.geocode.*": {"queue": "geocoding"},
}
celery_app.conf.task_ignore_result = True
celery_app.conf.timezone = "UTC"
celery_app.conf.imports = ("app.workers.tasks.geocode",)
