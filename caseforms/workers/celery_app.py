from celery import Celery
from caseforms.core.config import settings

celery_app = Celery("caseforms", broker=settings.REDIS_URL, backend=settings.REDIS_URL, include=["caseforms.workers.tasks.uploads"])

celery_app.conf.beat_schedule = {
    "cleanup_staged_uploads": {"task": "caseforms.workers.tasks.uploads.cleanup_staged_uploads", "schedule": 3600.0},
}
celery_app.conf.timezone = "UTC"
