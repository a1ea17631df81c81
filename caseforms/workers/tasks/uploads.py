from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy.orm import Session

from caseforms.core.config import settings
from caseforms.db.session import SessionLocal
from caseforms.models.form_upload import FormUpload
from caseforms.services.s3_storage import S3Storage, get_s3_storage
from caseforms.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def _as_aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    # SQLite hands back naive datetimes.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def purge_staged_uploads(db: Session, storage: S3Storage, *, now: datetime | None = None, ttl_hours: int | None = None) -> dict[str, int]:
    current = now or datetime.now(timezone.utc)
    cutoff = current - timedelta(hours=int(ttl_hours if ttl_hours is not None else settings.STAGED_UPLOAD_TTL_HOURS))

    deleted_rows = 0
    deleted_objects = 0
    kept_on_error = 0
    for row in db.query(FormUpload).filter(FormUpload.response_id.is_(None)).all():
        created_at = _as_aware(row.created_at)
        if created_at is None or created_at > cutoff:
            continue
        try:
            storage.delete_object(row.s3_key)
            deleted_objects += 1
        except (BotoCoreError, ClientError):
            logger.warning("staged upload object delete failed key=%s", row.s3_key, exc_info=True)
            kept_on_error += 1
            continue
        db.delete(row)
        deleted_rows += 1

    db.commit()
    return {
        "deleted_staged_uploads": int(deleted_rows),
        "deleted_objects": int(deleted_objects),
        "kept_on_storage_error": int(kept_on_error),
    }


@celery_app.task(name="caseforms.workers.tasks.uploads.cleanup_staged_uploads")
def cleanup_staged_uploads():
    db = SessionLocal()
    try:
        result = purge_staged_uploads(db, get_s3_storage())
        logger.info("staged upload cleanup %s", result)
        return result
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
