from __future__ import annotations

import logging

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from caseforms.api.forms.templates import load_accessible_template
from caseforms.core.deps import get_current_actor, get_form_repository
from caseforms.schemas.forms import FieldType
from caseforms.schemas.responses import FileReference
from caseforms.services.form_access import Actor
from caseforms.services.form_uploads import STAGED_OWNER, FileAttachmentPipeline, PendingFile
from caseforms.services.form_repository import SqlFormRepository

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=FileReference, status_code=201)
async def upload_form_file(
    template_slug: str = Form(...),
    field_id: str = Form(...),
    file: UploadFile = File(...),
    actor: Actor = Depends(get_current_actor),
    repo: SqlFormRepository = Depends(get_form_repository),
):
    schema = await load_accessible_template(repo, template_slug, actor)
    field = schema.field(field_id)
    if field is None or field.type != FieldType.FILE:
        raise HTTPException(status_code=400, detail="Unknown file field")

    pending = PendingFile(
        filename=file.filename or "file.bin",
        content_type=file.content_type or "application/octet-stream",
        data=await file.read(),
    )
    if pending.size <= 0:
        raise HTTPException(status_code=400, detail="Empty file")
    error = FileAttachmentPipeline(repo).check_selection(field, pending)
    if error is not None:
        raise HTTPException(status_code=400, detail=error)

    try:
        reference = await repo.upload_file(STAGED_OWNER, field_id, pending)
    except (BotoCoreError, ClientError):
        logger.warning("form upload failed form=%s field=%s", schema.slug, field_id, exc_info=True)
        raise HTTPException(status_code=502, detail="File storage unavailable")
    logger.info("form file staged form=%s field=%s upload=%s size=%s", schema.slug, field_id, reference.id, pending.size)
    return reference
