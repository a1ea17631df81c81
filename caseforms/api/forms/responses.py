from __future__ import annotations

from functools import partial
from urllib.parse import quote

import anyio
from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import JSONResponse

from caseforms.api.forms.templates import load_accessible_template
from caseforms.core.deps import get_autosave_store, get_current_actor, get_form_repository, require_form_manager
from caseforms.models.form_response import FormResponse
from caseforms.schemas.responses import (
    FormResponseCreate,
    FormResponseCreated,
    FormResponseRead,
    FormSubmitRejected,
    SignPayload,
)
from caseforms.services.escalations import SqlEscalationSink
from caseforms.services.form_access import Actor, can_user_manage_forms
from caseforms.services.form_audit import ACTION_ARCHIVE, ACTION_DRAFT, ACTION_SIGN, SqlAuditSink, build_form_event
from caseforms.services.form_autosave import DraftStore
from caseforms.services.form_errors import FormError, ResponseArchivedError, ResponseNotFoundError
from caseforms.services.form_repository import SqlFormRepository, sign_response
from caseforms.services.form_session import FormSession, SessionState
from caseforms.services.form_submission import SubmissionCoordinator, build_payload
from caseforms.services.response_pdf import build_response_pdf_bytes


router = APIRouter()


def _read_model(row: FormResponse) -> FormResponseRead:
    return FormResponseRead.model_validate(row, from_attributes=True)


def _rejected(errors: list[FormError]) -> JSONResponse:
    body = FormSubmitRejected(errors=[error.as_dict() for error in errors])
    return JSONResponse(status_code=422, content=body.model_dump())


async def _load_response_or_4xx(repo: SqlFormRepository, response_id: str, actor: Actor) -> FormResponse:
    try:
        row = await repo.get_response(response_id)
    except ResponseNotFoundError:
        raise HTTPException(status_code=404, detail="Form response not found")
    if row.created_by != actor.identity and not can_user_manage_forms(actor.roles):
        raise HTTPException(status_code=403, detail="No access to this response")
    return row


@router.post("", response_model=FormResponseCreated, status_code=201, responses={422: {"model": FormSubmitRejected}})
async def submit_response(
    payload: FormResponseCreate,
    actor: Actor = Depends(get_current_actor),
    repo: SqlFormRepository = Depends(get_form_repository),
    draft_store: DraftStore = Depends(get_autosave_store),
):
    schema = await load_accessible_template(repo, payload.template_slug, actor)
    data, file_errors = await repo.verify_file_references(schema, payload.data, actor.identity)
    if file_errors:
        return _rejected(file_errors)
    coordinator = SubmissionCoordinator(
        repo,
        draft_store=draft_store,
        audit=SqlAuditSink(repo.db),
        escalations=SqlEscalationSink(repo.db),
    )
    session = FormSession(schema, coordinator, actor=actor, initial_data=data)
    response_id = await session.submit()
    if response_id is None:
        if session.state == SessionState.FAILED:
            raise HTTPException(status_code=502, detail=session.errors[0].message)
        return _rejected(session.errors)
    return FormResponseCreated(response_id=response_id, status="submitted")


@router.post("/draft", response_model=FormResponseCreated, status_code=201, responses={422: {"model": FormSubmitRejected}})
async def save_draft(
    payload: FormResponseCreate,
    actor: Actor = Depends(get_current_actor),
    repo: SqlFormRepository = Depends(get_form_repository),
):
    schema = await load_accessible_template(repo, payload.template_slug, actor)
    if not schema.allow_drafts:
        raise HTTPException(status_code=409, detail="Drafts are disabled for this form")
    data, file_errors = await repo.verify_file_references(schema, payload.data, actor.identity)
    if file_errors:
        return _rejected(file_errors)
    draft_id = await repo.create_draft_response(schema.slug, build_payload(schema, data), actor.identity)
    await SqlAuditSink(repo.db).record(build_form_event(ACTION_DRAFT, schema, draft_id, actor, field_ids=list(payload.data)))
    return FormResponseCreated(response_id=draft_id, status="draft")


@router.get("", response_model=list[FormResponseRead])
async def list_responses(
    template_slug: str | None = Query(default=None),
    status: str | None = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    repo: SqlFormRepository = Depends(get_form_repository),
):
    filters: dict[str, str] = {}
    if status:
        filters["status"] = status
    if not can_user_manage_forms(actor.roles):
        filters["created_by"] = actor.identity
    rows = await repo.list_responses(template_slug, filters)
    return [_read_model(row) for row in rows]


@router.get("/{response_id}", response_model=FormResponseRead)
async def get_response(
    response_id: str,
    actor: Actor = Depends(get_current_actor),
    repo: SqlFormRepository = Depends(get_form_repository),
):
    return _read_model(await _load_response_or_4xx(repo, response_id, actor))


@router.post("/{response_id}/sign", response_model=FormResponseRead)
async def sign(
    response_id: str,
    payload: SignPayload,
    actor: Actor = Depends(get_current_actor),
    repo: SqlFormRepository = Depends(get_form_repository),
):
    row = await _load_response_or_4xx(repo, response_id, actor)
    metadata = payload.metadata.model_copy(
        update={
            "user_id": payload.metadata.user_id or actor.identity,
            "ip_address": payload.metadata.ip_address or actor.ip_address,
            "user_agent": payload.metadata.user_agent or actor.user_agent,
        }
    )
    try:
        row = await sign_response(repo, str(row.id), payload.signature_data, metadata)
    except ResponseArchivedError:
        raise HTTPException(status_code=409, detail="Archived responses cannot be signed")
    body = _read_model(row)
    schema = await repo.fetch_template(row.template_slug)
    await SqlAuditSink(repo.db).record(build_form_event(ACTION_SIGN, schema, str(body.id), actor, extra={"signer": metadata.by}))
    return body


@router.post("/{response_id}/archive", response_model=FormResponseRead)
async def archive(
    response_id: str,
    actor: Actor = Depends(require_form_manager),
    repo: SqlFormRepository = Depends(get_form_repository),
):
    row = await _load_response_or_4xx(repo, response_id, actor)
    try:
        row = await repo.archive_response(str(row.id))
    except ResponseArchivedError:
        raise HTTPException(status_code=409, detail="Response is already archived")
    body = _read_model(row)
    schema = await repo.fetch_template(row.template_slug)
    await SqlAuditSink(repo.db).record(build_form_event(ACTION_ARCHIVE, schema, str(body.id), actor))
    return body


@router.get("/{response_id}/pdf")
async def response_pdf(
    response_id: str,
    actor: Actor = Depends(get_current_actor),
    repo: SqlFormRepository = Depends(get_form_repository),
):
    row = await _load_response_or_4xx(repo, response_id, actor)
    schema = await repo.fetch_template(row.template_slug)
    content = await anyio.to_thread.run_sync(
        partial(
            build_response_pdf_bytes,
            schema,
            response_id=str(row.id),
            status=row.status,
            data=dict(row.data or {}),
            signatures=list(row.signatures or []),
            created_by=row.created_by,
            created_at=row.created_at,
        )
    )
    file_name = f"{schema.slug}-{row.id}.pdf"
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(file_name)}"},
    )
