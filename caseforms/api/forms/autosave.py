from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response

from caseforms.api.forms.templates import load_accessible_template
from caseforms.core.deps import get_autosave_store, get_current_actor, get_form_repository
from caseforms.schemas.responses import AutosaveSnapshot
from caseforms.services.form_access import Actor
from caseforms.services.form_autosave import DraftStore, autosave_key, snapshot_data
from caseforms.services.form_repository import SqlFormRepository

router = APIRouter()


@router.get("/{slug}", response_model=AutosaveSnapshot)
async def get_autosave(
    slug: str,
    actor: Actor = Depends(get_current_actor),
    store: DraftStore = Depends(get_autosave_store),
):
    snapshot = await store.get(autosave_key(slug, actor.identity))
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No autosaved draft")
    return AutosaveSnapshot(data=snapshot)


@router.put("/{slug}", response_model=AutosaveSnapshot)
async def put_autosave(
    slug: str,
    payload: AutosaveSnapshot,
    actor: Actor = Depends(get_current_actor),
    repo: SqlFormRepository = Depends(get_form_repository),
    store: DraftStore = Depends(get_autosave_store),
):
    schema = await load_accessible_template(repo, slug, actor)
    if not schema.autosave:
        raise HTTPException(status_code=409, detail="Autosave is disabled for this form")
    known = {field.id for field in schema.fields}
    data = {key: value for key, value in snapshot_data(payload.data).items() if key in known}
    await store.set(autosave_key(schema.slug, actor.identity), data)
    return AutosaveSnapshot(data=data)


@router.delete("/{slug}", status_code=204)
async def delete_autosave(
    slug: str,
    actor: Actor = Depends(get_current_actor),
    store: DraftStore = Depends(get_autosave_store),
):
    await store.delete(autosave_key(slug, actor.identity))
    return Response(status_code=204)
