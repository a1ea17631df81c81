from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from caseforms.core.deps import get_current_actor, get_form_repository
from caseforms.data.form_templates import get_templates_for_role
from caseforms.schemas.forms import FormSchema, FormTemplateSummary
from caseforms.services.form_access import Actor, can_user_access_form
from caseforms.services.form_errors import SchemaError, TemplateNotFoundError
from caseforms.services.form_repository import SqlFormRepository

router = APIRouter()


async def load_accessible_template(repo: SqlFormRepository, slug: str, actor: Actor) -> FormSchema:
    try:
        schema = await repo.fetch_template(slug)
    except TemplateNotFoundError:
        raise HTTPException(status_code=404, detail="Form template not found")
    except SchemaError:
        raise HTTPException(status_code=409, detail="Stored form template is invalid")
    if not can_user_access_form(schema, actor.roles):
        raise HTTPException(status_code=403, detail="No access to this form")
    return schema


@router.get("", response_model=list[FormTemplateSummary])
async def list_templates(
    category: str | None = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    repo: SqlFormRepository = Depends(get_form_repository),
):
    schemas = get_templates_for_role(actor.roles, await repo.list_templates())
    if category:
        wanted = category.strip().upper()
        schemas = [schema for schema in schemas if schema.category == wanted]
    return [FormTemplateSummary.from_schema(schema) for schema in schemas]


@router.get("/{slug}", response_model=FormSchema)
async def get_template(
    slug: str,
    actor: Actor = Depends(get_current_actor),
    repo: SqlFormRepository = Depends(get_form_repository),
):
    return await load_accessible_template(repo, slug, actor)
