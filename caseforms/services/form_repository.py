from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Iterable, Protocol, TypeVar

import anyio
from pydantic import ValidationError
from sqlalchemy.orm import Session

from caseforms.data.form_templates import get_all_templates, get_template_by_slug
from caseforms.models.form_response import FormResponse
from caseforms.models.form_template import FormTemplate
from caseforms.models.form_upload import FormUpload
from caseforms.schemas.forms import FieldType, FormSchema
from caseforms.schemas.responses import FileReference, FormSignature, SignatureMetadata
from caseforms.services.form_conditions import visible_fields
from caseforms.services.form_errors import (
    FormError,
    ResponseArchivedError,
    ResponseNotFoundError,
    SchemaError,
    TemplateNotFoundError,
)
from caseforms.services.form_uploads import STAGED_OWNER, PendingFile
from caseforms.services.s3_storage import S3Storage, build_object_key, get_s3_storage

logger = logging.getLogger(__name__)

STATUS_DRAFT = "draft"
STATUS_SUBMITTED = "submitted"
STATUS_SIGNED = "signed"
STATUS_ARCHIVED = "archived"

UNKNOWN_UPLOAD_MESSAGE = "Uploaded file not found. Please attach it again."

T = TypeVar("T")


class FormPersistence(Protocol):
    async def fetch_template(self, slug: str) -> FormSchema:
        ...

    async def create_submitted_response(self, slug: str, data: dict[str, Any], created_by: str) -> str:
        ...

    async def create_draft_response(self, slug: str, data: dict[str, Any], created_by: str) -> str:
        ...

    async def append_signature(self, response_id: str, signature_data: str, metadata: SignatureMetadata) -> FormResponse:
        ...

    async def list_responses(self, slug: str | None = None, filters: dict[str, Any] | None = None) -> list[FormResponse]:
        ...

    async def get_response(self, response_id: str) -> FormResponse:
        ...

    async def upload_file(self, owner: str, field_id: str, file: PendingFile) -> FileReference:
        ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _uuid_or_none(raw: Any) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(raw))
    except (TypeError, ValueError):
        return None


def referenced_upload_ids(data: dict[str, Any]) -> list[uuid.UUID]:
    out: list[uuid.UUID] = []
    for value in data.values():
        if FileReference.looks_like(value):
            upload_id = _uuid_or_none(value.get("id"))
            if upload_id is not None:
                out.append(upload_id)
    return out


class SqlFormRepository:
    """Form persistence over a synchronous SQLAlchemy session.

    Database and object storage calls run in a worker thread so the event
    loop is never blocked. Built-in templates missing from ``form_templates``
    are inserted on first use, so a fresh database can take submissions
    without running the seed script.
    """

    def __init__(self, db: Session, storage: S3Storage | None = None, *, uploaded_by: str | None = None):
        self.db = db
        self._storage = storage
        self.uploaded_by = uploaded_by

    @property
    def storage(self) -> S3Storage:
        if self._storage is None:
            self._storage = get_s3_storage()
        return self._storage

    async def _run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return await anyio.to_thread.run_sync(partial(func, *args, **kwargs))

    def _template_row(self, slug: str) -> FormTemplate:
        normalized = str(slug or "").strip()
        row = self.db.query(FormTemplate).filter(FormTemplate.slug == normalized).first()
        if row is not None:
            return row
        builtin = get_template_by_slug(normalized)
        if builtin is None:
            raise TemplateNotFoundError(normalized)
        row = FormTemplate(
            template_key=builtin.id,
            slug=builtin.slug,
            name=builtin.name,
            description=builtin.description,
            category=builtin.category,
            version=builtin.version,
            schema=builtin.model_dump(mode="json"),
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        logger.info("builtin form template stored slug=%s version=%s", row.slug, row.version)
        return row

    def _response_row(self, response_id: str) -> FormResponse:
        response_uuid = _uuid_or_none(response_id)
        row = self.db.get(FormResponse, response_uuid) if response_uuid is not None else None
        if row is None:
            raise ResponseNotFoundError(str(response_id))
        return row

    def _link_staged_uploads(self, response: FormResponse, data: dict[str, Any]) -> int:
        ids = referenced_upload_ids(data)
        if not ids:
            return 0
        rows = (
            self.db.query(FormUpload)
            .filter(
                FormUpload.id.in_(ids),
                FormUpload.response_id.is_(None),
                FormUpload.uploaded_by == response.created_by,
            )
            .all()
        )
        for row in rows:
            row.response_id = response.id
            self.db.add(row)
        return len(rows)

    def _reference_for(self, row: FormUpload) -> FileReference:
        uploaded_at = row.created_at.isoformat() if row.created_at else _now_iso()
        return FileReference(
            id=str(row.id),
            filename=row.file_name,
            content_type=row.mime_type,
            size=row.size_bytes,
            url=self.storage.create_presigned_get_url(row.s3_key),
            uploaded_at=uploaded_at,
        )

    def _verify_file_references(
        self, schema: FormSchema, data: dict[str, Any], owner: str
    ) -> tuple[dict[str, Any], list[FormError]]:
        out = dict(data)
        errors: list[FormError] = []
        draft = self._open_draft(schema.slug, owner)
        claimable = {None, draft.id} if draft is not None else {None}
        for field in visible_fields(schema.fields, data):
            if field.type != FieldType.FILE:
                continue
            value = data.get(field.id)
            if not isinstance(value, dict) or not value:
                continue
            upload_id = _uuid_or_none(value.get("id"))
            row = self.db.get(FormUpload, upload_id) if upload_id is not None else None
            if (
                row is None
                or row.uploaded_by != owner
                or row.field_id != field.id
                or row.response_id not in claimable
            ):
                logger.warning("file reference rejected form=%s field=%s actor=%s", schema.slug, field.id, owner)
                errors.append(FormError(field.id, UNKNOWN_UPLOAD_MESSAGE))
                continue
            # The stored descriptor replaces whatever the client sent.
            out[field.id] = self._reference_for(row).model_dump()
        return out, errors

    async def verify_file_references(
        self, schema: FormSchema, data: dict[str, Any], owner: str
    ) -> tuple[dict[str, Any], list[FormError]]:
        """Swap client-sent file descriptors for the stored ones.

        A descriptor is accepted only when its upload was made by ``owner``
        for that field and is still staged (or linked to ``owner``'s open
        draft of the same form). Everything else becomes a field error.
        """
        return await self._run(self._verify_file_references, schema, data, str(owner or "anonymous"))

    def _fetch_template(self, slug: str) -> FormSchema:
        row = self._template_row(slug)
        try:
            return FormSchema.model_validate(row.schema or {})
        except ValidationError as exc:
            raise SchemaError(f"Stored template {row.slug} is invalid: {exc}") from exc

    async def fetch_template(self, slug: str) -> FormSchema:
        return await self._run(self._fetch_template, slug)

    def _list_templates(self) -> list[FormSchema]:
        out: dict[str, FormSchema] = {schema.slug: schema for schema in get_all_templates()}
        for row in self.db.query(FormTemplate).order_by(FormTemplate.name.asc()).all():
            try:
                out[row.slug] = FormSchema.model_validate(row.schema or {})
            except ValidationError:
                logger.warning("skipping invalid stored template slug=%s", row.slug)
        return sorted(out.values(), key=lambda schema: schema.name)

    async def list_templates(self) -> list[FormSchema]:
        """Stored templates plus built-ins that were never stored."""
        return await self._run(self._list_templates)

    def _create_response(self, slug: str, data: dict[str, Any], created_by: str, status: str) -> FormResponse:
        template = self._template_row(slug)
        row = FormResponse(
            template_id=template.id,
            template_slug=template.slug,
            status=status,
            data=dict(data),
            signatures=[],
            flags=[],
            created_by=str(created_by or "anonymous"),
        )
        self.db.add(row)
        self.db.flush()
        linked = self._link_staged_uploads(row, data)
        self.db.commit()
        self.db.refresh(row)
        logger.info("form response stored id=%s slug=%s status=%s linked_uploads=%s", row.id, row.template_slug, status, linked)
        return row

    def _open_draft(self, slug: str, owner: str) -> FormResponse | None:
        return (
            self.db.query(FormResponse)
            .filter(
                FormResponse.template_slug == str(slug or "").strip(),
                FormResponse.created_by == owner,
                FormResponse.status == STATUS_DRAFT,
            )
            .order_by(FormResponse.created_at.desc())
            .first()
        )

    def _create_submitted(self, slug: str, data: dict[str, Any], created_by: str) -> str:
        owner = str(created_by or "anonymous")
        # A saved draft of the same form is promoted instead of left behind.
        draft = self._open_draft(slug, owner)
        if draft is None:
            return str(self._create_response(slug, data, owner, STATUS_SUBMITTED).id)
        draft.data = dict(data)
        draft.status = STATUS_SUBMITTED
        self._link_staged_uploads(draft, data)
        self.db.add(draft)
        self.db.commit()
        logger.info("form draft submitted id=%s slug=%s", draft.id, draft.template_slug)
        return str(draft.id)

    async def create_submitted_response(self, slug: str, data: dict[str, Any], created_by: str) -> str:
        return await self._run(self._create_submitted, slug, data, created_by)

    def _create_draft(self, slug: str, data: dict[str, Any], created_by: str) -> str:
        owner = str(created_by or "anonymous")
        existing = self._open_draft(slug, owner)
        if existing is None:
            return str(self._create_response(slug, data, owner, STATUS_DRAFT).id)
        existing.data = dict(data)
        self._link_staged_uploads(existing, data)
        self.db.add(existing)
        self.db.commit()
        return str(existing.id)

    async def create_draft_response(self, slug: str, data: dict[str, Any], created_by: str) -> str:
        return await self._run(self._create_draft, slug, data, created_by)

    def _append_signature(self, response_id: str, signature_data: str, metadata: SignatureMetadata) -> FormResponse:
        row = self._response_row(response_id)
        if row.status == STATUS_ARCHIVED:
            raise ResponseArchivedError(str(row.id))
        signature = FormSignature(
            by=metadata.by,
            user_id=metadata.user_id,
            timestamp=_now_iso(),
            ip_address=metadata.ip_address,
            user_agent=metadata.user_agent,
            signature_data=signature_data,
        )
        # JSON columns are only flagged dirty on reassignment.
        row.signatures = [*list(row.signatures or []), signature.model_dump()]
        row.status = STATUS_SIGNED
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    async def append_signature(self, response_id: str, signature_data: str, metadata: SignatureMetadata) -> FormResponse:
        return await self._run(self._append_signature, response_id, signature_data, metadata)

    def _archive(self, response_id: str) -> FormResponse:
        row = self._response_row(response_id)
        if row.status == STATUS_ARCHIVED:
            raise ResponseArchivedError(str(row.id))
        row.status = STATUS_ARCHIVED
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    async def archive_response(self, response_id: str) -> FormResponse:
        return await self._run(self._archive, response_id)

    def _add_flags(self, response_id: str, flags: list[str]) -> FormResponse:
        row = self._response_row(response_id)
        merged = list(row.flags or [])
        for flag in flags:
            if flag and flag not in merged:
                merged.append(flag)
        row.flags = merged
        self.db.add(row)
        self.db.commit()
        return row

    async def add_flags(self, response_id: str, flags: Iterable[str]) -> FormResponse:
        return await self._run(self._add_flags, response_id, list(flags))

    def _list_responses(self, slug: str | None, filters: dict[str, Any]) -> list[FormResponse]:
        query = self.db.query(FormResponse)
        if slug:
            query = query.filter(FormResponse.template_slug == str(slug).strip())
        if filters.get("status"):
            query = query.filter(FormResponse.status == str(filters["status"]))
        if filters.get("created_by"):
            query = query.filter(FormResponse.created_by == str(filters["created_by"]))
        return query.order_by(FormResponse.created_at.desc()).all()

    async def list_responses(self, slug: str | None = None, filters: dict[str, Any] | None = None) -> list[FormResponse]:
        return await self._run(self._list_responses, slug, filters or {})

    async def get_response(self, response_id: str) -> FormResponse:
        return await self._run(self._response_row, response_id)

    def _upload_file(self, owner: str, field_id: str, file: PendingFile) -> FileReference:
        response_uuid = None if owner == STAGED_OWNER else _uuid_or_none(owner)
        key = build_object_key(f"forms/{owner}/{field_id}", file.filename)
        self.storage.put_object(key, file.data, file.content_type)
        row = FormUpload(
            response_id=response_uuid,
            field_id=field_id,
            file_name=file.filename,
            mime_type=file.content_type,
            size_bytes=file.size,
            s3_key=key,
            uploaded_by=self.uploaded_by,
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return FileReference(
            id=str(row.id),
            filename=file.filename,
            content_type=file.content_type,
            size=file.size,
            url=self.storage.create_presigned_get_url(key),
            uploaded_at=_now_iso(),
        )

    async def upload_file(self, owner: str, field_id: str, file: PendingFile) -> FileReference:
        return await self._run(self._upload_file, owner, field_id, file)


async def sign_response(
    repo: FormPersistence,
    response_id: str,
    signature_data: str,
    metadata: SignatureMetadata | None = None,
) -> FormResponse:
    if not str(signature_data or "").strip():
        raise ValueError("Signature is required")
    return await repo.append_signature(response_id, signature_data, metadata or SignatureMetadata())
