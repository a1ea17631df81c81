from __future__ import annotations

import logging
from typing import Any, Callable

from caseforms.schemas.forms import FormSchema
from caseforms.services.escalations import EscalationSink, evaluate_escalations
from caseforms.services.field_crypto import FieldCipher, encrypt_sensitive_fields, get_field_cipher
from caseforms.services.form_access import Actor
from caseforms.services.form_audit import ACTION_SUBMIT, AuditSink, build_form_event
from caseforms.services.form_autosave import DraftStore, autosave_key
from caseforms.services.form_conditions import visible_fields
from caseforms.services.form_errors import SubmissionError
from caseforms.services.form_repository import FormPersistence
from caseforms.services.form_uploads import FileAttachmentPipeline

logger = logging.getLogger(__name__)


def build_payload(schema: FormSchema, data: dict[str, Any]) -> dict[str, Any]:
    """Values of the fields visible for ``data``; hidden answers are dropped."""
    return {field.id: data[field.id] for field in visible_fields(schema.fields, data) if field.id in data}


class SubmissionCoordinator:
    """Runs a validated submission through upload, encryption and delivery.

    Stage failures surface as :class:`SubmissionError`. Everything after the
    response is stored (draft cleanup, audit, escalations) is best effort.
    """

    def __init__(
        self,
        persistence: FormPersistence,
        *,
        pipeline: FileAttachmentPipeline | None = None,
        draft_store: DraftStore | None = None,
        audit: AuditSink | None = None,
        escalations: EscalationSink | None = None,
        cipher_factory: Callable[[], FieldCipher | None] = get_field_cipher,
    ):
        self.persistence = persistence
        self.pipeline = pipeline or FileAttachmentPipeline(persistence)
        self.draft_store = draft_store
        self.audit = audit
        self.escalations = escalations
        self.cipher_factory = cipher_factory

    async def run(self, schema: FormSchema, data: dict[str, Any], actor: Actor | None = None) -> str:
        actor = actor or Actor()
        payload = build_payload(schema, data)
        try:
            resolved = await self.pipeline.resolve(schema, payload)
            encrypted = encrypt_sensitive_fields(schema, resolved, self.cipher_factory())
            response_id = await self.persistence.create_submitted_response(schema.slug, encrypted, actor.identity)
        except SubmissionError:
            raise
        except Exception as exc:
            logger.warning("form submission failed form=%s actor=%s", schema.slug, actor.identity, exc_info=True)
            raise SubmissionError(str(exc)) from exc

        logger.info("form submitted form=%s response=%s actor=%s", schema.slug, response_id, actor.identity)
        await self._after_delivery(schema, payload, response_id, actor)
        return response_id

    async def _after_delivery(self, schema: FormSchema, payload: dict[str, Any], response_id: str, actor: Actor) -> None:
        if self.draft_store is not None and schema.autosave:
            try:
                await self.draft_store.delete(autosave_key(schema.slug, actor.identity))
            except Exception:
                logger.warning("autosave cleanup failed form=%s", schema.slug, exc_info=True)

        if self.audit is not None:
            try:
                await self.audit.record(build_form_event(ACTION_SUBMIT, schema, response_id, actor, field_ids=list(payload)))
            except Exception:
                logger.warning("submit audit failed form=%s response=%s", schema.slug, response_id, exc_info=True)

        if self.escalations is not None:
            rules = evaluate_escalations(schema, payload)
            if not rules:
                return
            try:
                await self.escalations.dispatch(schema, response_id, rules)
            except Exception:
                logger.warning("escalation dispatch failed form=%s response=%s", schema.slug, response_id, exc_info=True)
