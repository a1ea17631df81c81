"""Runtime state for one person filling in one form.

The session owns the working data, the wizard position and the current error
list. Navigation forward is gated on the visible fields of the current step;
submission validates every visible field and then hands the data to a
:class:`~caseforms.services.form_submission.SubmissionCoordinator`.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Literal

from caseforms.schemas.forms import FieldType, FormField, FormSchema
from caseforms.services.form_access import Actor
from caseforms.services.form_autosave import AutosaveScheduler, DraftStore, autosave_key, snapshot_data
from caseforms.services.form_conditions import visible_fields
from caseforms.services.form_errors import (
    FORM_LEVEL_FIELD,
    SUBMISSION_FAILED_MESSAGE,
    FormError,
    SessionClosedError,
    SubmissionError,
)
from caseforms.services.form_submission import SubmissionCoordinator
from caseforms.services.form_uploads import PendingFile
from caseforms.services.form_validation import validate_fields
from caseforms.services.signature_capture import DATA_URL_PREFIX, SignaturePad

_LOG = logging.getLogger("caseforms.session")

SessionMode = Literal["edit", "view", "print"]
READ_ONLY_MODES = frozenset({"view", "print"})


class SessionState(str, Enum):
    EDITING = "editing"
    VALIDATING = "validating"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    FAILED = "failed"


class FormSession:
    def __init__(
        self,
        schema: FormSchema,
        coordinator: SubmissionCoordinator,
        *,
        actor: Actor | None = None,
        initial_data: dict[str, Any] | None = None,
        mode: SessionMode = "edit",
        draft_store: DraftStore | None = None,
        autosave_delay: float | None = None,
    ):
        self.schema = schema
        self.coordinator = coordinator
        self.actor = actor or Actor()
        self.mode = mode
        self.data: dict[str, Any] = {
            field.id: field.default_value for field in schema.fields if field.default_value is not None
        }
        self.data.update(initial_data or {})

        self.state = SessionState.EDITING
        self.step = 0
        self.errors: list[FormError] = []
        self.response_id: str | None = None
        self.draft_id: str | None = None
        self.has_draft = False
        self.recovered_from_draft = False
        self._submitting = False
        self._closed = False
        self._pads: dict[str, SignaturePad] = {}

        self.draft_store = draft_store
        self.autosave: AutosaveScheduler | None = None
        if schema.autosave and draft_store is not None and not self.is_read_only:
            self.autosave = AutosaveScheduler(
                draft_store,
                autosave_key(schema.slug, self.actor.identity),
                delay=autosave_delay,
            )

    @classmethod
    async def open(
        cls,
        schema: FormSchema,
        coordinator: SubmissionCoordinator,
        *,
        actor: Actor | None = None,
        initial_data: dict[str, Any] | None = None,
        mode: SessionMode = "edit",
        draft_store: DraftStore | None = None,
        autosave_delay: float | None = None,
    ) -> "FormSession":
        """Create a session, recovering an autosaved draft when no data is given."""
        session = cls(
            schema,
            coordinator,
            actor=actor,
            initial_data=initial_data,
            mode=mode,
            draft_store=draft_store,
            autosave_delay=autosave_delay,
        )
        if initial_data or session.autosave is None:
            return session
        try:
            snapshot = await session.autosave.store.get(session.autosave.key)
        except Exception:
            _LOG.debug("draft recovery failed key=%s", session.autosave.key, exc_info=True)
            return session
        if snapshot:
            session.data.update(snapshot)
            session.recovered_from_draft = True
            _LOG.info("draft recovered form=%s actor=%s", schema.slug, session.actor.identity)
        return session

    @property
    def is_read_only(self) -> bool:
        return self.mode in READ_ONLY_MODES

    @property
    def is_multi_step(self) -> bool:
        return self.schema.is_multi_step

    @property
    def steps(self) -> list[list[FormField]]:
        return self.schema.steps()

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def is_submitting(self) -> bool:
        return self._submitting

    @property
    def first_error(self) -> FormError | None:
        return self.errors[0] if self.errors else None

    def error_for(self, field_id: str) -> str | None:
        for error in self.errors:
            if error.field == field_id:
                return error.message
        return None

    def current_fields(self) -> list[FormField]:
        return visible_fields(self.steps[self.step], self.data)

    def visible_fields(self) -> list[FormField]:
        return visible_fields(self.schema.fields, self.data)

    def _ensure_editable(self) -> None:
        if self._closed:
            raise SessionClosedError("Session is closed")
        if self.is_read_only:
            raise SessionClosedError(f"Session is read-only ({self.mode})")
        if self.state == SessionState.SUBMITTED:
            raise SessionClosedError("Form already submitted")

    def _field_or_error(self, field_id: str) -> FormField:
        field = self.schema.field(field_id)
        if field is None:
            raise KeyError(field_id)
        return field

    def _set_field_error(self, field_id: str, message: str) -> None:
        self.errors = [error for error in self.errors if error.field != field_id]
        self.errors.append(FormError(field_id, message))

    def set_value(self, field_id: str, value: Any) -> None:
        self._ensure_editable()
        self._field_or_error(field_id)
        self.data[field_id] = value
        self.errors = [error for error in self.errors if error.field != field_id]
        if self.state == SessionState.FAILED:
            self.state = SessionState.EDITING
        if self.autosave is not None:
            self.autosave.schedule(self.data)

    def select_file(self, field_id: str, file: PendingFile) -> str | None:
        """Stage ``file`` for upload; returns the rejection message, if any."""
        self._ensure_editable()
        field = self._field_or_error(field_id)
        if field.type != FieldType.FILE:
            raise ValueError(f"Field {field_id} is not a file field")
        error = self.coordinator.pipeline.check_selection(field, file)
        if error is not None:
            self._set_field_error(field_id, error)
            return error
        self.set_value(field_id, file)
        return None

    def attach_signature_pad(self, field_id: str, **pad_options: Any) -> SignaturePad:
        field = self._field_or_error(field_id)
        if field.type != FieldType.SIGNATURE:
            raise ValueError(f"Field {field_id} is not a signature field")
        pad = self._pads.get(field_id)
        if pad is not None:
            return pad
        pad = SignaturePad(on_change=lambda value: self.set_value(field_id, value), **pad_options)
        current = self.data.get(field_id)
        if isinstance(current, str) and current.startswith(DATA_URL_PREFIX):
            pad.from_data_url(current)
        self._pads[field_id] = pad
        return pad

    def go_to_step(self, target: int) -> bool:
        if self._closed or self.state == SessionState.SUBMITTED:
            raise SessionClosedError("Session is closed")
        if target < 0 or target >= self.total_steps:
            return False
        if target <= self.step:
            self.step = target
            self.state = SessionState.EDITING
            return True

        self.state = SessionState.VALIDATING
        errors = validate_fields(self.current_fields(), self.data)
        self.state = SessionState.EDITING
        if errors:
            self.errors = errors
            return False
        self.errors = []
        self.step = target
        return True

    def next_step(self) -> bool:
        return self.go_to_step(self.step + 1)

    def previous_step(self) -> bool:
        return self.go_to_step(self.step - 1)

    def _step_of(self, field_id: str) -> int:
        for index, fields in enumerate(self.steps):
            if any(field.id == field_id for field in fields):
                return index
        return self.step

    async def submit(self) -> str | None:
        """Validate everything visible and run the submission pipeline.

        Returns the stored response id, or ``None`` when validation or the
        pipeline failed or a submission is already running.
        """
        if self._submitting:
            return None
        self._ensure_editable()

        self.state = SessionState.VALIDATING
        errors = validate_fields(self.visible_fields(), self.data)
        if errors:
            self.errors = errors
            self.step = self._step_of(errors[0].field)
            self.state = SessionState.EDITING
            return None

        self.errors = []
        self.state = SessionState.SUBMITTING
        self._submitting = True
        if self.autosave is not None:
            self.autosave.cancel()
        try:
            response_id = await self.coordinator.run(self.schema, self.data, self.actor)
        except SubmissionError as exc:
            _LOG.warning("submission failed form=%s error=%s", self.schema.slug, exc)
            self.errors = [FormError(FORM_LEVEL_FIELD, SUBMISSION_FAILED_MESSAGE)]
            self.state = SessionState.FAILED
            if self.autosave is not None:
                # Edits are still unsubmitted; put them back in the draft store.
                self.autosave.schedule(self.data)
            return None
        finally:
            self._submitting = False

        self.response_id = response_id
        self.state = SessionState.SUBMITTED
        return response_id

    async def save_draft(self) -> str | None:
        if self._closed:
            raise SessionClosedError("Session is closed")
        snapshot = snapshot_data(self.data)
        self.draft_id = await self.coordinator.persistence.create_draft_response(
            self.schema.slug,
            snapshot,
            self.actor.identity,
        )
        self.has_draft = True
        return self.draft_id

    async def flush_autosave(self) -> None:
        if self.autosave is not None:
            await self.autosave.flush()

    def close(self) -> None:
        if self.autosave is not None:
            self.autosave.cancel()
        self._closed = True
