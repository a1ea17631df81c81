from __future__ import annotations

from dataclasses import dataclass

FORM_LEVEL_FIELD = "_form"
SUBMISSION_FAILED_MESSAGE = "Submission failed. Please try again."


@dataclass(frozen=True)
class FormError:
    field: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class FormEngineError(Exception):
    pass


class SchemaError(FormEngineError, ValueError):
    pass


class SessionClosedError(FormEngineError):
    pass


class SubmissionError(FormEngineError):
    pass


class UploadFailedError(SubmissionError):
    def __init__(self, field_id: str, reason: str):
        super().__init__(f"Upload failed for {field_id}: {reason}")
        self.field_id = field_id
        self.reason = reason


class TemplateNotFoundError(FormEngineError):
    pass


class ResponseNotFoundError(FormEngineError):
    pass


class ResponseArchivedError(FormEngineError):
    pass
