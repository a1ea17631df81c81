from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field as dc_field
from typing import Any, Protocol

from caseforms.core.config import settings
from caseforms.schemas.forms import FormField, FormSchema
from caseforms.schemas.responses import FileReference
from caseforms.services.form_errors import UploadFailedError

logger = logging.getLogger(__name__)

STAGED_OWNER = "staged"

UPLOAD_PENDING = "pending"
UPLOAD_COMPLETE = "complete"
UPLOAD_ERROR = "error"

_MB = 1024 * 1024


@dataclass
class PendingFile:
    filename: str
    content_type: str
    data: bytes = dc_field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


class FileUploader(Protocol):
    async def upload_file(self, owner: str, field_id: str, file: PendingFile) -> FileReference:
        ...


def size_limit_message(limit_bytes: int) -> str:
    return f"File size must be less than {round(limit_bytes / _MB)}MB"


def _accept_matches(accept: str, content_type: str, filename: str) -> bool:
    mime = content_type.strip().lower()
    name = filename.strip().lower()
    for token in (t.strip().lower() for t in accept.split(",")):
        if not token:
            continue
        if token.startswith("."):
            if name.endswith(token):
                return True
        elif token.endswith("/*"):
            if mime.startswith(token[:-1]):
                return True
        elif token == mime:
            return True
    return False


class FileAttachmentPipeline:
    def __init__(self, uploader: FileUploader, *, max_file_bytes: int | None = None, allowed_mime_types: list[str] | None = None):
        self.uploader = uploader
        self.max_file_bytes = int(max_file_bytes if max_file_bytes is not None else settings.MAX_FILE_MB * _MB)
        self.allowed_mime_types = allowed_mime_types if allowed_mime_types is not None else settings.upload_allowed_mime_types
        self.status: dict[str, str] = {}

    def check_selection(self, field: FormField, file: PendingFile) -> str | None:
        """Return an error message when ``file`` cannot be staged for ``field``."""
        limit = field.max_file_size or self.max_file_bytes
        if file.size > limit:
            return size_limit_message(limit)
        if field.accept:
            if not _accept_matches(field.accept, file.content_type, file.filename):
                return "File type not allowed"
        elif self.allowed_mime_types and file.content_type.strip().lower() not in self.allowed_mime_types:
            return "File type not allowed"
        return None

    async def _upload_one(self, owner: str, field_id: str, file: PendingFile) -> FileReference:
        self.status[field_id] = UPLOAD_PENDING
        try:
            reference = await self.uploader.upload_file(owner, field_id, file)
        except Exception:
            self.status[field_id] = UPLOAD_ERROR
            raise
        self.status[field_id] = UPLOAD_COMPLETE
        return reference

    async def resolve(self, schema: FormSchema, data: dict[str, Any], response_id: str | None = None) -> dict[str, Any]:
        """Upload every pending file in ``data`` and swap in reference descriptors."""
        owner = str(response_id) if response_id else STAGED_OWNER
        pending = [
            (field_id, data[field_id])
            for field_id in schema.file_field_ids()
            if isinstance(data.get(field_id), PendingFile)
        ]
        if not pending:
            return dict(data)

        results = await asyncio.gather(
            *(self._upload_one(owner, field_id, file) for field_id, file in pending),
            return_exceptions=True,
        )

        resolved = dict(data)
        for (field_id, file), result in zip(pending, results):
            if isinstance(result, BaseException):
                field = schema.field(field_id)
                if field is not None and field.required:
                    raise UploadFailedError(field_id, str(result)) from result
                logger.warning("optional upload dropped field=%s file=%s error=%s", field_id, file.filename, result)
                resolved[field_id] = None
                continue
            resolved[field_id] = result.model_dump(exclude_none=True)
        return resolved
