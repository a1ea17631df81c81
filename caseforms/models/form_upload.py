import uuid

from sqlalchemy import Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from caseforms.db.session import Base
from caseforms.models.common import TimestampMixin, UUIDMixin


class FormUpload(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "form_uploads"
    # NULL until the staged upload is linked to a response.
    response_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), index=True, nullable=True)
    field_id: Mapped[str] = mapped_column(String(120), nullable=False)
    file_name: Mapped[str] = mapped_column(String(300), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(150), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    s3_key: Mapped[str] = mapped_column(String(500), nullable=False)
    uploaded_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
