import uuid

from sqlalchemy import ForeignKey, JSON, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from caseforms.db.session import Base
from caseforms.models.common import TimestampMixin, UUIDMixin


class FormResponse(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "form_responses"
    template_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("form_templates.id"), index=True, nullable=False)
    template_slug: Mapped[str] = mapped_column(String(120), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), index=True, default="draft", nullable=False)  # draft|submitted|signed|archived
    data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    signatures: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    flags: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    created_by: Mapped[str] = mapped_column(String(200), index=True, nullable=False)
