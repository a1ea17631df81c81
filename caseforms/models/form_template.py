from sqlalchemy import Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from caseforms.db.session import Base
from caseforms.models.common import TimestampMixin, UUIDMixin


class FormTemplate(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "form_templates"
    template_key: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    slug: Mapped[str] = mapped_column(String(120), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(40), index=True, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    schema: Mapped[dict] = mapped_column(JSON, nullable=False)
