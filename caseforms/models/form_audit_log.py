from __future__ import annotations

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from caseforms.db.session import Base
from caseforms.models.common import TimestampMixin, UUIDMixin


class FormAuditLog(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "form_audit_log"

    scope: Mapped[str] = mapped_column(String(50), nullable=False, default="forms")
    action: Mapped[str] = mapped_column(String(50), index=True, nullable=False)

    target_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str] = mapped_column(String(80), index=True, nullable=False)
    target_label: Mapped[str | None] = mapped_column(String(200), nullable=True)

    actor_identity: Mapped[str] = mapped_column(String(200), index=True, nullable=False, default="")
    actor_roles: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    event_ts: Mapped[str] = mapped_column(String(40), nullable=False)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    prev_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
