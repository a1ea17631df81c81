from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Protocol

import anyio
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from caseforms.core.config import settings
from caseforms.models.form_audit_log import FormAuditLog
from caseforms.schemas.audit import AuditChainStatus, AuditEvent, AuditTarget
from caseforms.schemas.forms import FormSchema
from caseforms.services.form_access import Actor

logger = logging.getLogger(__name__)

GENESIS_HASH = "GENESIS"

ACTION_SUBMIT = "submit"
ACTION_DRAFT = "draft"
ACTION_SIGN = "sign"
ACTION_ARCHIVE = "archive"


class AuditSink(Protocol):
    async def record(self, event: AuditEvent) -> None:
        ...


def _safe_details(details: dict[str, Any] | None) -> dict[str, Any]:
    if not isinstance(details, dict):
        return {}
    safe: dict[str, Any] = {}
    for key, value in details.items():
        if value is None or isinstance(value, (str, int, float, bool)):
            safe[str(key)] = value
        elif isinstance(value, (list, tuple)):
            safe[str(key)] = [str(item) for item in value]
        else:
            safe[str(key)] = str(value)
    return safe


def build_form_event(
    action: str,
    schema: FormSchema,
    response_id: str,
    actor: Actor,
    *,
    field_ids: list[str] | None = None,
    extra: dict[str, Any] | None = None,
) -> AuditEvent:
    """Audit event whose metadata depth follows ``schema.audit_level``."""
    metadata: dict[str, Any] = {"template_version": schema.version, "audit_level": schema.audit_level}
    if schema.audit_level in {"detailed", "sensitive"} and field_ids is not None:
        metadata["fields"] = sorted(field_ids)
    if schema.audit_level == "sensitive":
        metadata["ip_address"] = actor.ip_address
        metadata["user_agent"] = actor.user_agent
    metadata.update(extra or {})
    return AuditEvent(
        action=action,
        target=AuditTarget(type="form", id=str(response_id), label=schema.slug),
        actor=actor.as_audit_actor(),
        timestamp=datetime.now(timezone.utc).isoformat(),
        metadata=_safe_details(metadata),
    )


def _canonical(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)


def _chain_payload(row: FormAuditLog) -> dict[str, Any]:
    return {
        "scope": row.scope,
        "action": row.action,
        "target": {"type": row.target_type, "id": row.target_id, "label": row.target_label},
        "actor": {"identity": row.actor_identity, "roles": list(row.actor_roles or [])},
        "timestamp": row.event_ts,
        "metadata": dict(row.details or {}),
    }


def chain_hash(prev_hash: str, payload: dict[str, Any]) -> str:
    return hashlib.sha256((prev_hash + _canonical(payload)).encode("utf-8")).hexdigest()


def _ordered_rows(db: Session) -> list[FormAuditLog]:
    return db.query(FormAuditLog).order_by(FormAuditLog.created_at.asc(), FormAuditLog.event_ts.asc()).all()


class SqlAuditSink:
    def __init__(self, db: Session):
        self.db = db

    def _prev_hash(self) -> str:
        last = self.db.query(FormAuditLog).order_by(FormAuditLog.created_at.desc(), FormAuditLog.event_ts.desc()).first()
        return last.hash if last is not None else GENESIS_HASH

    def record_now(self, event: AuditEvent) -> FormAuditLog | None:
        if not settings.AUDIT_ENABLED:
            return None
        # Audit write failures must not fail the form action.
        try:
            bind = self.db.get_bind()
            if bind is None or not inspect(bind).has_table("form_audit_log"):
                return None
            row = FormAuditLog(
                scope=str(event.scope or "forms"),
                action=str(event.action or "").strip().lower() or "unknown",
                target_type=event.target.type,
                target_id=event.target.id,
                target_label=event.target.label,
                actor_identity=event.actor.identity,
                actor_roles=list(event.actor.roles),
                event_ts=event.timestamp,
                details=_safe_details(event.metadata),
                prev_hash=self._prev_hash(),
                hash="",
            )
            row.hash = chain_hash(row.prev_hash, _chain_payload(row))
            self.db.add(row)
            self.db.commit()
            return row
        except SQLAlchemyError:
            logger.warning("form audit write failed action=%s target=%s", event.action, event.target.id, exc_info=True)
            try:
                self.db.rollback()
            except Exception:
                logger.debug("form_audit_rollback_failed", exc_info=True)
            return None

    async def record(self, event: AuditEvent) -> None:
        await anyio.to_thread.run_sync(self.record_now, event)


class InMemoryAuditSink:
    def __init__(self):
        self.events: list[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)


def verify_audit_chain(db: Session) -> AuditChainStatus:
    prev = GENESIS_HASH
    rows = _ordered_rows(db)
    for index, row in enumerate(rows):
        if row.prev_hash != prev:
            return AuditChainStatus(ok=False, checked=index, bad_index=index)
        if chain_hash(prev, _chain_payload(row)) != row.hash:
            return AuditChainStatus(ok=False, checked=index, bad_index=index)
        prev = row.hash
    return AuditChainStatus(ok=True, checked=len(rows))
