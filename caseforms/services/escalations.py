from __future__ import annotations

import logging
import uuid
from typing import Any, Protocol

import anyio
import httpx
from sqlalchemy.orm import Session

from caseforms.core.config import settings
from caseforms.models.form_notification import FormNotification
from caseforms.models.form_response import FormResponse
from caseforms.schemas.forms import EscalationRule, FormSchema
from caseforms.services.form_conditions import evaluate_condition

logger = logging.getLogger(__name__)

ACTION_NOTIFY = "NOTIFY"
ACTION_ASSIGN = "ASSIGN"


def evaluate_escalations(schema: FormSchema, data: dict[str, Any]) -> list[EscalationRule]:
    return [rule for rule in schema.escalations if evaluate_condition(rule.condition, data)]


class EscalationSink(Protocol):
    async def dispatch(self, schema: FormSchema, response_id: str, rules: list[EscalationRule]) -> dict[str, int]:
        ...


def _title_for(schema: FormSchema, rule: EscalationRule) -> str:
    return str(rule.message or "").strip() or f"Escalation on {schema.name}"


def _webhook_text(schema: FormSchema, response_id: str, rule: EscalationRule) -> str:
    return f"{schema.name} ({schema.slug})\n{rule.action.upper()} {rule.target}\n{_title_for(schema, rule)}\nResponse: {response_id}"


async def post_escalation_webhook(text: str, url: str | None = None) -> dict[str, Any]:
    target = str(url if url is not None else settings.ESCALATION_WEBHOOK_URL or "").strip()
    payload_text = str(text or "").strip()
    if not payload_text:
        return {"ok": False, "sent": False, "reason": "empty_text"}
    if not target:
        logger.info("escalation webhook disabled text=%s", payload_text.replace("\n", " | "))
        return {"ok": True, "sent": False, "mocked": True}
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.post(target, json={"text": payload_text})
        if response.status_code >= 400:
            logger.warning("escalation webhook rejected status=%s", response.status_code)
            return {"ok": False, "sent": False, "status_code": response.status_code}
        return {"ok": True, "sent": True}
    except httpx.HTTPError as exc:
        logger.warning("escalation webhook failed error=%s", exc)
        return {"ok": False, "sent": False, "error": str(exc)}


class SqlEscalationSink:
    def __init__(self, db: Session, *, send_webhook: bool = True):
        self.db = db
        self.send_webhook = send_webhook

    def _create_notification(self, schema: FormSchema, response_id: str, rule: EscalationRule) -> FormNotification | None:
        action = ACTION_ASSIGN if rule.action == "assign" else ACTION_NOTIFY
        target = str(rule.target or "").strip().upper()
        dedupe_key = f"{response_id}:{action}:{target}"
        exists = self.db.query(FormNotification.id).filter(FormNotification.dedupe_key == dedupe_key).first()
        if exists is not None:
            return None
        row = FormNotification(
            response_id=uuid.UUID(str(response_id)),
            template_slug=schema.slug,
            action=action,
            target=target,
            title=_title_for(schema, rule),
            body=str(rule.message or "").strip() or None,
            payload={
                "response_id": str(response_id),
                "template_slug": schema.slug,
                "condition": rule.condition.model_dump(),
            },
            is_read=False,
            read_at=None,
            dedupe_key=dedupe_key,
        )
        self.db.add(row)
        return row

    def _add_flags(self, response_id: str, flags: list[str]) -> int:
        row = self.db.get(FormResponse, uuid.UUID(str(response_id)))
        if row is None:
            return 0
        merged = list(row.flags or [])
        added = 0
        for flag in flags:
            if flag and flag not in merged:
                merged.append(flag)
                added += 1
        row.flags = merged
        self.db.add(row)
        return added

    def _store(self, schema: FormSchema, response_id: str, rules: list[EscalationRule]) -> tuple[list[EscalationRule], int]:
        created: list[EscalationRule] = []
        flags: list[str] = []
        for rule in rules:
            if rule.action == "flag":
                flags.append(str(rule.target or "").strip())
                continue
            if self._create_notification(schema, response_id, rule) is not None:
                created.append(rule)
        flagged = self._add_flags(response_id, flags) if flags else 0
        self.db.commit()
        return created, flagged

    async def dispatch(self, schema: FormSchema, response_id: str, rules: list[EscalationRule]) -> dict[str, int]:
        created, flagged = await anyio.to_thread.run_sync(self._store, schema, response_id, rules)
        webhooks = 0
        if self.send_webhook:
            for rule in created:
                result = await post_escalation_webhook(_webhook_text(schema, response_id, rule))
                if result.get("sent"):
                    webhooks += 1
        logger.info(
            "escalations dispatched response=%s notifications=%s flags=%s webhooks=%s",
            response_id,
            len(created),
            flagged,
            webhooks,
        )
        return {"notifications": len(created), "flags": flagged, "webhooks": webhooks}


class InMemoryEscalationSink:
    def __init__(self):
        self.dispatched: list[tuple[str, EscalationRule]] = []

    async def dispatch(self, schema: FormSchema, response_id: str, rules: list[EscalationRule]) -> dict[str, int]:
        for rule in rules:
            self.dispatched.append((response_id, rule))
        return {"notifications": len(rules), "flags": 0, "webhooks": 0}
