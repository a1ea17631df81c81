from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from caseforms.schemas.audit import AuditActor
from caseforms.schemas.forms import FormSchema

FORM_MANAGER_ROLES = frozenset({"SUPER_ADMIN", "ADMIN", "HR_MANAGER", "PROGRAM_DIRECTOR", "BOARD_SECRETARY"})
FORM_BUILDER_ROLES = frozenset({"SUPER_ADMIN", "ADMIN"})


def normalize_roles(value: Iterable[str] | str | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    out: list[str] = []
    for item in value:
        role = str(item or "").strip().upper()
        if role and role not in out:
            out.append(role)
    return out


@dataclass
class Actor:
    identity: str = "anonymous"
    roles: list[str] = field(default_factory=list)
    email: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    def as_audit_actor(self) -> AuditActor:
        return AuditActor(identity=self.email or self.identity, roles=list(self.roles))


def can_user_access_form(schema: FormSchema, user_roles: Iterable[str]) -> bool:
    roles = set(normalize_roles(user_roles))
    return any(role.upper() in roles for role in schema.allowed_roles)


def can_user_manage_forms(user_roles: Iterable[str]) -> bool:
    return bool(FORM_MANAGER_ROLES & set(normalize_roles(user_roles)))


def can_user_build_forms(user_roles: Iterable[str]) -> bool:
    return bool(FORM_BUILDER_ROLES & set(normalize_roles(user_roles)))
