from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AuditTarget(BaseModel):
    type: str
    id: str
    label: Optional[str] = None


class AuditActor(BaseModel):
    identity: str = "anonymous"
    roles: List[str] = Field(default_factory=list)


class AuditEvent(BaseModel):
    scope: str = "forms"
    action: str
    target: AuditTarget
    actor: AuditActor
    timestamp: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AuditChainStatus(BaseModel):
    ok: bool
    checked: int
    bad_index: Optional[int] = None
