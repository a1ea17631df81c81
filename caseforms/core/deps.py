from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from caseforms.core.config import settings
from caseforms.core.http_hardening import client_ip
from caseforms.core.security import decode_jwt
from caseforms.db.session import get_db
from caseforms.services.form_access import Actor, can_user_manage_forms, normalize_roles
from caseforms.services.form_autosave import DraftStore, get_draft_store
from caseforms.services.form_repository import SqlFormRepository

bearer = HTTPBearer(auto_error=False)


def get_current_actor(request: Request, creds: HTTPAuthorizationCredentials = Depends(bearer)) -> Actor:
    if not creds:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        claims = decode_jwt(creds.credentials, settings.JWT_SECRET)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    subject = str(claims.get("sub") or "").strip()
    if not subject:
        raise HTTPException(status_code=401, detail="Invalid token")
    return Actor(
        identity=subject,
        roles=normalize_roles(claims.get("roles")),
        email=claims.get("email"),
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def require_form_manager(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not can_user_manage_forms(actor.roles):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return actor


def get_form_repository(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)) -> SqlFormRepository:
    return SqlFormRepository(db, uploaded_by=actor.identity)


def get_autosave_store() -> DraftStore:
    return get_draft_store()
