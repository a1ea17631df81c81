from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from caseforms.core.deps import require_form_manager
from caseforms.db.session import get_db
from caseforms.schemas.audit import AuditChainStatus
from caseforms.services.form_access import Actor
from caseforms.services.form_audit import verify_audit_chain

router = APIRouter()


@router.get("/verify", response_model=AuditChainStatus)
def verify_chain(db: Session = Depends(get_db), actor: Actor = Depends(require_form_manager)):
    return verify_audit_chain(db)
