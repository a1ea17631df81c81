from fastapi import APIRouter
from caseforms.api.forms import audit, autosave, responses, templates, uploads

router = APIRouter()
router.include_router(templates.router, prefix="/templates", tags=["FormTemplates"])
router.include_router(responses.router, prefix="/responses", tags=["FormResponses"])
router.include_router(uploads.router, prefix="/upload", tags=["FormFiles"])
router.include_router(autosave.router, prefix="/autosave", tags=["FormAutosave"])
router.include_router(audit.router, prefix="/audit", tags=["FormAudit"])
