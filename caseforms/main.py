from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from caseforms.core.config import settings
from caseforms.core.http_hardening import install_http_hardening
from caseforms.api.forms.router import router as forms_router

app = FastAPI(title=settings.APP_NAME, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_http_hardening(app)

app.include_router(forms_router, prefix="/api/forms")

@app.get("/", include_in_schema=False)
def landing():
    return JSONResponse({"service": settings.APP_NAME, "status": "ok"})

@app.get("/health")
def health():
    return {"status": "ok"}
