from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "caseforms"

    JWT_SECRET: str = "change_me_jwt"
    JWT_TTL_MINUTES: int = 240

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    DATABASE_URL: str
    REDIS_URL: str

    S3_ENDPOINT: str
    S3_ACCESS_KEY: str
    S3_SECRET_KEY: str
    S3_BUCKET: str
    S3_REGION: str = "us-east-1"
    S3_USE_SSL: bool = False
    S3_URL_TTL_SECONDS: int = 3600
    MAX_FILE_MB: int = 25
    FORM_UPLOAD_ALLOWED_MIME_TYPES: str = (
        "application/pdf,"
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document,"
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet,"
        "image/png,image/jpeg,text/plain"
    )
    STAGED_UPLOAD_TTL_HOURS: int = 24

    # Empty key disables field encryption (plaintext is submitted as-is).
    FORM_ENCRYPTION_KEY: str = ""
    FORMS_PREVIEW_MODE: bool = False

    AUTOSAVE_DEBOUNCE_SECONDS: float = 2.0
    AUTOSAVE_TTL_SECONDS: int = 7 * 24 * 3600

    AUDIT_ENABLED: bool = True
    ESCALATION_WEBHOOK_URL: str = ""

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def upload_allowed_mime_types(self) -> List[str]:
        return [m.strip().lower() for m in self.FORM_UPLOAD_ALLOWED_MIME_TYPES.split(",") if m.strip()]

settings = Settings()
