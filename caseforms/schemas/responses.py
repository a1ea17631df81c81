from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

ResponseStatus = Literal["draft", "submitted", "signed", "archived"]
SignerRole = Literal["user", "client", "board"]


class FileReference(BaseModel):
    filename: str
    content_type: str
    size: int
    url: str
    uploaded_at: str
    id: Optional[str] = None

    @classmethod
    def looks_like(cls, value: Any) -> bool:
        return isinstance(value, dict) and {"filename", "content_type", "size", "url"} <= set(value)


class EncryptedEnvelope(BaseModel):
    alg: str
    nonce: str
    ciphertext: str

    @classmethod
    def looks_like(cls, value: Any) -> bool:
        return isinstance(value, dict) and set(value) == {"alg", "nonce", "ciphertext"}


class FormSignature(BaseModel):
    by: SignerRole = "user"
    user_id: Optional[str] = None
    timestamp: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    signature_data: str


class SignatureMetadata(BaseModel):
    by: SignerRole = "user"
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class FormResponseRead(BaseModel):
    id: UUID
    template_id: UUID
    template_slug: str
    status: ResponseStatus
    data: Dict[str, Any] = Field(default_factory=dict)
    signatures: List[FormSignature] = Field(default_factory=list)
    flags: List[str] = Field(default_factory=list)
    created_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FormResponseCreate(BaseModel):
    template_slug: str
    data: Dict[str, Any] = Field(default_factory=dict)


class FormResponseCreated(BaseModel):
    response_id: UUID
    status: ResponseStatus


class FormSubmitRejected(BaseModel):
    errors: List[Dict[str, str]]


class SignPayload(BaseModel):
    signature_data: str = Field(min_length=1)
    metadata: SignatureMetadata = Field(default_factory=SignatureMetadata)


class AutosaveSnapshot(BaseModel):
    data: Dict[str, Any] = Field(default_factory=dict)
