from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from typing import Any

from caseforms.core.config import settings
from caseforms.schemas.forms import FormSchema
from caseforms.schemas.responses import EncryptedEnvelope

logger = logging.getLogger(__name__)

ALGORITHM = "pbkdf2-sha256-xor+hs256/v1"
_VERSION = b"v1"
_NONCE_BYTES = 16
_TAG_BYTES = 32
_ITERATIONS = 120_000


def _xor_bytes(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.urlsafe_b64decode(str(text or "").encode("ascii"))


class FieldCipher:
    def __init__(self, secret: str):
        secret = str(secret or "").strip()
        if not secret:
            raise ValueError("Field encryption secret is empty")
        self._key = hashlib.sha256(secret.encode("utf-8")).digest()

    def _stream(self, nonce: bytes, length: int) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", self._key, nonce, _ITERATIONS, dklen=length)

    def encrypt(self, value: Any) -> EncryptedEnvelope:
        raw = str(value).encode("utf-8")
        nonce = secrets.token_bytes(_NONCE_BYTES)
        cipher = _xor_bytes(raw, self._stream(nonce, len(raw)))
        tag = hmac.new(self._key, _VERSION + nonce + cipher, hashlib.sha256).digest()
        return EncryptedEnvelope(alg=ALGORITHM, nonce=_b64(nonce), ciphertext=_b64(tag + cipher))

    def decrypt(self, envelope: EncryptedEnvelope | dict) -> str:
        env = envelope if isinstance(envelope, EncryptedEnvelope) else EncryptedEnvelope.model_validate(envelope)
        if env.alg != ALGORITHM:
            raise ValueError(f"Unsupported field encryption algorithm: {env.alg}")
        nonce = _unb64(env.nonce)
        blob = _unb64(env.ciphertext)
        if len(nonce) != _NONCE_BYTES or len(blob) < _TAG_BYTES:
            raise ValueError("Malformed encrypted field")
        tag, cipher = blob[:_TAG_BYTES], blob[_TAG_BYTES:]
        expected = hmac.new(self._key, _VERSION + nonce + cipher, hashlib.sha256).digest()
        if not hmac.compare_digest(tag, expected):
            raise ValueError("Encrypted field failed authentication")
        return _xor_bytes(cipher, self._stream(nonce, len(cipher))).decode("utf-8")


def get_field_cipher() -> FieldCipher | None:
    """Cipher for the deployment key, or ``None`` when encryption is off."""
    if settings.FORMS_PREVIEW_MODE:
        return None
    secret = str(settings.FORM_ENCRYPTION_KEY or "").strip()
    if not secret:
        return None
    return FieldCipher(secret)


def encrypt_sensitive_fields(schema: FormSchema, data: dict[str, Any], cipher: FieldCipher | None) -> dict[str, Any]:
    field_ids = schema.encryption_field_ids()
    if not field_ids:
        return dict(data)
    if cipher is None:
        # Fails open: plaintext goes to persistence.
        logger.warning("form encryption key not configured; submitting %s sensitive field(s) as plaintext form=%s", len(field_ids), schema.slug)
        return dict(data)

    out = dict(data)
    for field_id in field_ids:
        value = out.get(field_id)
        if value is None or value == "" or EncryptedEnvelope.looks_like(value):
            continue
        out[field_id] = cipher.encrypt(value).model_dump()
    return out
