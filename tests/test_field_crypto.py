import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "test")

import json
from unittest.mock import patch

from caseforms.schemas.forms import FormSchema
from caseforms.schemas.responses import EncryptedEnvelope
from caseforms.services import field_crypto
from caseforms.services.field_crypto import ALGORITHM, FieldCipher, encrypt_sensitive_fields, get_field_cipher
from caseforms.services.form_access import Actor
from caseforms.services.form_session import FormSession
from caseforms.services.form_submission import SubmissionCoordinator

SSN = "123-45-6789"


def _schema() -> FormSchema:
    return FormSchema.model_validate(
        {
            "id": "t",
            "slug": "intake",
            "name": "Intake",
            "category": "CLIENT",
            "fields": [
                {"id": "name", "type": "text", "label": "Name", "required": True},
                {"id": "ssn", "type": "ssn", "label": "SSN", "required": True, "sensitive": True},
                {"id": "caseRef", "type": "text", "label": "Case ref", "sensitive": True},
            ],
        }
    )


class _CapturingPersistence:
    def __init__(self):
        self.payloads = []

    async def create_submitted_response(self, slug, data, created_by):
        self.payloads.append(data)
        return "resp-1"

    async def upload_file(self, owner, field_id, file):
        raise AssertionError("no uploads expected")


class FieldCipherTests(unittest.TestCase):
    def setUp(self):
        self.cipher = FieldCipher("deployment-secret")

    def test_roundtrip_returns_plaintext(self):
        envelope = self.cipher.encrypt(SSN)
        self.assertEqual(envelope.alg, ALGORITHM)
        self.assertEqual(self.cipher.decrypt(envelope), SSN)
        self.assertEqual(self.cipher.decrypt(envelope.model_dump()), SSN)

    def test_envelope_never_contains_plaintext(self):
        envelope = self.cipher.encrypt(SSN)
        serialized = json.dumps(envelope.model_dump())
        self.assertNotIn(SSN, serialized)
        self.assertNotIn("123456789", serialized)

    def test_nonce_differs_between_encryptions(self):
        self.assertNotEqual(self.cipher.encrypt(SSN).nonce, self.cipher.encrypt(SSN).nonce)

    def test_wrong_key_and_tampering_are_rejected(self):
        envelope = self.cipher.encrypt(SSN)
        with self.assertRaises(ValueError):
            FieldCipher("other-secret").decrypt(envelope)
        tampered = envelope.model_copy(update={"ciphertext": envelope.ciphertext[:-4] + "AAAA"})
        with self.assertRaises(ValueError):
            self.cipher.decrypt(tampered)
        with self.assertRaises(ValueError):
            self.cipher.decrypt(envelope.model_copy(update={"alg": "none"}))

    def test_empty_secret_is_rejected(self):
        with self.assertRaises(ValueError):
            FieldCipher("  ")


class SensitiveFieldTests(unittest.TestCase):
    def test_only_encryptable_sensitive_fields_are_replaced(self):
        out = encrypt_sensitive_fields(_schema(), {"name": "Ada", "ssn": SSN, "caseRef": "C-1"}, FieldCipher("k"))
        self.assertTrue(EncryptedEnvelope.looks_like(out["ssn"]))
        self.assertEqual(out["name"], "Ada")
        self.assertEqual(out["caseRef"], "C-1")

    def test_missing_cipher_fails_open_with_warning(self):
        with self.assertLogs(field_crypto.logger, level="WARNING"):
            out = encrypt_sensitive_fields(_schema(), {"ssn": SSN}, None)
        self.assertEqual(out["ssn"], SSN)

    def test_cipher_disabled_without_key_or_in_preview(self):
        with patch.object(field_crypto.settings, "FORM_ENCRYPTION_KEY", ""):
            self.assertIsNone(get_field_cipher())
        with patch.object(field_crypto.settings, "FORM_ENCRYPTION_KEY", "k"), patch.object(field_crypto.settings, "FORMS_PREVIEW_MODE", True):
            self.assertIsNone(get_field_cipher())
        with patch.object(field_crypto.settings, "FORM_ENCRYPTION_KEY", "k"), patch.object(field_crypto.settings, "FORMS_PREVIEW_MODE", False):
            self.assertIsInstance(get_field_cipher(), FieldCipher)


class EncryptedSubmissionTests(unittest.IsolatedAsyncioTestCase):
    async def test_submitted_ssn_is_an_envelope(self):
        persistence = _CapturingPersistence()
        cipher = FieldCipher("deployment-secret")
        coordinator = SubmissionCoordinator(persistence, cipher_factory=lambda: cipher)
        session = FormSession(_schema(), coordinator, actor=Actor(identity="u-1"), initial_data={"name": "Ada", "ssn": SSN})

        self.assertEqual(await session.submit(), "resp-1")

        submitted = persistence.payloads[0]["ssn"]
        self.assertEqual(set(submitted), {"alg", "nonce", "ciphertext"})
        self.assertNotIn(SSN, json.dumps(persistence.payloads[0]))
        self.assertEqual(cipher.decrypt(submitted), SSN)
        self.assertEqual(session.data["ssn"], SSN)


if __name__ == "__main__":
    unittest.main()
