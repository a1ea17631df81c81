import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "test")

from caseforms.data.form_templates import get_template_by_slug
from caseforms.schemas.forms import FormSchema
from caseforms.schemas.responses import FileReference
from caseforms.services.escalations import InMemoryEscalationSink, evaluate_escalations
from caseforms.services.form_access import Actor
from caseforms.services.form_audit import ACTION_SUBMIT, InMemoryAuditSink
from caseforms.services.form_autosave import InMemoryDraftStore, autosave_key
from caseforms.services.form_errors import SubmissionError, UploadFailedError
from caseforms.services.form_submission import SubmissionCoordinator, build_payload
from caseforms.services.form_uploads import PendingFile


class _Persistence:
    def __init__(self, fail_upload: bool = False, fail_create: bool = False):
        self.fail_upload = fail_upload
        self.fail_create = fail_create
        self.created = []

    async def create_submitted_response(self, slug, data, created_by):
        if self.fail_create:
            raise RuntimeError("db down")
        self.created.append((slug, data, created_by))
        return "resp-1"

    async def upload_file(self, owner, field_id, file):
        if self.fail_upload:
            raise ConnectionError("s3 down")
        return FileReference(filename=file.filename, content_type=file.content_type, size=file.size, url="https://s3.local/x", uploaded_at="t")


class _BrokenAudit:
    async def record(self, event):
        raise RuntimeError("audit down")


def _incident_data(**overrides):
    data = {
        "incidentDate": "2026-05-01",
        "location": "Shelter kitchen",
        "severity": "critical",
        "description": "Resident slipped near the stove",
        "injuries": True,
        "injuryDetails": "Bruised wrist",
    }
    data.update(overrides)
    return data


class SubmissionCoordinatorTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.schema = get_template_by_slug("incident-report")
        self.actor = Actor(identity="staff-7", roles=["CASE_WORKER"])

    async def test_payload_drops_hidden_and_unknown_fields(self):
        payload = build_payload(self.schema, _incident_data(injuries=False, extra="x"))
        self.assertNotIn("injuryDetails", payload)
        self.assertNotIn("extra", payload)

    async def test_successful_run_emits_audit_and_escalations(self):
        persistence = _Persistence()
        audit = InMemoryAuditSink()
        escalations = InMemoryEscalationSink()
        coordinator = SubmissionCoordinator(persistence, audit=audit, escalations=escalations, cipher_factory=lambda: None)

        response_id = await coordinator.run(self.schema, _incident_data(), self.actor)

        self.assertEqual(response_id, "resp-1")
        self.assertEqual(persistence.created[0][2], "staff-7")
        self.assertEqual([e.action for e in audit.events], [ACTION_SUBMIT])
        self.assertEqual(audit.events[0].target.id, "resp-1")
        self.assertEqual(audit.events[0].actor.identity, "staff-7")
        expected = evaluate_escalations(self.schema, _incident_data())
        self.assertTrue(expected)
        self.assertEqual([rule for _, rule in escalations.dispatched], expected)

    async def test_no_escalation_when_conditions_do_not_match(self):
        escalations = InMemoryEscalationSink()
        coordinator = SubmissionCoordinator(_Persistence(), escalations=escalations, cipher_factory=lambda: None)
        await coordinator.run(self.schema, _incident_data(severity="low", injuries=False), self.actor)
        self.assertEqual(escalations.dispatched, [])

    async def test_audit_failure_does_not_fail_submission(self):
        coordinator = SubmissionCoordinator(_Persistence(), audit=_BrokenAudit(), cipher_factory=lambda: None)
        with self.assertLogs("caseforms.services.form_submission", level="WARNING"):
            self.assertEqual(await coordinator.run(self.schema, _incident_data(), self.actor), "resp-1")

    async def test_delivery_failure_is_wrapped(self):
        coordinator = SubmissionCoordinator(_Persistence(fail_create=True), cipher_factory=lambda: None)
        with self.assertRaises(SubmissionError):
            await coordinator.run(self.schema, _incident_data(), self.actor)

    async def test_required_upload_failure_stops_before_delivery(self):
        persistence = _Persistence(fail_upload=True)
        schema = FormSchema.model_validate(
            {
                "id": "t",
                "slug": "proof",
                "name": "Proof",
                "category": "CLIENT",
                "fields": [{"id": "incomeProof", "type": "file", "label": "Proof", "required": True}],
            }
        )
        coordinator = SubmissionCoordinator(persistence, cipher_factory=lambda: None)
        data = {"incomeProof": PendingFile("pay.pdf", "application/pdf", b"1")}
        with self.assertRaises(UploadFailedError):
            await coordinator.run(schema, data, self.actor)
        self.assertEqual(persistence.created, [])

    async def test_autosave_snapshot_removed_after_delivery(self):
        store = InMemoryDraftStore()
        schema = get_template_by_slug("client-intake")
        key = autosave_key(schema.slug, "staff-7")
        await store.set(key, {"firstName": "Ada"})
        coordinator = SubmissionCoordinator(_Persistence(), draft_store=store, cipher_factory=lambda: None)

        await coordinator.run(schema, {"firstName": "Ada"}, self.actor)

        self.assertIsNone(await store.get(key))


if __name__ == "__main__":
    unittest.main()
