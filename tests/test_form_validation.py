import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "test")

from caseforms.schemas.forms import FieldOption, FieldType, FormField
from caseforms.services.form_uploads import PendingFile
from caseforms.services.form_validation import (
    CONSTRAINT_BUILDERS,
    REQUIRED_MESSAGE,
    SIGNATURE_REQUIRED_MESSAGE,
    validate_field,
    validate_fields,
)

OPTIONS = [FieldOption(value="a", label="A"), FieldOption(value="b", label="B")]

# One value per type that meets every documented constraint of that type.
VALID_VALUES = {
    FieldType.TEXT: "hello",
    FieldType.TEXTAREA: "a longer answer",
    FieldType.NUMBER: 42,
    FieldType.DATE: "2026-03-14",
    FieldType.SELECT: "a",
    FieldType.MULTISELECT: ["a", "b"],
    FieldType.RADIO: "b",
    FieldType.CHECKBOX: True,
    FieldType.FILE: PendingFile("proof.pdf", "application/pdf", b"%PDF-1.4"),
    FieldType.SIGNATURE: "data:image/svg+xml;base64,PHN2Zy8+",
    FieldType.ADDRESS: {"street": "1 Main St", "city": "Springfield", "state": "IL", "postal_code": "62701"},
    FieldType.PHONE: "+1 (555) 010-9999",
    FieldType.EMAIL: "case.worker@example.org",
    FieldType.CURRENCY: 1250.5,
    FieldType.SSN: "123-45-6789",
    FieldType.RATING: 4,
    FieldType.NPS: 0,
}


def _field(field_type: FieldType, **kwargs) -> FormField:
    options = OPTIONS if field_type in {FieldType.SELECT, FieldType.MULTISELECT, FieldType.RADIO} else []
    return FormField(id="f", type=field_type, label="F", options=options, **kwargs)


class ValidatorCoverageTests(unittest.TestCase):
    def test_every_field_type_has_a_builder(self):
        self.assertEqual(set(CONSTRAINT_BUILDERS), set(FieldType))

    def test_valid_value_passes_for_every_type(self):
        self.assertEqual(set(VALID_VALUES), set(FieldType))
        for field_type, value in VALID_VALUES.items():
            with self.subTest(field_type=field_type.value):
                result = validate_field(_field(field_type, required=True), value)
                self.assertTrue(result.is_valid, result.error)

    def test_required_empty_values_fail_for_every_type(self):
        for field_type in FieldType:
            for empty in (None, "", "   ", [], {}):
                with self.subTest(field_type=field_type.value, empty=empty):
                    result = validate_field(_field(field_type, required=True), empty)
                    self.assertFalse(result.is_valid)
                    expected = SIGNATURE_REQUIRED_MESSAGE if field_type == FieldType.SIGNATURE else REQUIRED_MESSAGE
                    self.assertEqual(result.error, expected)

    def test_optional_empty_values_always_pass(self):
        for field_type in FieldType:
            with self.subTest(field_type=field_type.value):
                self.assertTrue(validate_field(_field(field_type), "").is_valid)
                self.assertTrue(validate_field(_field(field_type), None).is_valid)


class TypeConstraintTests(unittest.TestCase):
    def test_text_length_and_pattern(self):
        field = _field(FieldType.TEXT, min_length=3, max_length=5, pattern=r"^[a-z]+$")
        self.assertEqual(validate_field(field, "ab").error, "Must be at least 3 characters")
        self.assertEqual(validate_field(field, "abcdef").error, "Must be at most 5 characters")
        self.assertEqual(validate_field(field, "ab1").error, "Invalid format")
        self.assertTrue(validate_field(field, "abcd").is_valid)

    def test_number_bounds_are_inclusive(self):
        field = _field(FieldType.NUMBER, min=1, max=10)
        self.assertTrue(validate_field(field, 1).is_valid)
        self.assertTrue(validate_field(field, 10).is_valid)
        self.assertEqual(validate_field(field, 0).error, "Must be at least 1")
        self.assertEqual(validate_field(field, 11).error, "Must be at most 10")
        self.assertFalse(validate_field(field, "5").is_valid)
        self.assertFalse(validate_field(field, True).is_valid)

    def test_email_phone_ssn_patterns(self):
        self.assertFalse(validate_field(_field(FieldType.EMAIL), "not-an-email").is_valid)
        self.assertFalse(validate_field(_field(FieldType.PHONE), "call me").is_valid)
        self.assertFalse(validate_field(_field(FieldType.SSN), "123456789").is_valid)
        self.assertFalse(validate_field(_field(FieldType.SSN), "123-45-678").is_valid)

    def test_date_must_parse(self):
        self.assertTrue(validate_field(_field(FieldType.DATE), "2026-01-31T10:00:00Z").is_valid)
        self.assertFalse(validate_field(_field(FieldType.DATE), "2026-02-30").is_valid)
        self.assertFalse(validate_field(_field(FieldType.DATE), "yesterday").is_valid)

    def test_choice_membership(self):
        self.assertEqual(validate_field(_field(FieldType.SELECT), "z").error, "Please select a valid option")
        self.assertFalse(validate_field(_field(FieldType.MULTISELECT), ["a", "z"]).is_valid)
        self.assertFalse(validate_field(_field(FieldType.MULTISELECT), "a").is_valid)

    def test_checkbox_false_counts_as_answered(self):
        self.assertTrue(validate_field(_field(FieldType.CHECKBOX, required=True), False).is_valid)
        self.assertFalse(validate_field(_field(FieldType.CHECKBOX), "yes").is_valid)

    def test_scales(self):
        self.assertFalse(validate_field(_field(FieldType.RATING), 0).is_valid)
        self.assertFalse(validate_field(_field(FieldType.RATING), 3.5).is_valid)
        self.assertTrue(validate_field(_field(FieldType.NPS), 10).is_valid)
        self.assertEqual(validate_field(_field(FieldType.NPS), 11).error, "Must be between 0 and 10")

    def test_address_parts_checked_in_order(self):
        field = _field(FieldType.ADDRESS)
        base = dict(VALID_VALUES[FieldType.ADDRESS])
        self.assertEqual(validate_field(field, {**base, "street": ""}).error, "Street address is required")
        self.assertEqual(validate_field(field, {**base, "state": "I"}).error, "State is required")
        self.assertEqual(validate_field(field, {**base, "postal_code": "6270"}).error, "Please enter a valid ZIP code")
        self.assertTrue(validate_field(field, {**base, "postal_code": "62701-1234"}).is_valid)

    def test_file_accepts_reference_descriptor(self):
        reference = {"filename": "a.pdf", "content_type": "application/pdf", "size": 3, "url": "https://s3.local/a", "uploaded_at": "now"}
        self.assertTrue(validate_field(_field(FieldType.FILE), reference).is_valid)
        self.assertFalse(validate_field(_field(FieldType.FILE), "a.pdf").is_valid)

    def test_validate_fields_keeps_field_order(self):
        fields = [
            FormField(id="first", type=FieldType.TEXT, label="First", required=True),
            FormField(id="email", type=FieldType.EMAIL, label="Email"),
            FormField(id="last", type=FieldType.TEXT, label="Last", required=True),
        ]
        errors = validate_fields(fields, {"email": "bad"})
        self.assertEqual([e.field for e in errors], ["first", "email", "last"])


if __name__ == "__main__":
    unittest.main()
