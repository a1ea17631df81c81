import unittest

from caseforms.schemas.forms import ConditionalRule, FieldType, FormField
from caseforms.services.form_conditions import evaluate_condition, is_field_visible, visible_fields


def _rule(operator: str, value, field: str = "a") -> ConditionalRule:
    return ConditionalRule(field=field, operator=operator, value=value)


class ConditionEvaluationTests(unittest.TestCase):
    def test_equals_requires_present_matching_value(self):
        self.assertTrue(evaluate_condition(_rule("equals", "yes"), {"a": "yes"}))
        self.assertFalse(evaluate_condition(_rule("equals", "yes"), {"a": "no"}))
        self.assertFalse(evaluate_condition(_rule("equals", "yes"), {}))
        self.assertTrue(evaluate_condition(_rule("equals", True), {"a": True}))

    def test_not_equals_holds_for_missing_value(self):
        self.assertTrue(evaluate_condition(_rule("not_equals", "yes"), {}))
        self.assertTrue(evaluate_condition(_rule("not_equals", "yes"), {"a": "no"}))
        self.assertFalse(evaluate_condition(_rule("not_equals", "yes"), {"a": "yes"}))

    def test_contains_is_case_insensitive_on_text(self):
        self.assertTrue(evaluate_condition(_rule("contains", "hous"), {"a": "Need HOUSING help"}))
        self.assertTrue(evaluate_condition(_rule("contains", "food"), {"a": ["housing", "Food"]}))
        self.assertFalse(evaluate_condition(_rule("contains", "legal"), {"a": "housing"}))
        self.assertFalse(evaluate_condition(_rule("contains", "x"), {}))

    def test_numeric_comparisons_coerce_and_reject_non_numeric(self):
        self.assertTrue(evaluate_condition(_rule("greater_than", 5), {"a": "7"}))
        self.assertTrue(evaluate_condition(_rule("less_than", "10"), {"a": 3}))
        self.assertFalse(evaluate_condition(_rule("greater_than", 5), {"a": "abc"}))
        self.assertFalse(evaluate_condition(_rule("less_than", 5), {"a": "abc"}))
        self.assertFalse(evaluate_condition(_rule("greater_than", 5), {}))
        self.assertFalse(evaluate_condition(_rule("greater_than", 5), {"a": 5}))


class VisibilityTests(unittest.TestCase):
    def setUp(self):
        self.always = FormField(id="a", type=FieldType.TEXT, label="A")
        self.gated = FormField(
            id="b",
            type=FieldType.TEXT,
            label="B",
            required=True,
            depends_on=[_rule("equals", "yes"), _rule("greater_than", 1, field="n")],
        )

    def test_field_without_rules_is_visible(self):
        self.assertTrue(is_field_visible(self.always, {}))

    def test_all_rules_must_hold(self):
        self.assertTrue(is_field_visible(self.gated, {"a": "yes", "n": 2}))
        self.assertFalse(is_field_visible(self.gated, {"a": "yes", "n": 0}))
        self.assertFalse(is_field_visible(self.gated, {"a": "no", "n": 2}))

    def test_visible_fields_filters_in_order(self):
        fields = [self.always, self.gated]
        self.assertEqual([f.id for f in visible_fields(fields, {"a": "no"})], ["a"])
        self.assertEqual([f.id for f in visible_fields(fields, {"a": "yes", "n": 3})], ["a", "b"])


if __name__ == "__main__":
    unittest.main()
