from __future__ import annotations

import math
from typing import Any, Iterable, Mapping

from caseforms.schemas.forms import ConditionalRule, FormField

_MISSING = object()


def _as_text(value: Any) -> str:
    if value is _MISSING or value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_as_text(item) for item in value)
    return str(value)


def _as_number(value: Any) -> float:
    if value is _MISSING or value is None or isinstance(value, (list, dict)):
        return math.nan
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        return math.nan


def evaluate_condition(rule: ConditionalRule, data: Mapping[str, Any]) -> bool:
    value = data.get(rule.field, _MISSING)
    operator = rule.operator

    if operator == "equals":
        return value is not _MISSING and value == rule.value
    if operator == "not_equals":
        return value is _MISSING or value != rule.value
    if operator == "contains":
        return _as_text(rule.value).lower() in _as_text(value).lower()
    if operator == "greater_than":
        # NaN compares false both ways.
        return _as_number(value) > _as_number(rule.value)
    if operator == "less_than":
        return _as_number(value) < _as_number(rule.value)
    return True


def is_field_visible(field: FormField, data: Mapping[str, Any]) -> bool:
    if not field.depends_on:
        return True
    return all(evaluate_condition(rule, data) for rule in field.depends_on)


def visible_fields(fields: Iterable[FormField], data: Mapping[str, Any]) -> list[FormField]:
    return [field for field in fields if is_field_visible(field, data)]
