"""Type-directed field validation.

Each field type maps to a builder that turns the field definition into an
ordered list of :class:`Constraint` objects. Validation walks the list and
reports the first constraint that fails, so message order matters.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Iterable, Mapping

from caseforms.schemas.forms import FieldType, FormField
from caseforms.schemas.responses import FileReference
from caseforms.services.form_errors import FormError
from caseforms.services.form_uploads import PendingFile

EMAIL_RE = re.compile(r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+$")
PHONE_RE = re.compile(r"^\+?[\d\s\-()]+$")
SSN_RE = re.compile(r"^\d{3}-\d{2}-\d{4}$")
POSTAL_CODE_RE = re.compile(r"^\d{5}(-\d{4})?$")

REQUIRED_MESSAGE = "This field is required"
SIGNATURE_REQUIRED_MESSAGE = "Signature is required"


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    error: str | None = None


@dataclass(frozen=True)
class Constraint:
    check: Callable[[Any], bool]
    message: str


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def _is_text(value: Any) -> bool:
    return isinstance(value, str)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def _parses_to_date(value: Any) -> bool:
    if isinstance(value, (date, datetime)):
        return True
    if not isinstance(value, str):
        return False
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    for parser in (date.fromisoformat, datetime.fromisoformat):
        try:
            parser(text)
            return True
        except ValueError:
            continue
    return False


def _fmt_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _text_constraints(field: FormField) -> list[Constraint]:
    out = [Constraint(_is_text, "Expected text")]
    if field.min_length:
        out.append(
            Constraint(
                lambda v, n=field.min_length: len(v) >= n,
                f"Must be at least {field.min_length} characters",
            )
        )
    if field.max_length:
        out.append(
            Constraint(
                lambda v, n=field.max_length: len(v) <= n,
                f"Must be at most {field.max_length} characters",
            )
        )
    if field.pattern:
        compiled = re.compile(field.pattern)
        out.append(Constraint(lambda v, rx=compiled: rx.search(v) is not None, "Invalid format"))
    return out


def _email_constraints(field: FormField) -> list[Constraint]:
    return [
        Constraint(lambda v: _is_text(v) and EMAIL_RE.match(v.strip()) is not None, "Please enter a valid email address"),
    ]


def _phone_constraints(field: FormField) -> list[Constraint]:
    return [
        Constraint(lambda v: _is_text(v) and PHONE_RE.match(v) is not None, "Please enter a valid phone number"),
    ]


def _number_constraints(field: FormField) -> list[Constraint]:
    out = [Constraint(_is_number, "Expected a number")]
    if field.min is not None:
        out.append(Constraint(lambda v, lo=field.min: v >= lo, f"Must be at least {_fmt_number(field.min)}"))
    if field.max is not None:
        out.append(Constraint(lambda v, hi=field.max: v <= hi, f"Must be at most {_fmt_number(field.max)}"))
    return out


def _date_constraints(field: FormField) -> list[Constraint]:
    return [Constraint(_parses_to_date, "Please enter a valid date")]


def _choice_constraints(field: FormField) -> list[Constraint]:
    allowed = field.option_values
    if not allowed:
        return [Constraint(_is_text, "Expected text")]
    return [Constraint(lambda v, opts=frozenset(allowed): v in opts, "Please select a valid option")]


def _multiselect_constraints(field: FormField) -> list[Constraint]:
    out = [Constraint(lambda v: isinstance(v, (list, tuple)), "Expected a list of options")]
    allowed = field.option_values
    if allowed:
        out.append(
            Constraint(
                lambda v, opts=frozenset(allowed): all(item in opts for item in v),
                "Please select valid options",
            )
        )
    else:
        out.append(Constraint(lambda v: all(_is_text(item) for item in v), "Expected a list of options"))
    return out


def _checkbox_constraints(field: FormField) -> list[Constraint]:
    return [Constraint(lambda v: isinstance(v, bool), "Expected true or false")]


def _file_constraints(field: FormField) -> list[Constraint]:
    return [
        Constraint(
            lambda v: isinstance(v, (PendingFile, FileReference)) or FileReference.looks_like(v),
            "Please attach a file",
        )
    ]


def _signature_constraints(field: FormField) -> list[Constraint]:
    return [Constraint(lambda v: _is_text(v) and len(v) > 0, SIGNATURE_REQUIRED_MESSAGE)]


def _ssn_constraints(field: FormField) -> list[Constraint]:
    return [
        Constraint(lambda v: _is_text(v) and SSN_RE.match(v) is not None, "Please enter SSN in format XXX-XX-XXXX"),
    ]


def _scale_constraints(low: int, high: int) -> Callable[[FormField], list[Constraint]]:
    def _build(field: FormField) -> list[Constraint]:
        return [
            Constraint(_is_integer, "Expected a whole number"),
            Constraint(lambda v: low <= v <= high, f"Must be between {low} and {high}"),
        ]

    return _build


def _address_part(key: str, min_len: int = 1) -> Callable[[Any], bool]:
    def _check(value: Any) -> bool:
        part = value.get(key)
        return isinstance(part, str) and len(part.strip()) >= min_len

    return _check


def _address_constraints(field: FormField) -> list[Constraint]:
    return [
        Constraint(lambda v: isinstance(v, Mapping), "Please enter an address"),
        Constraint(_address_part("street"), "Street address is required"),
        Constraint(_address_part("city"), "City is required"),
        Constraint(_address_part("state", 2), "State is required"),
        Constraint(
            lambda v: isinstance(v.get("postal_code"), str) and POSTAL_CODE_RE.match(v["postal_code"]) is not None,
            "Please enter a valid ZIP code",
        ),
    ]


CONSTRAINT_BUILDERS: dict[FieldType, Callable[[FormField], list[Constraint]]] = {
    FieldType.TEXT: _text_constraints,
    FieldType.TEXTAREA: _text_constraints,
    FieldType.EMAIL: _email_constraints,
    FieldType.PHONE: _phone_constraints,
    FieldType.NUMBER: _number_constraints,
    FieldType.CURRENCY: _number_constraints,
    FieldType.DATE: _date_constraints,
    FieldType.SELECT: _choice_constraints,
    FieldType.RADIO: _choice_constraints,
    FieldType.MULTISELECT: _multiselect_constraints,
    FieldType.CHECKBOX: _checkbox_constraints,
    FieldType.FILE: _file_constraints,
    FieldType.SIGNATURE: _signature_constraints,
    FieldType.SSN: _ssn_constraints,
    FieldType.RATING: _scale_constraints(1, 5),
    FieldType.NPS: _scale_constraints(0, 10),
    FieldType.ADDRESS: _address_constraints,
}


def build_constraints(field: FormField) -> list[Constraint]:
    return CONSTRAINT_BUILDERS[field.type](field)


def validate_field(field: FormField, value: Any) -> ValidationResult:
    if is_empty_value(value):
        if not field.required:
            return ValidationResult(True)
        if field.type == FieldType.SIGNATURE:
            return ValidationResult(False, SIGNATURE_REQUIRED_MESSAGE)
        return ValidationResult(False, REQUIRED_MESSAGE)

    for constraint in build_constraints(field):
        try:
            ok = constraint.check(value)
        except (TypeError, ValueError, AttributeError):
            ok = False
        if not ok:
            return ValidationResult(False, constraint.message)
    return ValidationResult(True)


def validate_fields(fields: Iterable[FormField], data: Mapping[str, Any]) -> list[FormError]:
    errors: list[FormError] = []
    for field in fields:
        result = validate_field(field, data.get(field.id))
        if not result.is_valid:
            errors.append(FormError(field.id, result.error or "Invalid value"))
    return errors
