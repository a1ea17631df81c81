"""Declarative form definitions.

A :class:`FormSchema` is a flat, ordered list of :class:`FormField` objects.
Sections (wizard steps) and conditional rules only reference fields by id, so
step membership is a view over the field list rather than a nested structure.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    DATE = "date"
    SELECT = "select"
    MULTISELECT = "multiselect"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    FILE = "file"
    SIGNATURE = "signature"
    ADDRESS = "address"
    PHONE = "phone"
    EMAIL = "email"
    CURRENCY = "currency"
    SSN = "ssn"
    RATING = "rating"
    NPS = "nps"


# Only identifier-shaped values are encrypted at submission time.
ENCRYPTABLE_FIELD_TYPES = frozenset({FieldType.SSN})

ConditionOperator = Literal["equals", "not_equals", "contains", "greater_than", "less_than"]
FieldWidth = Literal["full", "half", "third", "quarter"]
AuditLevel = Literal["basic", "detailed", "sensitive"]
EscalationAction = Literal["notify", "assign", "flag"]

FORM_CATEGORIES = {
    "CLIENT": "Client Services",
    "HR": "Human Resources",
    "GOVERNANCE": "Board & Governance",
    "COMPLIANCE": "Compliance & Reporting",
    "FINANCE": "Finance & Development",
    "OPERATIONS": "Operations & Safety",
}


class FieldOption(BaseModel):
    value: str
    label: str
    disabled: bool = False


class ConditionalRule(BaseModel):
    field: str
    operator: ConditionOperator
    value: Any = None


class FormField(BaseModel):
    id: str = Field(min_length=1)
    type: FieldType
    label: str
    help: Optional[str] = None
    required: bool = False
    placeholder: Optional[str] = None
    default_value: Any = None

    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None

    options: List[FieldOption] = Field(default_factory=list)

    accept: Optional[str] = None
    max_file_size: Optional[int] = None

    depends_on: List[ConditionalRule] = Field(default_factory=list)
    sensitive: bool = False

    width: FieldWidth = "full"
    section: Optional[str] = None

    @property
    def option_values(self) -> list[str]:
        return [opt.value for opt in self.options]

    @property
    def is_encryptable(self) -> bool:
        return self.sensitive and self.type in ENCRYPTABLE_FIELD_TYPES


class FormSection(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    fields: List[str] = Field(default_factory=list)


class EscalationRule(BaseModel):
    condition: ConditionalRule
    action: EscalationAction
    target: str
    message: Optional[str] = None


class FormSchema(BaseModel):
    id: str
    slug: str
    name: str
    description: Optional[str] = None
    version: int = 1
    category: str

    fields: List[FormField]
    sections: List[FormSection] = Field(default_factory=list)
    multi_step: bool = False

    allowed_roles: List[str] = Field(default_factory=list)
    requires_signature: bool = False

    autosave: bool = False
    allow_drafts: bool = False

    audit_level: AuditLevel = "basic"
    escalations: List[EscalationRule] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_references(self) -> "FormSchema":
        seen: set[str] = set()
        for field in self.fields:
            if field.id in seen:
                raise ValueError(f"Duplicate field id: {field.id}")
            seen.add(field.id)

        section_ids = {section.id for section in self.sections}
        for field in self.fields:
            for rule in field.depends_on:
                if rule.field not in seen:
                    raise ValueError(f"Field {field.id} depends on unknown field {rule.field}")
            if field.section is not None and field.section not in section_ids:
                raise ValueError(f"Field {field.id} references unknown section {field.section}")
            if field.pattern:
                try:
                    re.compile(field.pattern)
                except re.error as exc:
                    raise ValueError(f"Field {field.id} has an invalid pattern: {exc}")

        for section in self.sections:
            for field_id in section.fields:
                if field_id not in seen:
                    raise ValueError(f"Section {section.id} references unknown field {field_id}")

        for rule in self.escalations:
            if rule.condition.field not in seen:
                raise ValueError(f"Escalation references unknown field {rule.condition.field}")

        if self.is_multi_step:
            owner: dict[str, str] = {}
            for section in self.sections:
                for field_id in section.fields:
                    if field_id in owner:
                        raise ValueError(f"Field {field_id} belongs to sections {owner[field_id]} and {section.id}")
                    owner[field_id] = section.id
            orphans = [field.id for field in self.fields if field.id not in owner]
            if orphans:
                raise ValueError("Fields outside any step: " + ", ".join(orphans))
        return self

    @property
    def is_multi_step(self) -> bool:
        return bool(self.multi_step and len(self.sections) > 1)

    def field(self, field_id: str) -> FormField | None:
        for field in self.fields:
            if field.id == field_id:
                return field
        return None

    def steps(self) -> list[list[FormField]]:
        """Fields of each wizard step, in schema order.

        A schema that is not multi-step has a single implicit step holding
        every field.
        """
        if not self.is_multi_step:
            return [list(self.fields)]
        out: list[list[FormField]] = []
        for section in self.sections:
            members = set(section.fields)
            out.append([field for field in self.fields if field.id in members])
        return out

    def encryption_field_ids(self) -> list[str]:
        return [field.id for field in self.fields if field.is_encryptable]

    def file_field_ids(self) -> list[str]:
        return [field.id for field in self.fields if field.type == FieldType.FILE]

    def signature_field_ids(self) -> list[str]:
        return [field.id for field in self.fields if field.type == FieldType.SIGNATURE]


class FormTemplateSummary(BaseModel):
    id: str
    slug: str
    name: str
    description: Optional[str] = None
    category: str
    category_label: Optional[str] = None
    version: int
    multi_step: bool
    requires_signature: bool
    allow_drafts: bool

    @classmethod
    def from_schema(cls, schema: FormSchema) -> "FormTemplateSummary":
        return cls(
            id=schema.id,
            slug=schema.slug,
            name=schema.name,
            description=schema.description,
            category=schema.category,
            category_label=FORM_CATEGORIES.get(schema.category),
            version=schema.version,
            multi_step=schema.is_multi_step,
            requires_signature=schema.requires_signature,
            allow_drafts=schema.allow_drafts,
        )
