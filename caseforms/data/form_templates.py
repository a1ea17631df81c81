from __future__ import annotations

from typing import Any, Iterable

from pydantic import ValidationError

from caseforms.schemas.forms import FORM_CATEGORIES, FieldType, FormSchema
from caseforms.services.form_access import can_user_access_form

_STAFF_INTAKE_ROLES = ["SUPER_ADMIN", "ADMIN", "PROGRAM_DIRECTOR", "SUPERVISOR", "CASE_WORKER", "INTAKE_SPECIALIST", "SOCIAL_WORKER"]

_US_STATE_HINT = "Two-letter state code"

CLIENT_INTAKE: dict[str, Any] = {
    "id": "client-intake-v1",
    "slug": "client-intake",
    "name": "Client Intake & Eligibility Assessment",
    "description": "Initial intake, household and eligibility screening for new clients.",
    "version": 1,
    "category": "CLIENT",
    "multi_step": True,
    "autosave": True,
    "allow_drafts": True,
    "requires_signature": True,
    "audit_level": "sensitive",
    "allowed_roles": _STAFF_INTAKE_ROLES,
    "sections": [
        {"id": "identity", "title": "Client Information", "fields": ["firstName", "lastName", "dateOfBirth", "ssn", "phone", "email", "address"]},
        {"id": "needs", "title": "Needs Assessment", "fields": ["servicesNeeded", "urgency", "urgencyDetails", "householdSize", "monthlyIncome", "hasIncomeProof", "incomeProof"]},
        {"id": "consent", "title": "Consent", "fields": ["consentToServices", "clientSignature"]},
    ],
    "fields": [
        {"id": "firstName", "type": "text", "label": "First name", "required": True, "max_length": 80, "width": "half", "section": "identity"},
        {"id": "lastName", "type": "text", "label": "Last name", "required": True, "max_length": 80, "width": "half", "section": "identity"},
        {"id": "dateOfBirth", "type": "date", "label": "Date of birth", "required": True, "width": "half", "section": "identity"},
        {"id": "ssn", "type": "ssn", "label": "Social Security Number", "help": "Format XXX-XX-XXXX", "sensitive": True, "width": "half", "section": "identity"},
        {"id": "phone", "type": "phone", "label": "Phone", "required": True, "width": "half", "section": "identity"},
        {"id": "email", "type": "email", "label": "Email", "width": "half", "section": "identity"},
        {"id": "address", "type": "address", "label": "Current address", "help": _US_STATE_HINT, "section": "identity"},
        {
            "id": "servicesNeeded",
            "type": "multiselect",
            "label": "Services needed",
            "required": True,
            "section": "needs",
            "options": [
                {"value": "emergency_housing", "label": "Emergency housing"},
                {"value": "food_assistance", "label": "Food assistance"},
                {"value": "case_management", "label": "Case management"},
                {"value": "legal_aid", "label": "Legal aid"},
                {"value": "employment", "label": "Employment support"},
            ],
        },
        {
            "id": "urgency",
            "type": "radio",
            "label": "Urgency",
            "required": True,
            "section": "needs",
            "options": [
                {"value": "routine", "label": "Routine"},
                {"value": "urgent", "label": "Urgent"},
                {"value": "emergency", "label": "Emergency"},
            ],
        },
        {
            "id": "urgencyDetails",
            "type": "textarea",
            "label": "Describe the emergency",
            "required": True,
            "max_length": 2000,
            "section": "needs",
            "depends_on": [{"field": "urgency", "operator": "equals", "value": "emergency"}],
        },
        {"id": "householdSize", "type": "number", "label": "Household size", "required": True, "min": 1, "max": 20, "width": "third", "section": "needs"},
        {"id": "monthlyIncome", "type": "currency", "label": "Monthly household income", "min": 0, "width": "third", "section": "needs"},
        {"id": "hasIncomeProof", "type": "checkbox", "label": "Client can provide proof of income", "section": "needs"},
        {
            "id": "incomeProof",
            "type": "file",
            "label": "Proof of income",
            "accept": "application/pdf,image/*",
            "max_file_size": 10 * 1024 * 1024,
            "section": "needs",
            "depends_on": [{"field": "hasIncomeProof", "operator": "equals", "value": True}],
        },
        {"id": "consentToServices", "type": "checkbox", "label": "I consent to receive services", "required": True, "section": "consent"},
        {"id": "clientSignature", "type": "signature", "label": "Client signature", "required": True, "section": "consent"},
    ],
    "escalations": [
        {
            "condition": {"field": "urgency", "operator": "equals", "value": "emergency"},
            "action": "notify",
            "target": "PROGRAM_DIRECTOR",
            "message": "Emergency intake submitted",
        },
        {
            "condition": {"field": "servicesNeeded", "operator": "contains", "value": "emergency_housing"},
            "action": "assign",
            "target": "HOUSING_SPECIALIST",
        },
    ],
}

HIPAA_CONSENT: dict[str, Any] = {
    "id": "hipaa-consent-v1",
    "slug": "hipaa-consent",
    "name": "Release of Information / HIPAA Consent",
    "version": 1,
    "category": "COMPLIANCE",
    "requires_signature": True,
    "allow_drafts": False,
    "audit_level": "sensitive",
    "allowed_roles": _STAFF_INTAKE_ROLES + ["CLIENT"],
    "fields": [
        {"id": "clientName", "type": "text", "label": "Client name", "required": True},
        {"id": "recipientOrganization", "type": "text", "label": "Release information to", "required": True},
        {
            "id": "informationTypes",
            "type": "multiselect",
            "label": "Information to release",
            "required": True,
            "options": [
                {"value": "medical", "label": "Medical records"},
                {"value": "mental_health", "label": "Mental health records"},
                {"value": "substance_use", "label": "Substance use treatment"},
                {"value": "case_notes", "label": "Case notes"},
            ],
        },
        {"id": "expirationDate", "type": "date", "label": "Authorization expires", "required": True},
        {"id": "clientSignature", "type": "signature", "label": "Client signature", "required": True},
    ],
}

INCIDENT_REPORT: dict[str, Any] = {
    "id": "incident-report-v1",
    "slug": "incident-report",
    "name": "Incident Report",
    "version": 1,
    "category": "COMPLIANCE",
    "autosave": True,
    "allow_drafts": True,
    "audit_level": "detailed",
    "allowed_roles": ["SUPER_ADMIN", "ADMIN", "PROGRAM_DIRECTOR", "SUPERVISOR", "CASE_WORKER", "HOUSING_SPECIALIST", "RECEPTIONIST"],
    "fields": [
        {"id": "incidentDate", "type": "date", "label": "Date of incident", "required": True, "width": "half"},
        {"id": "location", "type": "text", "label": "Location", "required": True, "width": "half"},
        {
            "id": "severity",
            "type": "select",
            "label": "Severity",
            "required": True,
            "options": [
                {"value": "low", "label": "Low"},
                {"value": "medium", "label": "Medium"},
                {"value": "high", "label": "High"},
                {"value": "critical", "label": "Critical"},
            ],
        },
        {"id": "description", "type": "textarea", "label": "What happened?", "required": True, "min_length": 20, "max_length": 5000},
        {"id": "injuries", "type": "checkbox", "label": "Were there injuries?"},
        {
            "id": "injuryDetails",
            "type": "textarea",
            "label": "Describe injuries",
            "required": True,
            "depends_on": [{"field": "injuries", "operator": "equals", "value": True}],
        },
        {"id": "evidence", "type": "file", "label": "Photos or documents", "max_file_size": 5 * 1024 * 1024},
    ],
    "escalations": [
        {
            "condition": {"field": "severity", "operator": "equals", "value": "critical"},
            "action": "notify",
            "target": "COO",
            "message": "Critical incident reported",
        },
        {"condition": {"field": "injuries", "operator": "equals", "value": True}, "action": "flag", "target": "injury"},
    ],
}

VOLUNTEER_APPLICATION: dict[str, Any] = {
    "id": "volunteer-application-v1",
    "slug": "volunteer-application",
    "name": "Volunteer Application & Waiver",
    "version": 1,
    "category": "HR",
    "multi_step": True,
    "autosave": True,
    "allow_drafts": True,
    "requires_signature": True,
    "audit_level": "basic",
    "allowed_roles": ["SUPER_ADMIN", "ADMIN", "HR_MANAGER", "VOLUNTEER"],
    "sections": [
        {"id": "contact", "title": "Contact", "fields": ["firstName", "lastName", "phone", "email"]},
        {"id": "interests", "title": "Interests", "fields": ["interests", "availability", "experienceRating", "referralScore"]},
        {"id": "waiver", "title": "Waiver", "fields": ["waiverAccepted", "volunteerSignature"]},
    ],
    "fields": [
        {"id": "firstName", "type": "text", "label": "First name", "required": True, "section": "contact"},
        {"id": "lastName", "type": "text", "label": "Last name", "required": True, "section": "contact"},
        {"id": "phone", "type": "phone", "label": "Phone", "required": True, "section": "contact"},
        {"id": "email", "type": "email", "label": "Email", "required": True, "section": "contact"},
        {
            "id": "interests",
            "type": "multiselect",
            "label": "Areas of interest",
            "required": True,
            "section": "interests",
            "options": [
                {"value": "direct_service", "label": "Direct service"},
                {"value": "food_service", "label": "Food service"},
                {"value": "administrative", "label": "Administrative"},
                {"value": "events", "label": "Events"},
            ],
        },
        {
            "id": "availability",
            "type": "multiselect",
            "label": "Availability",
            "section": "interests",
            "options": [
                {"value": "weekday_morning", "label": "Weekday mornings"},
                {"value": "weekday_evening", "label": "Weekday evenings"},
                {"value": "weekend_morning", "label": "Weekend mornings"},
                {"value": "weekend_afternoon", "label": "Weekend afternoons"},
            ],
        },
        {"id": "experienceRating", "type": "rating", "label": "Prior volunteering experience", "section": "interests"},
        {"id": "referralScore", "type": "nps", "label": "How likely are you to recommend us?", "section": "interests"},
        {"id": "waiverAccepted", "type": "checkbox", "label": "I accept the liability waiver", "required": True, "section": "waiver"},
        {"id": "volunteerSignature", "type": "signature", "label": "Signature", "required": True, "section": "waiver"},
    ],
}

FORM_TEMPLATES: dict[str, FormSchema] = {
    raw["slug"]: FormSchema.model_validate(raw)
    for raw in (CLIENT_INTAKE, HIPAA_CONSENT, INCIDENT_REPORT, VOLUNTEER_APPLICATION)
}


def get_all_templates() -> list[FormSchema]:
    return list(FORM_TEMPLATES.values())


def get_template_by_slug(slug: str) -> FormSchema | None:
    return FORM_TEMPLATES.get(str(slug or "").strip())


def get_templates_by_category(category: str) -> list[FormSchema]:
    wanted = str(category or "").strip().upper()
    return [schema for schema in get_all_templates() if schema.category == wanted]


def get_templates_for_role(user_roles: Iterable[str], templates: Iterable[FormSchema] | None = None) -> list[FormSchema]:
    roles = list(user_roles)
    pool = get_all_templates() if templates is None else list(templates)
    return [schema for schema in pool if can_user_access_form(schema, roles)]


def validate_template(raw: Any) -> tuple[bool, list[str]]:
    """Authoring check for a template definition.

    Returns ``(is_valid, errors)``. Structural problems come from the schema
    model; on top of that a template that requires a signature must carry a
    required signature field.
    """
    if not isinstance(raw, dict):
        return False, ["Template must be an object"]
    errors: list[str] = []
    for key, message in (
        ("slug", "Template must have a slug"),
        ("name", "Template must have a name"),
        ("category", "Template must have a category"),
    ):
        if not raw.get(key):
            errors.append(message)
    if not isinstance(raw.get("fields"), list):
        errors.append("Template must have fields array")
    if not isinstance(raw.get("allowed_roles"), list):
        errors.append("Template must specify allowed roles")
    if raw.get("category") and raw["category"] not in FORM_CATEGORIES:
        errors.append(f"Unknown category {raw['category']}")
    if errors:
        return False, errors

    try:
        schema = FormSchema.model_validate(raw)
    except ValidationError as exc:
        return False, [str(item.get("msg") or "Invalid template") for item in exc.errors()]

    if schema.requires_signature:
        signed = [f for f in schema.fields if f.type == FieldType.SIGNATURE and f.required]
        if not signed:
            errors.append("Template requires a signature but has no required signature field")
    for field in schema.fields:
        if field.sensitive and not field.is_encryptable:
            errors.append(f"Field {field.id} is marked sensitive but its type is never encrypted")
    return not errors, errors
