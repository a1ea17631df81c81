from __future__ import annotations

from sqlalchemy.orm import Session

from caseforms.data.form_templates import get_all_templates
from caseforms.db.session import SessionLocal
from caseforms.models.form_template import FormTemplate
from caseforms.schemas.forms import FormSchema


def upsert_templates(db: Session, templates: list[FormSchema]) -> tuple[int, int]:
    """Store built-in templates; a stored row is replaced only by a newer version."""
    created = 0
    updated = 0

    for schema in templates:
        definition = schema.model_dump(mode="json")
        row = db.query(FormTemplate).filter(FormTemplate.slug == schema.slug).first()
        if row is None:
            db.add(
                FormTemplate(
                    template_key=schema.id,
                    slug=schema.slug,
                    name=schema.name,
                    description=schema.description,
                    category=schema.category,
                    version=schema.version,
                    schema=definition,
                )
            )
            created += 1
            continue

        if int(row.version or 0) >= schema.version and row.schema == definition:
            continue
        if int(row.version or 0) > schema.version:
            continue
        row.name = schema.name
        row.description = schema.description
        row.category = schema.category
        row.version = schema.version
        row.schema = definition
        db.add(row)
        updated += 1

    db.commit()
    return created, updated


def main() -> None:
    db = SessionLocal()
    try:
        created, updated = upsert_templates(db, get_all_templates())
        total = db.query(FormTemplate).count()
    finally:
        db.close()
    print(f"form templates upsert done: created={created}, updated={updated}, total={total}")


if __name__ == "__main__":
    main()
