"""form engine tables
Revision ID: 0001_forms
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_forms"
down_revision = None
branch_labels = None
depends_on = None


def _base_columns():
    return [
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    op.create_table(
        "form_templates",
        *_base_columns(),
        sa.Column("template_key", sa.String(length=120), nullable=False, unique=True),
        sa.Column("slug", sa.String(length=120), nullable=False, unique=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=40), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("schema", sa.JSON(), nullable=False),
    )
    op.create_index("ix_form_templates_slug", "form_templates", ["slug"])
    op.create_index("ix_form_templates_category", "form_templates", ["category"])

    op.create_table(
        "form_responses",
        *_base_columns(),
        sa.Column("template_id", sa.Uuid(as_uuid=True), sa.ForeignKey("form_templates.id"), nullable=False),
        sa.Column("template_slug", sa.String(length=120), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("signatures", sa.JSON(), nullable=False),
        sa.Column("flags", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.String(length=200), nullable=False),
    )
    op.create_index("ix_form_responses_template_id", "form_responses", ["template_id"])
    op.create_index("ix_form_responses_template_slug", "form_responses", ["template_slug"])
    op.create_index("ix_form_responses_status", "form_responses", ["status"])
    op.create_index("ix_form_responses_created_by", "form_responses", ["created_by"])

    op.create_table(
        "form_uploads",
        *_base_columns(),
        sa.Column("response_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("field_id", sa.String(length=120), nullable=False),
        sa.Column("file_name", sa.String(length=300), nullable=False),
        sa.Column("mime_type", sa.String(length=150), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("s3_key", sa.String(length=500), nullable=False),
        sa.Column("uploaded_by", sa.String(length=200), nullable=True),
    )
    op.create_index("ix_form_uploads_response_id", "form_uploads", ["response_id"])

    op.create_table(
        "form_notifications",
        *_base_columns(),
        sa.Column("response_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("template_slug", sa.String(length=120), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("target", sa.String(length=200), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dedupe_key", sa.String(length=255), nullable=True, unique=True),
    )
    op.create_index("ix_form_notifications_response_id", "form_notifications", ["response_id"])
    op.create_index("ix_form_notifications_template_slug", "form_notifications", ["template_slug"])
    op.create_index("ix_form_notifications_action", "form_notifications", ["action"])
    op.create_index("ix_form_notifications_target", "form_notifications", ["target"])
    op.create_index("ix_form_notifications_is_read", "form_notifications", ["is_read"])

    op.create_table(
        "form_audit_log",
        *_base_columns(),
        sa.Column("scope", sa.String(length=50), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("target_type", sa.String(length=50), nullable=False),
        sa.Column("target_id", sa.String(length=80), nullable=False),
        sa.Column("target_label", sa.String(length=200), nullable=True),
        sa.Column("actor_identity", sa.String(length=200), nullable=False),
        sa.Column("actor_roles", sa.JSON(), nullable=False),
        sa.Column("event_ts", sa.String(length=40), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("prev_hash", sa.String(length=64), nullable=False),
        sa.Column("hash", sa.String(length=64), nullable=False, unique=True),
    )
    op.create_index("ix_form_audit_log_action", "form_audit_log", ["action"])
    op.create_index("ix_form_audit_log_target_id", "form_audit_log", ["target_id"])
    op.create_index("ix_form_audit_log_actor_identity", "form_audit_log", ["actor_identity"])


def downgrade():
    op.drop_table("form_audit_log")
    op.drop_table("form_notifications")
    op.drop_table("form_uploads")
    op.drop_table("form_responses")
    op.drop_table("form_templates")
