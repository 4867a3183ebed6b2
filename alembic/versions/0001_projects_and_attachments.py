"""projects, attachments, audit log + attachment immutability trigger

Revision ID: 0001_projects_and_attachments
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_projects_and_attachments"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "projects",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'open'")),
        sa.Column("favorite", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("tags_json", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_projects_organization_id", "projects", ["organization_id"])
    op.create_index("ix_projects_org_created", "projects", ["organization_id", "created_at"])

    op.create_table(
        "attachments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("project_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("original_filename", sa.String(length=255), nullable=False),
        sa.Column("media_type", sa.String(length=127), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("sha256", sa.String(length=64), nullable=False),
        sa.Column("storage_ref", sa.String(length=512), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'committed'")),
        sa.Column("uploaded_by", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("storage_ref", name="uq_attachments_storage_ref"),
        sa.CheckConstraint("size_bytes > 0", name="ck_attachments_size_positive"),
    )
    op.create_index("ix_attachments_project_created", "attachments", ["project_id", "created_at"])

    op.create_table(
        "audit_log_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),

        sa.Column("request_id", sa.String(length=128), nullable=False),
        sa.Column("route", sa.String(length=256), nullable=False),
        sa.Column("method", sa.String(length=16), nullable=False),

        sa.Column("actor_user_id", sa.String(length=128), nullable=False),
        sa.Column("actor_role", sa.String(length=64), nullable=False),

        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("project_id", postgresql.UUID(as_uuid=True), nullable=False),

        sa.Column("action", sa.String(length=96), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'ok'")),

        sa.Column("payload_hash", sa.String(length=128), nullable=False),
        sa.Column("payload_summary_json", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),

        sa.Column("ref_id", sa.String(length=128), nullable=True),
    )
    op.create_index("ix_audit_log_records_request_id", "audit_log_records", ["request_id"])
    op.create_index("ix_audit_scope", "audit_log_records", ["organization_id", "project_id"])
    op.create_index("ix_audit_action", "audit_log_records", ["action"])
    op.create_index("ix_audit_created", "audit_log_records", ["created_at"])

    # Committed attachment payload is write-once
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_attachment_payload_update()
        RETURNS trigger AS $$
        BEGIN
            IF NEW.project_id IS DISTINCT FROM OLD.project_id
               OR NEW.storage_ref IS DISTINCT FROM OLD.storage_ref
               OR NEW.size_bytes IS DISTINCT FROM OLD.size_bytes
               OR NEW.sha256 IS DISTINCT FROM OLD.sha256 THEN
                RAISE EXCEPTION 'Committed attachments are immutable.';
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        DROP TRIGGER IF EXISTS trg_prevent_attachment_payload_update ON attachments;
        CREATE TRIGGER trg_prevent_attachment_payload_update
        BEFORE UPDATE ON attachments
        FOR EACH ROW
        EXECUTE FUNCTION prevent_attachment_payload_update();
        """
    )

    # Audit log is append-only
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_audit_log_update()
        RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'Audit log records are append-only.';
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        DROP TRIGGER IF EXISTS trg_prevent_audit_log_update ON audit_log_records;
        CREATE TRIGGER trg_prevent_audit_log_update
        BEFORE UPDATE ON audit_log_records
        FOR EACH ROW
        EXECUTE FUNCTION prevent_audit_log_update();
        """
    )


def downgrade():
    op.execute("DROP TRIGGER IF EXISTS trg_prevent_audit_log_update ON audit_log_records;")
    op.execute("DROP FUNCTION IF EXISTS prevent_audit_log_update();")
    op.execute("DROP TRIGGER IF EXISTS trg_prevent_attachment_payload_update ON attachments;")
    op.execute("DROP FUNCTION IF EXISTS prevent_attachment_payload_update();")

    op.drop_index("ix_audit_created", table_name="audit_log_records")
    op.drop_index("ix_audit_action", table_name="audit_log_records")
    op.drop_index("ix_audit_scope", table_name="audit_log_records")
    op.drop_index("ix_audit_log_records_request_id", table_name="audit_log_records")
    op.drop_table("audit_log_records")

    op.drop_index("ix_attachments_project_created", table_name="attachments")
    op.drop_table("attachments")

    op.drop_index("ix_projects_org_created", table_name="projects")
    op.drop_index("ix_projects_organization_id", table_name="projects")
    op.drop_table("projects")
