"""Add identity application and audit event tables

Revision ID: 3c9e1a7d5b20
Revises:
Create Date: 2026-09-28 10:15:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3c9e1a7d5b20"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "identity_application",
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("document_number", sa.String(length=64), nullable=True),
        sa.Column("nationality", sa.String(length=128), nullable=True),
        sa.Column("application_id", sa.String(length=32), nullable=False),
        sa.Column("subject_id", sa.String(length=255), nullable=False),
        sa.Column("credential_type", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("document_type", sa.String(length=64), nullable=False),
        sa.Column("document_image_key", sa.String(length=1024), nullable=True),
        sa.Column("selfie_image_key", sa.String(length=1024), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("requires_manual_review", sa.Boolean(), nullable=False),
        sa.Column("face_id", sa.String(length=128), nullable=True),
        sa.Column("verification_warnings", sa.JSON(), nullable=False),
        sa.Column("uin", sa.String(length=32), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(length=1000), nullable=True),
        sa.Column("reviewed_by", sa.String(length=255), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("issuance_pending", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("application_id"),
        sa.UniqueConstraint(
            "subject_id",
            "credential_type",
            name="uq_identity_application_subject_credential",
        ),
        sa.UniqueConstraint("uin"),
    )
    op.create_index(
        op.f("ix_identity_application_subject_id"),
        "identity_application",
        ["subject_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_identity_application_status"),
        "identity_application",
        ["status"],
        unique=False,
    )

    op.create_table(
        "application_audit_event",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("application_id", sa.String(length=32), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("reason", sa.String(length=1000), nullable=True),
        sa.Column("actor", sa.String(length=255), nullable=True),
        sa.Column("event_metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["application_id"],
            ["identity_application.application_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_application_audit_event_application_id"),
        "application_audit_event",
        ["application_id"],
        unique=False,
    )


def downgrade():
    op.drop_index(
        op.f("ix_application_audit_event_application_id"),
        table_name="application_audit_event",
    )
    op.drop_table("application_audit_event")
    op.drop_index(op.f("ix_identity_application_status"), table_name="identity_application")
    op.drop_index(
        op.f("ix_identity_application_subject_id"), table_name="identity_application"
    )
    op.drop_table("identity_application")
