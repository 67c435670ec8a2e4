"""Add credential holder table

Revision ID: 9f2b6d4e8a11
Revises: 3c9e1a7d5b20
Create Date: 2026-10-02 14:40:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "9f2b6d4e8a11"
down_revision = "3c9e1a7d5b20"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "credential_holder",
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("document_number", sa.String(length=64), nullable=True),
        sa.Column("nationality", sa.String(length=128), nullable=True),
        sa.Column("uin", sa.String(length=32), nullable=False),
        sa.Column("subject_id", sa.String(length=255), nullable=False),
        sa.Column("application_id", sa.String(length=32), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("status_reason", sa.String(length=1000), nullable=True),
        sa.Column("face_id", sa.String(length=128), nullable=True),
        sa.Column("document_image_key", sa.String(length=1024), nullable=True),
        sa.Column("photo_image_key", sa.String(length=1024), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("uin"),
    )
    op.create_index(
        op.f("ix_credential_holder_subject_id"),
        "credential_holder",
        ["subject_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_credential_holder_application_id"),
        "credential_holder",
        ["application_id"],
        unique=False,
    )


def downgrade():
    op.drop_index(op.f("ix_credential_holder_application_id"), table_name="credential_holder")
    op.drop_index(op.f("ix_credential_holder_subject_id"), table_name="credential_holder")
    op.drop_table("credential_holder")
