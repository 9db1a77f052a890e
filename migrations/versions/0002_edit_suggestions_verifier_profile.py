"""edit_suggestions_verifier_profile

Edit suggestions for verified incidents; verifier profile columns on users.

Revision ID: 0002_edit_suggestions_verifier_profile
Revises: 0001_casework_schema
Create Date: 2026-10-19 15:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002_edit_suggestions_verifier_profile"
down_revision = "0001_casework_schema"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("users") as batch_op:
        batch_op.add_column(sa.Column("verifier_since", sa.DateTime(), nullable=True))
        batch_op.add_column(sa.Column("verifier_specialties", sa.JSON(), nullable=True))
        batch_op.add_column(sa.Column("verifier_notes", sa.Text(), nullable=True))

    op.create_table(
        "edit_suggestions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("incident_id", sa.Integer(), sa.ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("suggested_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("field_name", sa.String(length=100), nullable=False),
        sa.Column("current_value", sa.JSON(), nullable=True),
        sa.Column("suggested_value", sa.JSON(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("first_reviewed_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("first_reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("first_review_notes", sa.Text(), nullable=True),
        sa.Column("first_review_decision", sa.String(length=10), nullable=True),
        sa.Column("second_reviewed_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("second_reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("second_review_notes", sa.Text(), nullable=True),
        sa.Column("applied_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_edit_suggestions_incident_id", "edit_suggestions", ["incident_id"])
    op.create_index("idx_edit_suggestions_incident_status", "edit_suggestions", ["incident_id", "status"])


def downgrade():
    op.drop_table("edit_suggestions")
    with op.batch_alter_table("users") as batch_op:
        batch_op.drop_column("verifier_notes")
        batch_op.drop_column("verifier_specialties")
        batch_op.drop_column("verifier_since")
