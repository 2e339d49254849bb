"""admin-managed consultation terms

Revision ID: 0002_system_settings
Revises: 0001_initial_schema
Create Date: 2026-10-20 10:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002_system_settings"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "system_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("consultation_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("consultation_duration", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("updated_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("consultation_price >= 0", name="ck_system_settings_price"),
        sa.CheckConstraint("consultation_duration > 0", name="ck_system_settings_duration"),
    )


def downgrade() -> None:
    op.drop_table("system_settings")
