"""users, categories and charges

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("credential_ref", sa.String(length=64)),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "total_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "total_allotment_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("allotment_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "allotment_cents >= 0", name="ck_categories_allotment_positive"
        ),
    )
    op.create_index("ix_categories_user", "categories", ["user_id"])

    op.create_table(
        "charges",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "category_id",
            sa.Uuid(),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_charges_amount_positive"),
    )
    op.create_index(
        "ix_charges_user_category", "charges", ["user_id", "category_id"]
    )
    op.create_index("ix_charges_user_date", "charges", ["user_id", "date"])


def downgrade():
    op.drop_index("ix_charges_user_date", table_name="charges")
    op.drop_index("ix_charges_user_category", table_name="charges")
    op.drop_table("charges")
    op.drop_index("ix_categories_user", table_name="categories")
    op.drop_table("categories")
    op.drop_table("users")
