"""Create category hierarchy and product catalog tables.

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _is_postgres(bind) -> bool:
    return str(getattr(getattr(bind, "dialect", None), "name", "") or "").lower().startswith("postgres")


def _now_default(bind):
    return sa.text("NOW()") if _is_postgres(bind) else sa.text("CURRENT_TIMESTAMP")


def _true_default(bind):
    return sa.text("TRUE") if _is_postgres(bind) else sa.text("1")


def upgrade() -> None:
    bind = op.get_bind()
    now_default = _now_default(bind)

    op.create_table(
        "cad_categories",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("code", sa.Text(), nullable=True),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("level", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("path", sa.Text(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=_true_default(bind)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=now_default),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=now_default),
        # Deferred so a forced delete can drop a node before re-parenting its children.
        sa.ForeignKeyConstraint(
            ["parent_id"],
            ["cad_categories.id"],
            name="fk_cad_categories_parent",
            deferrable=True,
            initially="DEFERRED",
        ),
    )
    op.create_index("ix_cad_categories_parent", "cad_categories", ["parent_id"], unique=False)
    op.create_index("ix_cad_categories_active", "cad_categories", ["active"], unique=False)
    # Plain (parent_id, name) would let NULL parents repeat names at the root level.
    op.execute(
        "CREATE UNIQUE INDEX ux_cad_categories_parent_name "
        "ON cad_categories (COALESCE(parent_id, 0), name)"
    )

    op.create_table(
        "cad_products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("sku", sa.Text(), nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=now_default),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=now_default),
        sa.ForeignKeyConstraint(["category_id"], ["cad_categories.id"], name="fk_cad_products_category"),
    )
    op.create_index("ix_cad_products_category", "cad_products", ["category_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_cad_products_category", table_name="cad_products")
    op.drop_table("cad_products")

    op.execute("DROP INDEX IF EXISTS ux_cad_categories_parent_name")
    op.drop_index("ix_cad_categories_active", table_name="cad_categories")
    op.drop_index("ix_cad_categories_parent", table_name="cad_categories")
    op.drop_table("cad_categories")
