from __future__ import annotations

from typing import Dict, Sequence

from app.domain.ports import ProductCatalog
from app.infrastructure.repositories.base import BaseRepository


class ProductCatalogRepository(BaseRepository, ProductCatalog):
    table_name = "cad_products"

    def create(self, db, *, name: str, sku: str | None = None, category_id: int | None = None) -> int:
        cursor = db.execute(
            """
            INSERT INTO cad_products (name, sku, category_id)
            VALUES (?, ?, ?)
            RETURNING id
            """,
            (name, sku, category_id),
        )
        return self.returned_id(cursor.fetchone())

    def get_by_id(self, db, product_id: int) -> dict | None:
        row = db.execute(
            "SELECT id, name, sku, category_id FROM cad_products WHERE id = ? LIMIT 1",
            (product_id,),
        ).fetchone()
        return dict(row) if row else None

    def count_by_category(self, db, category_id: int) -> int:
        row = db.execute(
            "SELECT COUNT(*) AS total FROM cad_products WHERE category_id = ?",
            (category_id,),
        ).fetchone()
        return self.scalar(row)

    def counts_by_category(self, db, category_ids: Sequence[int] | None = None) -> Dict[int, int]:
        sql = "SELECT category_id, COUNT(*) AS total FROM cad_products WHERE category_id IS NOT NULL"
        params: tuple = ()
        if category_ids is not None:
            if not category_ids:
                return {}
            sql += f" AND category_id IN ({self.placeholders(category_ids)})"
            params = tuple(category_ids)
        rows = db.execute(f"{sql} GROUP BY category_id", params).fetchall()
        return {int(row["category_id"]): int(row["total"]) for row in rows}

    def clear_category(self, db, category_id: int) -> int:
        cursor = db.execute(
            """
            UPDATE cad_products
            SET category_id = NULL, updated_at = CURRENT_TIMESTAMP
            WHERE category_id = ?
            """,
            (category_id,),
        )
        return int(cursor.rowcount or 0)
