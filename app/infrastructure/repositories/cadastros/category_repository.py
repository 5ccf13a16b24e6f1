from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

from app.db import integrity_errors, is_unique_violation
from app.domain.contracts import CategoryListInput
from app.domain.ports import CategoryStore
from app.errors import ConflictError
from app.infrastructure.repositories.base import BaseRepository


_COLUMNS = "c.id, c.name, c.description, c.code, c.parent_id, c.level, c.path, c.active, c.created_at, c.updated_at"

_ANNOTATED_SELECT = f"""
    SELECT
        {_COLUMNS},
        p.name AS parent_name,
        (SELECT COUNT(*) FROM cad_categories ch WHERE ch.parent_id = c.id) AS child_count,
        (SELECT COUNT(*) FROM cad_products pr WHERE pr.category_id = c.id) AS product_count
    FROM cad_categories c
    LEFT JOIN cad_categories p ON p.id = c.parent_id
"""

_UPDATABLE_FIELDS = {"name", "description", "code", "parent_id", "level", "path", "active"}


def _like_pattern(term: str) -> str:
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class CategoryRepository(BaseRepository, CategoryStore):
    table_name = "cad_categories"

    def transaction(self, db):
        return db.transaction()

    def _normalize(self, row: Any) -> dict:
        data = dict(row)
        data["active"] = bool(data.get("active"))
        for key in ("level", "child_count", "product_count"):
            if key in data and data[key] is not None:
                data[key] = int(data[key])
        for key in ("created_at", "updated_at"):
            if key in data:
                data[key] = self.iso_timestamp(data[key])
        return data

    def _conflict(self, exc: Exception, *, name: str | None, parent_id: int | None) -> ConflictError:
        return ConflictError(
            code="category_name_conflict",
            details=str(exc),
            payload={"field": "name", "name": name, "parent_id": parent_id},
        )

    def get_by_id(self, db, category_id: int) -> dict | None:
        row = db.execute(
            f"SELECT {_COLUMNS} FROM cad_categories c WHERE c.id = ? LIMIT 1",
            (category_id,),
        ).fetchone()
        return self._normalize(row) if row else None

    def get_annotated(self, db, category_id: int) -> dict | None:
        row = db.execute(f"{_ANNOTATED_SELECT} WHERE c.id = ? LIMIT 1", (category_id,)).fetchone()
        return self._normalize(row) if row else None

    def find_sibling_by_name(
        self,
        db,
        *,
        name: str,
        parent_id: int | None,
        exclude_id: int | None = None,
    ) -> dict | None:
        sql = f"SELECT {_COLUMNS} FROM cad_categories c WHERE c.name = ?"
        params: List[Any] = [name]
        if parent_id is None:
            sql += " AND c.parent_id IS NULL"
        else:
            sql += " AND c.parent_id = ?"
            params.append(parent_id)
        if exclude_id is not None:
            sql += " AND c.id <> ?"
            params.append(exclude_id)
        row = db.execute(f"{sql} LIMIT 1", tuple(params)).fetchone()
        return self._normalize(row) if row else None

    def insert(
        self,
        db,
        *,
        name: str,
        description: str | None,
        code: str | None,
        parent_id: int | None,
        level: int,
        path: str,
        active: bool,
    ) -> int:
        try:
            cursor = db.execute(
                """
                INSERT INTO cad_categories (name, description, code, parent_id, level, path, active)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                (name, description, code, parent_id, level, path, bool(active)),
            )
            return self.returned_id(cursor.fetchone())
        except integrity_errors() as exc:
            if is_unique_violation(exc):
                raise self._conflict(exc, name=name, parent_id=parent_id) from exc
            raise

    def update_fields(self, db, category_id: int, fields: Dict[str, object]) -> None:
        fields = {key: value for key, value in fields.items() if key in _UPDATABLE_FIELDS}
        if not fields:
            return
        if "active" in fields:
            fields["active"] = bool(fields["active"])
        updates = [f"{key} = ?" for key in fields.keys()]
        params = list(fields.values())
        params.append(category_id)
        try:
            db.execute(
                f"""
                UPDATE cad_categories
                SET {", ".join(updates)}, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                tuple(params),
            )
        except integrity_errors() as exc:
            if is_unique_violation(exc):
                raise self._conflict(
                    exc,
                    name=fields.get("name"),
                    parent_id=fields.get("parent_id"),
                ) from exc
            raise

    def delete(self, db, category_id: int) -> None:
        db.execute("DELETE FROM cad_categories WHERE id = ?", (category_id,))

    def list_children(self, db, parent_id: int) -> List[dict]:
        rows = db.execute(
            f"SELECT {_COLUMNS} FROM cad_categories c WHERE c.parent_id = ? ORDER BY c.name, c.id",
            (parent_id,),
        ).fetchall()
        return [self._normalize(row) for row in rows]

    def list_child_ids(self, db, parent_id: int) -> List[int]:
        rows = db.execute(
            "SELECT id FROM cad_categories WHERE parent_id = ? ORDER BY id",
            (parent_id,),
        ).fetchall()
        return [int(row["id"]) for row in rows]

    def count_children(self, db, category_id: int) -> int:
        row = db.execute(
            "SELECT COUNT(*) AS total FROM cad_categories WHERE parent_id = ?",
            (category_id,),
        ).fetchone()
        return self.scalar(row)

    def reparent_children(self, db, category_id: int, new_parent_id: int | None) -> int:
        cursor = db.execute(
            """
            UPDATE cad_categories
            SET parent_id = ?, updated_at = CURRENT_TIMESTAMP
            WHERE parent_id = ?
            """,
            (new_parent_id, category_id),
        )
        return int(cursor.rowcount or 0)

    def _filters(self, list_input: CategoryListInput) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if list_input.search:
            pattern = _like_pattern(list_input.search)
            clauses.append(
                "(LOWER(c.name) LIKE ? ESCAPE '\\' "
                "OR LOWER(COALESCE(c.description, '')) LIKE ? ESCAPE '\\' "
                "OR LOWER(COALESCE(c.code, '')) LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])
        if list_input.active is not None:
            clauses.append("c.active = ?")
            params.append(bool(list_input.active))
        if list_input.parent_id is not None:
            clauses.append("c.parent_id = ?")
            params.append(list_input.parent_id)
        if list_input.level is not None:
            clauses.append("c.level >= ?" if list_input.include_deeper_levels else "c.level = ?")
            params.append(list_input.level)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def list_page(self, db, list_input: CategoryListInput) -> Tuple[List[dict], int]:
        where, params = self._filters(list_input)
        total_row = db.execute(
            f"SELECT COUNT(*) AS total FROM cad_categories c{where}",
            tuple(params),
        ).fetchone()
        total = self.scalar(total_row)

        direction = "DESC" if list_input.order == "desc" else "ASC"
        rows = db.execute(
            f"""
            {_ANNOTATED_SELECT}
            {where}
            ORDER BY c.{list_input.sort} {direction}, c.id ASC
            LIMIT ? OFFSET ?
            """,
            (*params, list_input.page_size, list_input.offset),
        ).fetchall()
        return [self._normalize(row) for row in rows], total

    def list_active(self, db) -> List[dict]:
        rows = db.execute(
            f"SELECT {_COLUMNS} FROM cad_categories c WHERE c.active = ? ORDER BY c.name, c.id",
            (True,),
        ).fetchall()
        return [self._normalize(row) for row in rows]

    def list_for_select(self, db, *, search: str | None, exclude_ids: Sequence[int]) -> List[dict]:
        sql = "SELECT c.id, c.name, c.level, c.path FROM cad_categories c WHERE c.active = ?"
        params: List[Any] = [True]
        if search:
            sql += " AND LOWER(c.name) LIKE ? ESCAPE '\\'"
            params.append(_like_pattern(search))
        if exclude_ids:
            sql += f" AND c.id NOT IN ({self.placeholders(exclude_ids)})"
            params.extend(exclude_ids)
        rows = db.execute(f"{sql} ORDER BY c.path, c.id", tuple(params)).fetchall()
        return [
            {
                "value": int(row["id"]),
                "label": row["path"],
                "name": row["name"],
                "level": int(row["level"]),
            }
            for row in rows
        ]

    def existing_ids(self, db, category_ids: Sequence[int]) -> List[int]:
        if not category_ids:
            return []
        rows = db.execute(
            f"SELECT id FROM cad_categories WHERE id IN ({self.placeholders(category_ids)})",
            tuple(category_ids),
        ).fetchall()
        found = {int(row["id"]) for row in rows}
        return [category_id for category_id in category_ids if category_id in found]

    def set_active_many(self, db, category_ids: Sequence[int], active: bool) -> int:
        if not category_ids:
            return 0
        cursor = db.execute(
            f"""
            UPDATE cad_categories
            SET active = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id IN ({self.placeholders(category_ids)})
            """,
            (bool(active), *category_ids),
        )
        return int(cursor.rowcount or 0)

    def stats(self, db) -> dict:
        total = self.scalar(db.execute("SELECT COUNT(*) AS total FROM cad_categories").fetchone())
        active = self.scalar(
            db.execute("SELECT COUNT(*) AS total FROM cad_categories WHERE active = ?", (True,)).fetchone()
        )
        roots = self.scalar(
            db.execute("SELECT COUNT(*) AS total FROM cad_categories WHERE parent_id IS NULL").fetchone()
        )
        with_products = self.scalar(
            db.execute(
                """
                SELECT COUNT(*) AS total
                FROM cad_categories c
                WHERE EXISTS (SELECT 1 FROM cad_products pr WHERE pr.category_id = c.id)
                """
            ).fetchone()
        )
        level_rows = db.execute(
            """
            SELECT level, COUNT(*) AS total
            FROM cad_categories
            GROUP BY level
            ORDER BY level
            """
        ).fetchall()
        return {
            "total": total,
            "active": active,
            "inactive": total - active,
            "roots": roots,
            "with_products": with_products,
            "by_level": [{"level": int(row["level"]), "count": int(row["total"])} for row in level_rows],
        }
