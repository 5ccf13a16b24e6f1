"""In-memory implementations of the category and product ports for service tests."""

from __future__ import annotations

import contextlib
import copy
from typing import Dict, List, Sequence, Tuple

from app.domain.contracts import CategoryListInput
from app.domain.ports import CategoryStore, ProductCatalog
from app.errors import ConflictError


class MemoryBackend:
    def __init__(self) -> None:
        self.categories: Dict[int, dict] = {}
        self.products: Dict[int, dict] = {}
        self.next_id = 1
        self.clock = 0
        self._depth = 0

    def tick(self) -> str:
        self.clock += 1
        return f"2026-01-01T00:00:{self.clock:02d}Z"

    @contextlib.contextmanager
    def transaction(self):
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        snapshot = copy.deepcopy((self.categories, self.products, self.next_id))
        self._depth = 1
        try:
            yield self
        except BaseException:
            self.categories, self.products, self.next_id = snapshot
            raise
        finally:
            self._depth = 0


class InMemoryCategoryStore(CategoryStore):
    def __init__(self, backend: MemoryBackend | None = None) -> None:
        self.backend = backend or MemoryBackend()

    @property
    def rows(self) -> Dict[int, dict]:
        return self.backend.categories

    def transaction(self, db):
        return self.backend.transaction()

    def _check_unique(self, name: str, parent_id: int | None, exclude_id: int | None) -> None:
        for row in self.rows.values():
            if row["id"] != exclude_id and row["name"] == name and row["parent_id"] == parent_id:
                raise ConflictError(
                    code="category_name_conflict",
                    payload={"field": "name", "name": name, "parent_id": parent_id},
                )

    def _annotate(self, row: dict) -> dict:
        parent = self.rows.get(row["parent_id"]) if row["parent_id"] is not None else None
        return {
            **row,
            "parent_name": parent["name"] if parent else None,
            "child_count": self.count_children(None, row["id"]),
            "product_count": sum(1 for p in self.backend.products.values() if p["category_id"] == row["id"]),
        }

    def get_by_id(self, db, category_id: int) -> dict | None:
        row = self.rows.get(category_id)
        return dict(row) if row else None

    def get_annotated(self, db, category_id: int) -> dict | None:
        row = self.rows.get(category_id)
        return self._annotate(row) if row else None

    def find_sibling_by_name(self, db, *, name, parent_id, exclude_id=None) -> dict | None:
        for row in self.rows.values():
            if row["id"] != exclude_id and row["name"] == name and row["parent_id"] == parent_id:
                return dict(row)
        return None

    def insert(self, db, *, name, description, code, parent_id, level, path, active) -> int:
        self._check_unique(name, parent_id, None)
        category_id = self.backend.next_id
        self.backend.next_id += 1
        now = self.backend.tick()
        self.rows[category_id] = {
            "id": category_id,
            "name": name,
            "description": description,
            "code": code,
            "parent_id": parent_id,
            "level": level,
            "path": path,
            "active": bool(active),
            "created_at": now,
            "updated_at": now,
        }
        return category_id

    def update_fields(self, db, category_id: int, fields: Dict[str, object]) -> None:
        row = self.rows[category_id]
        if "name" in fields or "parent_id" in fields:
            self._check_unique(
                fields.get("name", row["name"]),
                fields.get("parent_id", row["parent_id"]),
                category_id,
            )
        row.update(fields)
        row["updated_at"] = self.backend.tick()

    def delete(self, db, category_id: int) -> None:
        self.rows.pop(category_id, None)

    def list_children(self, db, parent_id: int) -> List[dict]:
        children = [dict(row) for row in self.rows.values() if row["parent_id"] == parent_id]
        return sorted(children, key=lambda row: (row["name"], row["id"]))

    def list_child_ids(self, db, parent_id: int) -> List[int]:
        return sorted(row["id"] for row in self.rows.values() if row["parent_id"] == parent_id)

    def count_children(self, db, category_id: int) -> int:
        return sum(1 for row in self.rows.values() if row["parent_id"] == category_id)

    def reparent_children(self, db, category_id: int, new_parent_id: int | None) -> int:
        moved = 0
        for row in list(self.rows.values()):
            if row["parent_id"] == category_id:
                self._check_unique(row["name"], new_parent_id, row["id"])
                row["parent_id"] = new_parent_id
                moved += 1
        return moved

    def list_page(self, db, list_input: CategoryListInput) -> Tuple[List[dict], int]:
        rows = list(self.rows.values())
        if list_input.search:
            term = list_input.search.lower()
            rows = [
                row
                for row in rows
                if any(term in str(row.get(key) or "").lower() for key in ("name", "description", "code"))
            ]
        if list_input.active is not None:
            rows = [row for row in rows if row["active"] == list_input.active]
        if list_input.parent_id is not None:
            rows = [row for row in rows if row["parent_id"] == list_input.parent_id]
        if list_input.level is not None:
            if list_input.include_deeper_levels:
                rows = [row for row in rows if row["level"] >= list_input.level]
            else:
                rows = [row for row in rows if row["level"] == list_input.level]
        rows.sort(key=lambda row: row["id"])
        rows.sort(key=lambda row: str(row.get(list_input.sort) or ""), reverse=list_input.order == "desc")
        page = rows[list_input.offset : list_input.offset + list_input.page_size]
        return [self._annotate(row) for row in page], len(rows)

    def list_active(self, db) -> List[dict]:
        rows = [dict(row) for row in self.rows.values() if row["active"]]
        return sorted(rows, key=lambda row: (row["name"], row["id"]))

    def list_for_select(self, db, *, search, exclude_ids: Sequence[int]) -> List[dict]:
        rows = [row for row in self.rows.values() if row["active"] and row["id"] not in set(exclude_ids)]
        if search:
            rows = [row for row in rows if search.lower() in row["name"].lower()]
        rows.sort(key=lambda row: (row["path"], row["id"]))
        return [
            {"value": row["id"], "label": row["path"], "name": row["name"], "level": row["level"]}
            for row in rows
        ]

    def existing_ids(self, db, category_ids: Sequence[int]) -> List[int]:
        return [category_id for category_id in category_ids if category_id in self.rows]

    def set_active_many(self, db, category_ids: Sequence[int], active: bool) -> int:
        affected = 0
        for category_id in category_ids:
            row = self.rows.get(category_id)
            if row:
                row["active"] = bool(active)
                affected += 1
        return affected

    def stats(self, db) -> dict:
        rows = list(self.rows.values())
        active = sum(1 for row in rows if row["active"])
        levels: Dict[int, int] = {}
        for row in rows:
            levels[row["level"]] = levels.get(row["level"], 0) + 1
        used = {p["category_id"] for p in self.backend.products.values() if p["category_id"] is not None}
        return {
            "total": len(rows),
            "active": active,
            "inactive": len(rows) - active,
            "roots": sum(1 for row in rows if row["parent_id"] is None),
            "with_products": sum(1 for row in rows if row["id"] in used),
            "by_level": [{"level": level, "count": count} for level, count in sorted(levels.items())],
        }


class InMemoryProductCatalog(ProductCatalog):
    def __init__(self, backend: MemoryBackend) -> None:
        self.backend = backend

    def add(self, name: str, category_id: int | None) -> int:
        product_id = len(self.backend.products) + 1
        self.backend.products[product_id] = {"id": product_id, "name": name, "category_id": category_id}
        return product_id

    def category_of(self, product_id: int) -> int | None:
        return self.backend.products[product_id]["category_id"]

    def count_by_category(self, db, category_id: int) -> int:
        return sum(1 for p in self.backend.products.values() if p["category_id"] == category_id)

    def counts_by_category(self, db, category_ids=None) -> Dict[int, int]:
        counts: Dict[int, int] = {}
        for product in self.backend.products.values():
            category_id = product["category_id"]
            if category_id is None or (category_ids is not None and category_id not in category_ids):
                continue
            counts[category_id] = counts.get(category_id, 0) + 1
        return counts

    def clear_category(self, db, category_id: int) -> int:
        cleared = 0
        for product in self.backend.products.values():
            if product["category_id"] == category_id:
                product["category_id"] = None
                cleared += 1
        return cleared


class FailingProductCatalog(InMemoryProductCatalog):
    """Clears the products, then fails as if the catalog went away mid-operation."""

    def clear_category(self, db, category_id: int) -> int:
        super().clear_category(db, category_id)
        raise RuntimeError("catalogo de produtos indisponivel")


def make_memory_service(event_bus=None, *, failing_catalog: bool = False):
    from app.application.category_service import CategoryTreeService
    from app.core.event_bus import EventBus

    backend = MemoryBackend()
    store = InMemoryCategoryStore(backend)
    catalog_cls = FailingProductCatalog if failing_catalog else InMemoryProductCatalog
    catalog = catalog_cls(backend)
    service = CategoryTreeService(repository=store, product_catalog=catalog, event_bus=event_bus or EventBus())
    return service, store, catalog
