from __future__ import annotations

import logging
import math
from typing import Any, Iterable, List, Tuple

from app.core.event_bus import (
    CategoriesBulkChanged,
    CategoryCreated,
    CategoryDeleted,
    CategoryMoved,
    CategoryUpdated,
    DomainEvent,
    EventBus,
    get_event_bus,
)
from app.domain.category_tree import (
    CorruptHierarchyError,
    ancestor_chain,
    build_hierarchy,
    collect_descendants,
    compute_hierarchy,
    creates_cycle,
)
from app.domain.contracts import (
    BULK_OPERATIONS,
    BulkOperationInput,
    CategoryCreateInput,
    CategoryListInput,
    CategoryUpdateInput,
)
from app.domain.ports import CategoryStore, ProductCatalog
from app.errors import ConflictError, InvalidOperationError, ValidationError, category_not_found
from app.infrastructure.repositories.cadastros import CategoryRepository, ProductCatalogRepository
from app.observability import observe_category_mutation, observe_hierarchy_recompute
from app.ui_strings import bulk_success_message, success_message


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


class _PendingEffects:
    """Log lines and domain events held back until the outer transaction commits."""

    def __init__(self) -> None:
        self.events: List[DomainEvent] = []
        self.logs: List[Tuple[str, dict]] = []

    def log(self, message: str, extra: dict) -> None:
        self.logs.append((message, extra))


class CategoryTreeService:
    """Business rules for the product category forest.

    Every mutating call runs inside ``repository.transaction(db)``; nested calls
    join the outer transaction, so bulk operations reuse the single-item paths and
    still roll back as a whole. Log lines and domain events of a call are held
    until its transaction commits and dropped when it rolls back.
    """

    def __init__(
        self,
        repository: CategoryStore | None = None,
        product_catalog: ProductCatalog | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.repository = repository or CategoryRepository()
        self.products = product_catalog or ProductCatalogRepository()
        self.event_bus = event_bus or get_event_bus()
        self._logger = logging.getLogger("app")

    # Reads

    def list_categories(self, db, list_input: CategoryListInput) -> dict:
        rows, total = self.repository.list_page(db, list_input)
        items: List[dict] = rows
        if list_input.hierarchical and list_input.parent_id is None:
            items = build_hierarchy(rows, orphans_as_roots=True)
        total_pages = math.ceil(total / list_input.page_size) if total else 0
        return {
            "items": items,
            "pagination": {
                "page": list_input.page,
                "page_size": list_input.page_size,
                "total": total,
                "total_pages": total_pages,
            },
        }

    def get_category(self, db, category_id: int, include_children: bool = False) -> dict:
        category = self.repository.get_annotated(db, category_id)
        if not category:
            raise category_not_found(category_id)
        if include_children:
            category["children"] = self.repository.list_children(db, category_id)
        return category

    def get_tree(self, db, include_product_counts: bool = False) -> List[dict]:
        rows = self.repository.list_active(db)
        if include_product_counts:
            counts = self.products.counts_by_category(db, [row["id"] for row in rows])
            rows = [{**row, "product_count": int(counts.get(row["id"], 0))} for row in rows]
        # Active nodes under an inactive parent surface as roots.
        return build_hierarchy(rows, orphans_as_roots=True)

    def get_for_select(self, db, search: str | None = None, exclude_id: int | None = None) -> List[dict]:
        exclude_ids: List[int] = []
        if exclude_id is not None:
            exclude_ids = [exclude_id, *self._descendants(db, exclude_id)]
        return self.repository.list_for_select(db, search=_clean_text(search), exclude_ids=exclude_ids)

    def get_stats(self, db) -> dict:
        return self.repository.stats(db)

    # Mutations

    def create_category(self, db, create_input: CategoryCreateInput) -> dict:
        name = _clean_text(create_input.name)
        if not name:
            raise ValidationError(code="name_required", payload={"field": "name"})

        with self.repository.transaction(db):
            parent = None
            if create_input.parent_id is not None:
                parent = self._require(db, create_input.parent_id, field="parent_id")
            self._ensure_unique_name(db, name=name, parent_id=create_input.parent_id)
            level, path = compute_hierarchy(name, parent)
            category_id = self.repository.insert(
                db,
                name=name,
                description=_clean_text(create_input.description),
                code=_clean_text(create_input.code),
                parent_id=create_input.parent_id,
                level=level,
                path=path,
                active=bool(create_input.active),
            )
            category = self.repository.get_annotated(db, category_id)

        self._logger.info(
            "category_created",
            extra={"category_id": category_id, "parent_id": create_input.parent_id, "level": level},
        )
        observe_category_mutation("create")
        self._publish([CategoryCreated(category_id=category_id, parent_id=create_input.parent_id, path=path)])
        return category

    def update_category(self, db, category_id: int, update_input: CategoryUpdateInput) -> dict:
        if update_input.is_empty:
            raise ValidationError(code="no_changes")

        pending = _PendingEffects()
        with self.repository.transaction(db):
            self._apply_update(db, category_id, update_input, pending)
            category = self.repository.get_annotated(db, category_id)

        observe_category_mutation("update")
        self._flush(pending)
        return category

    def move_category(self, db, category_id: int, new_parent_id: int | None) -> dict:
        pending = _PendingEffects()
        with self.repository.transaction(db):
            self._apply_update(db, category_id, CategoryUpdateInput(parent_id=new_parent_id), pending)
            category = self.repository.get_annotated(db, category_id)

        observe_category_mutation("move")
        self._flush(pending)
        return category

    def delete_category(self, db, category_id: int, force: bool = False) -> dict:
        pending = _PendingEffects()
        with self.repository.transaction(db):
            result = self._delete(db, category_id, force=force, pending=pending)

        observe_category_mutation("delete")
        self._flush(pending)
        return result

    def bulk(self, db, bulk_input: BulkOperationInput) -> dict:
        category_ids = self._normalize_ids(bulk_input.category_ids)
        operation = str(bulk_input.operation or "").strip().lower()
        if not operation:
            raise ValidationError(code="bulk_operation_required", payload={"field": "operation"})
        if operation not in BULK_OPERATIONS:
            raise InvalidOperationError(
                code="bulk_operation_not_supported",
                payload={"operation": operation, "supported": list(BULK_OPERATIONS)},
            )

        data = dict(bulk_input.data or {})
        new_parent_id = None
        if operation == "move":
            if "new_parent_id" not in data:
                raise ValidationError(code="new_parent_id_required", payload={"field": "new_parent_id"})
            new_parent_id = self._optional_id(data.get("new_parent_id"), field="new_parent_id")

        pending = _PendingEffects()
        with self.repository.transaction(db):
            if operation in ("activate", "deactivate"):
                affected = self.repository.set_active_many(db, category_ids, operation == "activate")
            elif operation == "delete":
                self._validate_bulk_delete(db, category_ids, force=bulk_input.force)
                for category_id in category_ids:
                    self._delete(db, category_id, force=bulk_input.force, pending=pending)
                affected = len(category_ids)
            else:
                # Each move sees the tree as left by the previous one.
                for category_id in category_ids:
                    self._apply_update(db, category_id, CategoryUpdateInput(parent_id=new_parent_id), pending)
                affected = len(category_ids)

        pending.log(
            "categories_bulk_changed",
            extra={"operation": operation, "category_ids": category_ids, "affected": affected},
        )
        observe_category_mutation(f"bulk_{operation}")
        pending.events.append(
            CategoriesBulkChanged(operation=operation, category_ids=tuple(category_ids), affected=affected)
        )
        self._flush(pending)
        return {
            "operation": operation,
            "affected": affected,
            "message": bulk_success_message(operation),
        }

    # Internals

    def _apply_update(
        self,
        db,
        category_id: int,
        update_input: CategoryUpdateInput,
        pending: _PendingEffects,
    ) -> None:
        current = self._require(db, category_id)
        fields = update_input.scalar_fields()
        if "name" in fields:
            fields["name"] = _clean_text(fields["name"])
            if not fields["name"]:
                raise ValidationError(code="name_required", payload={"field": "name"})
        for key in ("description", "code"):
            if key in fields:
                fields[key] = _clean_text(fields[key])
        if "active" in fields:
            fields["active"] = bool(fields["active"])

        new_name = fields.get("name", current["name"])
        new_parent_id = update_input.parent_id if update_input.changes_parent else current["parent_id"]
        name_changed = new_name != current["name"]
        parent_changed = new_parent_id != current["parent_id"]

        parent = None
        if new_parent_id is not None:
            parent = self._require(db, new_parent_id, field="parent_id")
        if parent_changed:
            self._ensure_no_cycle(db, category_id, new_parent_id)
        if name_changed or parent_changed:
            self._ensure_unique_name(db, name=new_name, parent_id=new_parent_id, exclude_id=category_id)

        hierarchy_changed = name_changed or parent_changed
        level, path = current["level"], current["path"]
        if hierarchy_changed:
            if parent_changed:
                fields["parent_id"] = new_parent_id
                if new_parent_id is not None:
                    # Checked again on the live rows right before the structural write.
                    self._ensure_acyclic_chain(db, category_id, new_parent_id)
            level, path = compute_hierarchy(new_name, parent)
            fields["level"] = level
            fields["path"] = path

        self.repository.update_fields(db, category_id, fields)
        if hierarchy_changed:
            self._recompute_subtree(db, category_id, level=level, path=path)

        changed = tuple(sorted(key for key in fields if key not in ("level", "path")))
        pending.log(
            "category_updated",
            extra={"category_id": category_id, "changed_fields": list(changed), "hierarchy_changed": hierarchy_changed},
        )
        if changed:
            pending.events.append(
                CategoryUpdated(category_id=category_id, changed_fields=changed, hierarchy_changed=hierarchy_changed)
            )
        if parent_changed:
            pending.log(
                "category_moved",
                extra={"category_id": category_id, "from_parent_id": current["parent_id"], "to_parent_id": new_parent_id},
            )
            pending.events.append(
                CategoryMoved(category_id=category_id, from_parent_id=current["parent_id"], to_parent_id=new_parent_id)
            )

    def _delete(self, db, category_id: int, *, force: bool, pending: _PendingEffects) -> dict:
        category = self._require(db, category_id)
        child_count = self.repository.count_children(db, category_id)
        product_count = self.products.count_by_category(db, category_id)

        if not force:
            if child_count:
                raise ConflictError(
                    code="category_has_children",
                    payload={"category_id": category_id, "child_count": child_count},
                )
            if product_count:
                raise ConflictError(
                    code="category_has_products",
                    payload={"category_id": category_id, "product_count": product_count},
                )

        new_parent_id = category["parent_id"]
        children: List[dict] = []
        if child_count:
            children = self.repository.list_children(db, category_id)
            for child in children:
                clash = self.repository.find_sibling_by_name(
                    db,
                    name=child["name"],
                    parent_id=new_parent_id,
                    exclude_id=category_id,
                )
                if clash:
                    raise ConflictError(
                        code="category_name_conflict",
                        payload={
                            "field": "name",
                            "category_id": child["id"],
                            "name": child["name"],
                            "parent_id": new_parent_id,
                        },
                    )

        cleared_products = self.products.clear_category(db, category_id) if product_count else 0
        # The parent link is a deferred foreign key, so the row can go before its children move.
        self.repository.delete(db, category_id)
        reparented_children = 0
        if children:
            reparented_children = self.repository.reparent_children(db, category_id, new_parent_id)
            parent = self.repository.get_by_id(db, new_parent_id) if new_parent_id is not None else None
            for child in children:
                level, path = compute_hierarchy(child["name"], parent)
                self.repository.update_fields(db, child["id"], {"level": level, "path": path})
                self._recompute_subtree(db, child["id"], level=level, path=path)

        pending.log(
            "category_deleted",
            extra={
                "category_id": category_id,
                "forced": bool(force),
                "reparented_children": reparented_children,
                "cleared_products": cleared_products,
            },
        )
        pending.events.append(
            CategoryDeleted(
                category_id=category_id,
                forced=bool(force),
                reparented_children=reparented_children,
                cleared_products=cleared_products,
            )
        )
        return {
            "message": success_message("category_deleted"),
            "category_id": category_id,
            "forced": bool(force),
            "reparented_children": reparented_children,
            "cleared_products": cleared_products,
        }

    def _validate_bulk_delete(self, db, category_ids: List[int], *, force: bool) -> None:
        existing = set(self.repository.existing_ids(db, category_ids))
        missing = [category_id for category_id in category_ids if category_id not in existing]
        if missing:
            error = category_not_found(missing[0])
            error.payload["missing_ids"] = missing
            raise error
        if force:
            return
        for category_id in category_ids:
            child_count = self.repository.count_children(db, category_id)
            if child_count:
                raise ConflictError(
                    code="category_has_children",
                    payload={"category_id": category_id, "child_count": child_count},
                )
            product_count = self.products.count_by_category(db, category_id)
            if product_count:
                raise ConflictError(
                    code="category_has_products",
                    payload={"category_id": category_id, "product_count": product_count},
                )

    def _recompute_subtree(self, db, root_id: int, *, level: int, path: str) -> int:
        """Rewrite level/path of every descendant of ``root_id``, parents before children."""
        recomputed = 0
        visited = {root_id}
        frontier: List[Tuple[int, dict]] = [(root_id, {"level": level, "path": path})]
        while frontier:
            next_frontier: List[Tuple[int, dict]] = []
            for node_id, node in frontier:
                for child in self.repository.list_children(db, node_id):
                    if child["id"] in visited:
                        continue
                    visited.add(child["id"])
                    child_level, child_path = compute_hierarchy(child["name"], node)
                    if child_level != child["level"] or child_path != child["path"]:
                        self.repository.update_fields(db, child["id"], {"level": child_level, "path": child_path})
                    recomputed += 1
                    next_frontier.append((child["id"], {"level": child_level, "path": child_path}))
            frontier = next_frontier
        observe_hierarchy_recompute(recomputed + 1)
        return recomputed

    def _descendants(self, db, category_id: int) -> List[int]:
        return collect_descendants(category_id, lambda node_id: self.repository.list_child_ids(db, node_id))

    def _ensure_no_cycle(self, db, category_id: int, new_parent_id: int | None) -> None:
        if new_parent_id is None:
            return
        descendants = [] if new_parent_id == category_id else self._descendants(db, category_id)
        if creates_cycle(category_id, new_parent_id, descendants):
            raise InvalidOperationError(
                code="category_circular_reference",
                payload={"category_id": category_id, "parent_id": new_parent_id},
            )

    def _ensure_acyclic_chain(self, db, category_id: int, new_parent_id: int) -> None:
        def parent_of(node_id: int) -> int | None:
            row = self.repository.get_by_id(db, node_id)
            return row["parent_id"] if row else None

        try:
            chain = ancestor_chain(new_parent_id, parent_of)
        except CorruptHierarchyError as exc:
            raise InvalidOperationError(
                code="category_circular_reference",
                details=str(exc),
                payload={"category_id": category_id, "parent_id": new_parent_id},
            ) from exc
        if category_id in chain:
            raise InvalidOperationError(
                code="category_circular_reference",
                payload={"category_id": category_id, "parent_id": new_parent_id},
            )

    def _ensure_unique_name(
        self,
        db,
        *,
        name: str,
        parent_id: int | None,
        exclude_id: int | None = None,
    ) -> None:
        clash = self.repository.find_sibling_by_name(db, name=name, parent_id=parent_id, exclude_id=exclude_id)
        if clash:
            raise ConflictError(
                code="category_name_conflict",
                payload={"field": "name", "name": name, "parent_id": parent_id},
            )

    def _require(self, db, category_id: int, *, field: str = "category_id") -> dict:
        category = self.repository.get_by_id(db, category_id)
        if not category:
            raise category_not_found(category_id, field=field)
        return category

    def _publish(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            self.event_bus.publish(event)

    def _flush(self, pending: _PendingEffects) -> None:
        for message, extra in pending.logs:
            self._logger.info(message, extra=extra)
        self._publish(pending.events)

    @staticmethod
    def _optional_id(value: Any, *, field: str) -> int | None:
        if value is None:
            return None
        if isinstance(value, bool):
            raise ValidationError(code="category_id_invalid", payload={"field": field})
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(code="category_id_invalid", payload={"field": field}) from exc

    @staticmethod
    def _normalize_ids(raw_ids: Any) -> List[int]:
        if not isinstance(raw_ids, (list, tuple)) or not raw_ids:
            raise ValidationError(code="category_ids_required", payload={"field": "category_ids"})
        category_ids: List[int] = []
        for value in raw_ids:
            if isinstance(value, bool):
                raise ValidationError(code="category_ids_required", payload={"field": "category_ids"})
            try:
                category_id = int(value)
            except (TypeError, ValueError) as exc:
                raise ValidationError(code="category_ids_required", payload={"field": "category_ids"}) from exc
            if category_id not in category_ids:
                category_ids.append(category_id)
        return category_ids
