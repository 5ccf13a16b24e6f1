from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, Sequence, Tuple

from app.domain.contracts import CategoryListInput


class CategoryStore(ABC):
    """Persistence port for category rows.

    Rows are dicts with ``id``, ``name``, ``description``, ``code``, ``parent_id``,
    ``level``, ``path``, ``active``, ``created_at`` and ``updated_at``. Annotated
    rows also carry ``parent_name``, ``child_count`` and ``product_count``.
    """

    @abstractmethod
    def transaction(self, db):
        raise NotImplementedError

    @abstractmethod
    def get_by_id(self, db, category_id: int) -> dict | None:
        raise NotImplementedError

    @abstractmethod
    def get_annotated(self, db, category_id: int) -> dict | None:
        raise NotImplementedError

    @abstractmethod
    def find_sibling_by_name(
        self,
        db,
        *,
        name: str,
        parent_id: int | None,
        exclude_id: int | None = None,
    ) -> dict | None:
        raise NotImplementedError

    @abstractmethod
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
        raise NotImplementedError

    @abstractmethod
    def update_fields(self, db, category_id: int, fields: Dict[str, object]) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, db, category_id: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_children(self, db, parent_id: int) -> List[dict]:
        raise NotImplementedError

    @abstractmethod
    def list_child_ids(self, db, parent_id: int) -> List[int]:
        raise NotImplementedError

    @abstractmethod
    def count_children(self, db, category_id: int) -> int:
        raise NotImplementedError

    @abstractmethod
    def reparent_children(self, db, category_id: int, new_parent_id: int | None) -> int:
        raise NotImplementedError

    @abstractmethod
    def list_page(self, db, list_input: CategoryListInput) -> Tuple[List[dict], int]:
        raise NotImplementedError

    @abstractmethod
    def list_active(self, db) -> List[dict]:
        raise NotImplementedError

    @abstractmethod
    def list_for_select(self, db, *, search: str | None, exclude_ids: Sequence[int]) -> List[dict]:
        raise NotImplementedError

    @abstractmethod
    def existing_ids(self, db, category_ids: Sequence[int]) -> List[int]:
        raise NotImplementedError

    @abstractmethod
    def set_active_many(self, db, category_ids: Sequence[int], active: bool) -> int:
        raise NotImplementedError

    @abstractmethod
    def stats(self, db) -> dict:
        raise NotImplementedError


class ProductCatalog(ABC):
    """The slice of the product catalog the category service depends on."""

    @abstractmethod
    def count_by_category(self, db, category_id: int) -> int:
        raise NotImplementedError

    @abstractmethod
    def counts_by_category(self, db, category_ids: Sequence[int] | None = None) -> Dict[int, int]:
        raise NotImplementedError

    @abstractmethod
    def clear_category(self, db, category_id: int) -> int:
        raise NotImplementedError
