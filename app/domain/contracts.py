from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


class _Unset:
    """Marks an update field that was not sent, as opposed to one sent as null."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def is_set(value: Any) -> bool:
    return value is not UNSET


CATEGORY_SORT_FIELDS = ("name", "code", "level", "path", "created_at", "updated_at", "id")
BULK_OPERATIONS = ("activate", "deactivate", "delete", "move")


@dataclass(frozen=True)
class CategoryListInput:
    page: int = 1
    page_size: int = 50
    search: str | None = None
    active: bool | None = None
    parent_id: int | None = None
    level: int | None = None
    # true for the "4+" style filter: the level given or deeper
    include_deeper_levels: bool = False
    hierarchical: bool = True
    sort: str = "name"
    order: str = "asc"

    def __post_init__(self) -> None:
        sort = str(self.sort or "").strip().lower()
        if sort not in CATEGORY_SORT_FIELDS:
            sort = "name"
        order = "desc" if str(self.order or "").strip().lower() == "desc" else "asc"
        object.__setattr__(self, "sort", sort)
        object.__setattr__(self, "order", order)
        object.__setattr__(self, "page", max(1, int(self.page or 1)))
        object.__setattr__(self, "page_size", max(1, int(self.page_size or 1)))
        object.__setattr__(self, "search", (self.search or "").strip() or None)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass(frozen=True)
class CategoryCreateInput:
    name: str
    description: str | None = None
    code: str | None = None
    parent_id: int | None = None
    active: bool = True


@dataclass(frozen=True)
class CategoryUpdateInput:
    name: Any = UNSET
    description: Any = UNSET
    code: Any = UNSET
    parent_id: Any = UNSET
    active: Any = UNSET

    def scalar_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        for key in ("name", "description", "code", "active"):
            value = getattr(self, key)
            if is_set(value):
                fields[key] = value
        return fields

    @property
    def changes_parent(self) -> bool:
        return is_set(self.parent_id)

    @property
    def is_empty(self) -> bool:
        return not self.scalar_fields() and not self.changes_parent


@dataclass(frozen=True)
class BulkOperationInput:
    operation: str
    category_ids: List[int]
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def force(self) -> bool:
        return bool((self.data or {}).get("force"))
