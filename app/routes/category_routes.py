from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from app.application.category_service import CategoryTreeService
from app.db import get_db, get_read_db
from app.domain.contracts import (
    BulkOperationInput,
    CategoryCreateInput,
    CategoryListInput,
    CategoryUpdateInput,
)
from app.errors import ValidationError
from app.ui_strings import success_message


cadastros_bp = Blueprint("cadastros", __name__, url_prefix="/api/cad")

_CATEGORY_SERVICE = CategoryTreeService()

_TRUE_VALUES = {"1", "true", "yes", "on", "sim"}
_FALSE_VALUES = {"0", "false", "no", "off", "nao"}


def _ok(key: str, fallback: str | None = None) -> str:
    return success_message(key, fallback)


def _success(message_key: str, data: Any, status_code: int = 200, **extra: Any):
    body: Dict[str, Any] = {"success": True, "message": _ok(message_key), "data": data}
    body.update(extra)
    return jsonify(body), status_code


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError(code="payload_invalid")
    return payload


def _parse_int(value: str | None, default: int, min_value: int, max_value: int) -> int:
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return max(min_value, min(parsed, max_value))


def _parse_bool(value: str | None, default: bool | None) -> bool | None:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return default


def _parse_optional_int(value: str | None, field: str) -> int | None:
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValidationError(code="category_id_invalid", payload={"field": field}) from exc


def _parse_level(value: str | None) -> tuple[int | None, bool]:
    """Parse `level` filters such as "2" or "4+" (level 4 and deeper)."""
    raw = (value or "").strip()
    if not raw:
        return None, False
    # An unescaped "+" in the query string arrives as a trailing space.
    deeper = raw.endswith("+") or (value or "").endswith(" ")
    digits = raw[:-1].strip() if raw.endswith("+") else raw
    if not digits.isdigit() or int(digits) < 1:
        raise ValidationError(code="category_level_invalid", payload={"field": "level"})
    return int(digits), deeper


def _body_id(value: Any, field: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(code="category_id_invalid", payload={"field": field})
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(code="category_id_invalid", payload={"field": field})


def _body_text(payload: dict, field: str) -> str | None:
    value = payload.get(field)
    if value is not None and not isinstance(value, str):
        raise ValidationError(code="payload_invalid", payload={"field": field})
    return value


def _body_flag(payload: dict, field: str) -> bool:
    value = payload.get(field)
    if not isinstance(value, bool):
        raise ValidationError(code="payload_invalid", payload={"field": field})
    return value


def _require_name(value: str | None) -> str:
    if not (value or "").strip():
        raise ValidationError(code="name_required", payload={"field": "name"})
    return value


@cadastros_bp.route("/categories", methods=["GET"])
def list_categories():
    args = request.args
    default_size = int(current_app.config.get("CATEGORIES_PAGE_SIZE_DEFAULT", 50))
    max_size = int(current_app.config.get("CATEGORIES_PAGE_SIZE_MAX", 200))
    raw_size = args.get("page_size") if args.get("page_size") is not None else args.get("limit")

    active_raw = (args.get("active") or "").strip().lower()
    raw_level = args.get("level") if args.get("level") is not None else args.get("nivel")
    level, include_deeper = _parse_level(raw_level)
    list_input = CategoryListInput(
        page=_parse_int(args.get("page"), 1, 1, 1_000_000),
        page_size=_parse_int(raw_size, default_size, 1, max_size),
        search=(args.get("search") or "").strip()[:120] or None,
        active=None if active_raw in ("", "all") else _parse_bool(active_raw, None),
        parent_id=_parse_optional_int(args.get("parent_id"), "parent_id"),
        level=level,
        include_deeper_levels=include_deeper,
        hierarchical=bool(_parse_bool(args.get("hierarchical"), True)),
        sort=args.get("sort") or "name",
        order=args.get("order") or "asc",
    )
    result = _CATEGORY_SERVICE.list_categories(get_read_db(), list_input)
    return _success("categories_listed", result["items"], pagination=result["pagination"])


@cadastros_bp.route("/categories/tree", methods=["GET"])
def category_tree():
    include_products = bool(_parse_bool(request.args.get("include_products"), False))
    tree = _CATEGORY_SERVICE.get_tree(get_read_db(), include_product_counts=include_products)
    return _success("category_tree_loaded", tree)


@cadastros_bp.route("/categories/select", methods=["GET"])
def category_select():
    options = _CATEGORY_SERVICE.get_for_select(
        get_read_db(),
        search=request.args.get("search"),
        exclude_id=_parse_optional_int(request.args.get("exclude_id"), "exclude_id"),
    )
    return _success("category_select_loaded", options)


@cadastros_bp.route("/categories/stats", methods=["GET"])
def category_stats():
    return _success("category_stats_loaded", _CATEGORY_SERVICE.get_stats(get_read_db()))


@cadastros_bp.route("/categories/<int:category_id>", methods=["GET"])
def get_category(category_id: int):
    include_children = bool(_parse_bool(request.args.get("include_children"), False))
    category = _CATEGORY_SERVICE.get_category(get_read_db(), category_id, include_children=include_children)
    return _success("category_found", category)


@cadastros_bp.route("/categories", methods=["POST"])
def create_category():
    payload = _json_body()
    create_input = CategoryCreateInput(
        name=_require_name(_body_text(payload, "name")),
        description=_body_text(payload, "description"),
        code=_body_text(payload, "code"),
        parent_id=_body_id(payload.get("parent_id"), "parent_id"),
        active=_body_flag(payload, "active") if "active" in payload else True,
    )
    category = _CATEGORY_SERVICE.create_category(get_db(), create_input)
    return _success("category_created", category, 201)


@cadastros_bp.route("/categories/<int:category_id>", methods=["PUT"])
def update_category(category_id: int):
    payload = _json_body()
    fields: Dict[str, Any] = {}
    if "name" in payload:
        fields["name"] = _require_name(_body_text(payload, "name"))
    for key in ("description", "code"):
        if key in payload:
            fields[key] = _body_text(payload, key)
    if "parent_id" in payload:
        fields["parent_id"] = _body_id(payload["parent_id"], "parent_id")
    if "active" in payload:
        fields["active"] = _body_flag(payload, "active")

    category = _CATEGORY_SERVICE.update_category(get_db(), category_id, CategoryUpdateInput(**fields))
    return _success("category_updated", category)


@cadastros_bp.route("/categories/<int:category_id>", methods=["DELETE"])
def delete_category(category_id: int):
    force = bool(_parse_bool(request.args.get("force"), False))
    result = _CATEGORY_SERVICE.delete_category(get_db(), category_id, force=force)
    return _success("category_deleted", result)


@cadastros_bp.route("/categories/<int:category_id>/move", methods=["PATCH"])
def move_category(category_id: int):
    payload = _json_body()
    if "new_parent_id" not in payload:
        raise ValidationError(code="new_parent_id_required", payload={"field": "new_parent_id"})
    new_parent_id = _body_id(payload["new_parent_id"], "new_parent_id")
    category = _CATEGORY_SERVICE.move_category(get_db(), category_id, new_parent_id)
    return _success("category_moved", category)


@cadastros_bp.route("/categories/bulk", methods=["POST"])
def bulk_categories():
    payload = _json_body()
    data = payload.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError(code="payload_invalid", payload={"field": "data"})
    raw_ids = payload.get("category_ids")
    if not isinstance(raw_ids, list) or not raw_ids:
        raise ValidationError(code="category_ids_required", payload={"field": "category_ids"})
    bulk_input = BulkOperationInput(
        operation=str(payload.get("operation") or ""),
        category_ids=[_body_id(value, "category_ids") for value in raw_ids],
        data=data,
    )
    result = _CATEGORY_SERVICE.bulk(get_db(), bulk_input)
    return _success("bulk_executed", result)
