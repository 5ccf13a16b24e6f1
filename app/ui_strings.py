from __future__ import annotations

from typing import Dict


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "ERP Cadastros",
    "category": "Categoria",
    "subcategory": "Subcategoria",
    "product": "Produto",
    "root": "Categoria raiz",
}


BULK_OPERATION_LABELS: Dict[str, str] = {
    "activate": "Ativar",
    "deactivate": "Desativar",
    "delete": "Excluir",
    "move": "Mover",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "categories_listed": "Categorias recuperadas com sucesso.",
        "category_found": "Categoria encontrada com sucesso.",
        "category_created": "Categoria criada com sucesso.",
        "category_updated": "Categoria atualizada com sucesso.",
        "category_deleted": "Categoria removida com sucesso.",
        "category_moved": "Categoria movida com sucesso.",
        "category_tree_loaded": "Arvore de categorias recuperada com sucesso.",
        "category_select_loaded": "Categorias para selecao recuperadas com sucesso.",
        "category_stats_loaded": "Estatisticas de categorias recuperadas com sucesso.",
        "bulk_executed": "Operacao em lote executada com sucesso.",
    },
    "error": {
        "action_invalid": "Acao invalida para esta operacao.",
        "bulk_operation_not_supported": "Operacao em lote nao suportada.",
        "bulk_operation_required": "Informe a operacao em lote.",
        "category_circular_reference": "Nao e possivel criar referencia circular entre categorias.",
        "category_has_children": "Categoria possui subcategorias. Use force=true para forcar exclusao.",
        "category_has_products": "Categoria possui produtos associados. Use force=true para forcar exclusao.",
        "category_ids_required": "Informe ao menos uma categoria valida.",
        "category_name_conflict": "Ja existe uma categoria com este nome no mesmo nivel.",
        "category_not_found": "Categoria nao encontrada.",
        "category_id_invalid": "Identificador de categoria invalido.",
        "category_level_invalid": "Nivel de categoria invalido.",
        "conflict": "Conflito de dados.",
        "name_required": "Nome da categoria e obrigatorio.",
        "new_parent_id_required": "ID da categoria pai e obrigatorio para mover.",
        "no_changes": "Nenhuma alteracao informada.",
        "not_found": "Registro nao encontrado.",
        "parent_category_not_found": "Categoria pai nao encontrada.",
        "payload_invalid": "Dados invalidos.",
        "unexpected_error": "Nao foi possivel concluir a operacao. Tente novamente em instantes.",
        "validation_error": "Dados invalidos.",
    },
}


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def bulk_success_message(operation: str) -> str:
    label = BULK_OPERATION_LABELS.get(str(operation or "").strip(), operation)
    return f"Operacao {label} executada com sucesso."
