import os
import sys

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from app import create_app
from app.application.category_service import CategoryTreeService
from app.db import get_db, init_db
from app.domain.contracts import CategoryCreateInput


DEMO_TREE = {
    "Eletronicos": {
        "Computadores": {"Notebooks": {}, "Desktops": {}},
        "Celulares": {},
    },
    "Escritorio": {
        "Papelaria": {},
        "Moveis": {},
    },
}


def seed_demo_categories(db, service: CategoryTreeService | None = None) -> int:
    """Cria a arvore de exemplo quando a tabela ainda esta vazia."""
    service = service or CategoryTreeService()
    if service.get_stats(db)["total"]:
        return 0

    created = 0
    pending = [(name, children, None) for name, children in DEMO_TREE.items()]
    while pending:
        name, children, parent_id = pending.pop(0)
        category = service.create_category(db, CategoryCreateInput(name=name, parent_id=parent_id))
        created += 1
        pending.extend((child, grandchildren, category["id"]) for child, grandchildren in children.items())
    return created


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        init_db()
        if os.environ.get("CAD_SEED_DEMO", "0").strip().lower() in {"1", "true", "yes", "sim"}:
            created = seed_demo_categories(get_db())
            print(f"{created} categorias de exemplo criadas.")
    print("Database initialized.")
