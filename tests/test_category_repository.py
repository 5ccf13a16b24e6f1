import unittest

from app.db import close_db, get_db
from app.domain.contracts import CategoryListInput
from app.errors import ConflictError
from app.infrastructure.repositories.cadastros import CategoryRepository, ProductCatalogRepository
from tests.helpers.temp_db import TempDbSandbox


class CategoryRepositoryTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="category_repository")
        self.app = self._temp_db.make_app()
        self._ctx = self.app.app_context()
        self._ctx.push()
        self.db = get_db()
        self.repository = CategoryRepository()
        self.products = ProductCatalogRepository()

    def tearDown(self) -> None:
        close_db()
        self._ctx.pop()
        self._temp_db.cleanup()

    def _insert(self, name: str, parent_id: int | None = None, level: int = 1, path: str | None = None, **extra):
        return self.repository.insert(
            self.db,
            name=name,
            description=extra.get("description"),
            code=extra.get("code"),
            parent_id=parent_id,
            level=level,
            path=path or name,
            active=extra.get("active", True),
        )

    def test_unique_index_rejects_duplicate_root_names(self) -> None:
        self._insert("Bebidas")
        with self.assertRaises(ConflictError) as ctx:
            self._insert("Bebidas")
        self.assertEqual(ctx.exception.code, "category_name_conflict")
        self.assertEqual(ctx.exception.http_status, 409)
        self.assertEqual(ctx.exception.payload["parent_id"], None)

    def test_unique_index_rejects_duplicate_sibling_on_update(self) -> None:
        root = self._insert("Bebidas")
        self._insert("Sucos", root, 2, "Bebidas > Sucos")
        other = self._insert("Refrigerantes", root, 2, "Bebidas > Refrigerantes")

        with self.assertRaises(ConflictError):
            self.repository.update_fields(self.db, other, {"name": "Sucos"})
        self.assertEqual(self.repository.get_by_id(self.db, other)["name"], "Refrigerantes")

    def test_conflict_inside_transaction_rolls_back_earlier_writes(self) -> None:
        self._insert("Bebidas")
        with self.assertRaises(ConflictError):
            with self.repository.transaction(self.db):
                self._insert("Limpeza")
                self._insert("Bebidas")
        self.assertIsNone(self.repository.find_sibling_by_name(self.db, name="Limpeza", parent_id=None))

    def test_search_escapes_like_wildcards(self) -> None:
        self._insert("Descontos 100%", code="PROMO_1")
        self._insert("Descontos 1000")

        percent = self.repository.list_page(self.db, CategoryListInput(search="100%"))
        self.assertEqual([row["name"] for row in percent[0]], ["Descontos 100%"])

        underscore = self.repository.list_page(self.db, CategoryListInput(search="promo_"))
        self.assertEqual(underscore[1], 1)

    def test_list_page_breaks_ties_by_id(self) -> None:
        ids = [self._insert(f"Categoria {index}", level=1) for index in range(3)]
        rows, total = self.repository.list_page(self.db, CategoryListInput(sort="level", page_size=10))
        self.assertEqual(total, 3)
        self.assertEqual([row["id"] for row in rows], ids)

        fallback = CategoryListInput(sort="drop table", order="sideways")
        self.assertEqual((fallback.sort, fallback.order), ("name", "asc"))

    def test_annotations_and_product_counts(self) -> None:
        root = self._insert("Ferramentas")
        child = self._insert("Manuais", root, 2, "Ferramentas > Manuais")
        self.products.create(self.db, name="Martelo", category_id=child)
        self.products.create(self.db, name="Chave", category_id=child)

        annotated = self.repository.get_annotated(self.db, child)
        self.assertEqual(annotated["parent_name"], "Ferramentas")
        self.assertEqual(annotated["product_count"], 2)
        self.assertIsInstance(annotated["active"], bool)
        self.assertEqual(self.repository.get_annotated(self.db, root)["child_count"], 1)

        self.assertEqual(self.products.counts_by_category(self.db), {child: 2})
        self.assertEqual(self.products.counts_by_category(self.db, []), {})
        self.assertEqual(self.products.clear_category(self.db, child), 2)
        self.assertEqual(self.products.count_by_category(self.db, child), 0)

    def test_existing_ids_keep_request_order(self) -> None:
        first = self._insert("A")
        second = self._insert("B")
        self.assertEqual(self.repository.existing_ids(self.db, [second, 999, first]), [second, first])


if __name__ == "__main__":
    unittest.main()
