from .category_repository import CategoryRepository
from .product_repository import ProductCatalogRepository

__all__ = [
    "CategoryRepository",
    "ProductCatalogRepository",
]
