"""ORM model registry. Import all models so Alembic autogenerate discovers them."""

from catalog_export.models.export_job import ExportJob
from catalog_export.models.product import Product

__all__ = [
    "ExportJob",
    "Product",
]
