"""SQL-backed product source for the export engine.

Scans use an index-backed range predicate on the primary key
(``id > cursor ORDER BY id LIMIT n``) so every chunk costs the same no
matter how far into the dataset the export has progressed.
"""

from sqlalchemy import ColumnElement, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_export.lib.exporter.errors import DataSourceUnavailableError
from catalog_export.lib.exporter.types import ExportFilters, ProductRow
from catalog_export.models.product import Product


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_product_predicates(filters: ExportFilters) -> list[ColumnElement[bool]]:
    """Translate export filters into SQL predicates on ``Product``.

    Args:
        filters: Category and status match exactly; search is a
            case-insensitive substring match on the product name.

    Returns:
        Predicates to AND together (empty when no filter is set).
    """
    predicates: list[ColumnElement[bool]] = []
    if filters.category:
        predicates.append(Product.category == filters.category)
    if filters.status:
        predicates.append(Product.status == filters.status)
    if filters.search:
        predicates.append(Product.name.ilike(f"%{_escape_like(filters.search)}%", escape="\\"))
    return predicates


def _to_row(product: Product) -> ProductRow:
    return ProductRow(
        id=product.id,
        name=product.name,
        category=product.category,
        price=product.price,
        quantity=product.quantity,
        status=product.status,
        created_at=product.created_at,
    )


class SqlProductSource:
    """Reads products through an explicitly provided session factory.

    Args:
        session_factory: Factory for short-lived sessions, one per call.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def scan(self, filters: ExportFilters, after_id: int, limit: int) -> list[ProductRow]:
        """Return up to ``limit`` matching products with ``id > after_id``, ascending.

        Raises:
            DataSourceUnavailableError: If the query fails.
        """
        query = (
            select(Product)
            .where(*build_product_predicates(filters), Product.id > after_id)
            .order_by(Product.id.asc())
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return [_to_row(p) for p in result.scalars().all()]
        except SQLAlchemyError as exc:
            msg = f"Product scan after id {after_id} failed: {exc}"
            raise DataSourceUnavailableError(msg) from exc

    async def count(self, filters: ExportFilters) -> int:
        """Count products matching ``filters``.

        Raises:
            DataSourceUnavailableError: If the query fails.
        """
        query = select(func.count(Product.id)).where(*build_product_predicates(filters))
        try:
            async with self._session_factory() as session:
                return (await session.execute(query)).scalar_one()
        except SQLAlchemyError as exc:
            msg = f"Product count failed: {exc}"
            raise DataSourceUnavailableError(msg) from exc
