"""Product service — filtered, paginated catalog listing."""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_export.lib.exporter.types import ExportFilters
from catalog_export.models.product import Product
from catalog_export.services.product_source import build_product_predicates


async def list_products(
    session: AsyncSession,
    filters: ExportFilters,
    *,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[Product], int]:
    """List products matching ``filters`` in id order.

    Uses the same predicates as the export so a listing and an export created
    with the same filters cover the same rows.

    Args:
        session: Database session.
        filters: Category, status and name search criteria.
        page: Page number (1-based).
        page_size: Items per page.

    Returns:
        Tuple of (products, total count).
    """
    predicates = build_product_predicates(filters)
    count_query = select(func.count(Product.id)).where(*predicates)
    total = (await session.execute(count_query)).scalar_one()

    offset = (page - 1) * page_size
    query = select(Product).where(*predicates).order_by(Product.id).offset(offset).limit(page_size)
    result = await session.execute(query)
    products = list(result.scalars().all())

    return products, total
