"""Product listing endpoint."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_export.core.dependencies import get_async_session
from catalog_export.lib.exporter.types import ExportFilters
from catalog_export.schemas.common import PaginationMeta
from catalog_export.schemas.product import PaginatedProductResponse, ProductResponse
from catalog_export.services.product_service import list_products

products_router = APIRouter(prefix="/products", tags=["products"])


@products_router.get(
    "",
    response_model=PaginatedProductResponse,
)
async def list_products_endpoint(
    category: str = Query("", max_length=100),
    product_status: str = Query("", alias="status", max_length=20),
    search: str = Query("", max_length=255),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    session: AsyncSession = Depends(get_async_session),
) -> PaginatedProductResponse:
    """List products with the same filters an export accepts."""
    filters = ExportFilters(category=category.strip(), status=product_status.strip(), search=search.strip())
    products, total = await list_products(session, filters, page=page, page_size=page_size)
    return PaginatedProductResponse(
        items=[ProductResponse.model_validate(p) for p in products],
        pagination=PaginationMeta.build(total, page, page_size),
    )
