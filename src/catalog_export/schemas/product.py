"""Product Pydantic v2 response schemas."""

from datetime import datetime

from pydantic import BaseModel

from catalog_export.schemas.common import PaginationMeta


class ProductResponse(BaseModel):
    """A single catalog product."""

    id: int
    name: str
    category: str
    price: float
    quantity: int
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class PaginatedProductResponse(BaseModel):
    """Paginated product listing."""

    items: list[ProductResponse]
    pagination: PaginationMeta
