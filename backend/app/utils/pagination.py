"""Offset pagination for the mirrored entity lists."""

from pydantic import BaseModel, Field
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession


class PaginationParams(BaseModel):
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class PaginatedResponse(BaseModel):
    items: list
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def create(cls, items: list, total: int, params: PaginationParams) -> "PaginatedResponse":
        return cls(
            items=items,
            total=total,
            page=params.page,
            page_size=params.page_size,
            total_pages=-(-total // params.page_size),
        )


async def paginate(
    db: AsyncSession, query: Select, params: PaginationParams, schema: type[BaseModel],
) -> PaginatedResponse:
    """Run ``query`` for one page and serialize each row through ``schema``."""
    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    rows = (await db.execute(query.offset(params.offset).limit(params.page_size))).scalars().all()
    items = [schema.model_validate(row).model_dump(mode="json") for row in rows]
    return PaginatedResponse.create(items, total, params)
