"""Page/sort query parameters and the ``{data, meta}`` list envelope."""

import math
from typing import Any, Generic, Optional, Sequence, TypeVar

from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from teamleave.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

T = TypeVar("T")


class PaginationParams:
    """List-endpoint query parameters; use as ``params: PaginationParams = Depends()``."""

    def __init__(
        self,
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        sort: Optional[str] = Query(
            default=None,
            description='Column to sort by, "-" prefix for descending, e.g. "-start_date"',
        ),
    ) -> None:
        self.page = page
        self.page_size = page_size
        self.sort = sort

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def for_page(cls, params: PaginationParams, total: int) -> "PaginationMeta":
        pages = math.ceil(total / params.page_size) if total else 0
        return cls(
            page=params.page,
            page_size=params.page_size,
            total=total,
            total_pages=pages,
            has_next=params.page < pages,
            has_prev=params.page > 1,
        )


class PaginatedResponse(BaseModel, Generic[T]):
    data: Sequence[T]
    meta: PaginationMeta


def _apply_sort(query: Select, sort: Optional[str], model: Any) -> Select:
    # Only real table columns are sortable; anything else keeps the caller's ORDER BY
    if not sort or model is None:
        return query
    name = sort.lstrip("-")
    if name not in model.__table__.columns:
        return query
    column = getattr(model, name)
    return query.order_by(None).order_by(column.desc() if sort.startswith("-") else column.asc())


async def paginate(
    session: AsyncSession,
    query: Select,
    params: PaginationParams,
    *,
    model: Any = None,
) -> tuple[Sequence[Any], PaginationMeta]:
    """Run one page of *query* and count the full result.

    Returns the ORM rows and the meta block; the caller maps the rows into
    its response schema.
    """
    query = _apply_sort(query, params.sort, model)

    total = (
        await session.execute(select(func.count()).select_from(query.order_by(None).subquery()))
    ).scalar_one()
    result = await session.execute(query.offset(params.offset).limit(params.page_size))

    return result.scalars().all(), PaginationMeta.for_page(params, total)
