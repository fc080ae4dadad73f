"""Pydantic v2 schemas shared by the query catalog and export listings."""

import math

from pydantic import BaseModel, Field


class PaginationMeta(BaseModel):
    """Position of one page within a listing."""

    total: int = Field(description="Total number of items")
    page: int = Field(description="Current page number")
    page_size: int = Field(description="Items per page")
    total_pages: int = Field(description="Total number of pages")

    @classmethod
    def for_page(cls, total: int, page: int, page_size: int) -> "PaginationMeta":
        return cls(total=total, page=page, page_size=page_size, total_pages=math.ceil(total / page_size))
