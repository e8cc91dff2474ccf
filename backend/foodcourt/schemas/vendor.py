from typing import Optional
from pydantic import BaseModel, Field

from foodcourt.models import StockMode


class CapacityResponse(BaseModel):
    active_count: int
    limit: Optional[int] = None
    at_limit: bool


class OrderLimitBody(BaseModel):
    order_limit: Optional[int] = Field(default=None, ge=1)


class StockModeBody(BaseModel):
    mode: StockMode


class OpenBody(BaseModel):
    is_open: bool
