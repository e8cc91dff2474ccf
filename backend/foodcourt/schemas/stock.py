from typing import List
from pydantic import BaseModel, Field


class StockEntryIn(BaseModel):
    menu_item_id: int
    quantity: int = Field(..., ge=0)


class DailyStockBody(BaseModel):
    entries: List[StockEntryIn]
