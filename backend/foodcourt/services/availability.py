"""Доступность блюда для меню — только чтение, без побочных эффектов."""
from typing import Optional

SIMPLE = "simple"
DAILY = "daily"

REASON_STOCK_NOT_SET = "Stock not set"
REASON_NOT_IN_STOCK = "Not in stock"
REASON_SOLD_OUT = "Sold out"
REASON_ITEM_DISABLED = "Not available"


def item_availability(
    mode: str,
    entry: Optional[dict],
    has_stock_for_day: bool,
    item_enabled: bool = True,
) -> dict:
    """
    mode — режим склада точки; entry — строка дневного склада (stock_row) или None.
    В простом режиме доступность — статичный флаг блюда, склад не смотрим.
    """
    if mode == SIMPLE:
        if not item_enabled:
            return {"available": False, "mode": SIMPLE, "reason": REASON_ITEM_DISABLED}
        return {"available": True, "mode": SIMPLE}
    if not has_stock_for_day:
        return {"available": False, "mode": DAILY, "reason": REASON_STOCK_NOT_SET}
    if entry is None:
        return {"available": False, "mode": DAILY, "reason": REASON_NOT_IN_STOCK}
    if entry["status"] == "unavailable" or entry["remaining_quantity"] <= 0:
        return {"available": False, "mode": DAILY, "remaining": 0, "reason": REASON_SOLD_OUT}
    return {"available": True, "mode": DAILY, "remaining": entry["remaining_quantity"]}
