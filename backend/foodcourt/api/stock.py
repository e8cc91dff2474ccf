"""Дневной склад точки: выставление остатков, «нет в наличии», доступность для меню."""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from foodcourt.api.auth import RequireAnyAuth, RequireVendorAccess, UserInfo
from foodcourt.api.orders import _managed_vendor
from foodcourt.core.clock import business_date
from foodcourt.core.database import get_db
from foodcourt.feed.rows import stock_row
from foodcourt.schemas.stock import DailyStockBody
from foodcourt.services import stock_ledger
from foodcourt.services.stock_ledger import StockEntryInput

router = APIRouter(prefix="/stock", tags=["stock"])


@router.get("/items/{menu_item_id}")
async def item_availability(
    menu_item_id: int,
    day: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    _user: UserInfo = Depends(RequireAnyAuth),
):
    """Доступность одного блюда на дату (по умолчанию — сегодня)."""
    return await stock_ledger.menu_item_availability(db, menu_item_id, day or business_date())


@router.put("/entries/{entry_id}/unavailable")
async def mark_unavailable(
    entry_id: int,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireVendorAccess),
):
    entry = await stock_ledger.get_entry(db, entry_id)
    await _managed_vendor(db, entry.canteen_id, user)
    entry = await stock_ledger.mark_unavailable(db, entry_id)
    return stock_row(entry)


@router.get("/{canteen_id}/{day}")
async def get_stock(
    canteen_id: int,
    day: date,
    db: AsyncSession = Depends(get_db),
    _user: UserInfo = Depends(RequireAnyAuth),
):
    """Режим склада, строки на дату и доступность каждого блюда."""
    return await stock_ledger.stock_info(db, canteen_id, day)


@router.put("/{canteen_id}/{day}")
async def set_daily_stock(
    canteen_id: int,
    day: date,
    body: DailyStockBody,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireVendorAccess),
):
    """Полная замена остатков на дату. Повторная отправка формы не удваивает количества."""
    await _managed_vendor(db, canteen_id, user)
    entries = await stock_ledger.set_daily_stock(
        db,
        canteen_id,
        day,
        [StockEntryInput(menu_item_id=e.menu_item_id, quantity=e.quantity) for e in body.entries],
    )
    return {"canteen_id": canteen_id, "date": day.isoformat(), "entries": [stock_row(e) for e in entries]}


@router.post("/{canteen_id}/{day}/copy-previous")
async def copy_previous_day(
    canteen_id: int,
    day: date,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireVendorAccess),
):
    """Выставить склад по общим количествам предыдущего дня."""
    await _managed_vendor(db, canteen_id, user)
    entries = await stock_ledger.copy_previous_day(db, canteen_id, day)
    return {"canteen_id": canteen_id, "date": day.isoformat(), "entries": [stock_row(e) for e in entries]}
