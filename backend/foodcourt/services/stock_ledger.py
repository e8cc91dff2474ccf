"""
Дневной склад (daily mode): выставление остатков на дату, списание при заказе,
ручное «нет в наличии». Списание — одним условным UPDATE, без чтения-записи.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from foodcourt.core.errors import StockEntryNotFound, ValidationFailed, VendorNotFound
from foodcourt.core.logging_config import get_logger
from foodcourt.feed.outbox import record_change
from foodcourt.feed.rows import stock_row
from foodcourt.models import DailyStockEntry, MenuItem, StockMode, StockStatus, Vendor
from foodcourt.services.availability import item_availability

logger = get_logger(__name__)

TABLE = "daily_stock"


@dataclass(frozen=True)
class StockEntryInput:
    menu_item_id: int
    quantity: int


async def _get_vendor(db: AsyncSession, vendor_id: int) -> Vendor:
    vendor = (await db.execute(select(Vendor).where(Vendor.id == vendor_id))).scalar_one_or_none()
    if vendor is None:
        raise VendorNotFound()
    return vendor


async def list_entries(db: AsyncSession, canteen_id: int, day: date) -> list[DailyStockEntry]:
    q = (
        select(DailyStockEntry)
        .where(DailyStockEntry.canteen_id == canteen_id, DailyStockEntry.date == day)
        .order_by(DailyStockEntry.menu_item_id)
        .execution_options(populate_existing=True)
    )
    return list((await db.execute(q)).scalars().all())


async def set_daily_stock(
    db: AsyncSession,
    canteen_id: int,
    day: date,
    entries: Iterable[StockEntryInput],
) -> list[DailyStockEntry]:
    """
    Полная замена остатков точки на дату (удалить + вставить, не слияние).
    Повторная отправка той же формы даёт тот же результат. Нулевые количества пропускаются.
    """
    await _get_vendor(db, canteen_id)
    wanted: dict[int, int] = {}
    for e in entries:
        if e.quantity < 0:
            raise ValidationFailed("Количество не может быть отрицательным", menu_item_id=e.menu_item_id)
        if e.menu_item_id in wanted:
            raise ValidationFailed("Блюдо указано дважды", menu_item_id=e.menu_item_id)
        wanted[e.menu_item_id] = e.quantity
    wanted = {mid: qty for mid, qty in wanted.items() if qty > 0}
    if not wanted:
        raise ValidationFailed("Укажите количество хотя бы для одного блюда")

    r = await db.execute(
        select(MenuItem.id).where(MenuItem.vendor_id == canteen_id, MenuItem.id.in_(list(wanted)))
    )
    known = set(r.scalars().all())
    foreign = sorted(set(wanted) - known)
    if foreign:
        raise ValidationFailed("Блюда не принадлежат этой точке", menu_item_ids=foreign)

    old_rows = [stock_row(e) for e in await list_entries(db, canteen_id, day)]
    await db.execute(
        delete(DailyStockEntry)
        .where(DailyStockEntry.canteen_id == canteen_id, DailyStockEntry.date == day)
        .execution_options(synchronize_session=False)
    )
    created = [
        DailyStockEntry(
            canteen_id=canteen_id,
            menu_item_id=mid,
            date=day,
            total_quantity=qty,
            remaining_quantity=qty,
            status=StockStatus.AVAILABLE,
        )
        for mid, qty in sorted(wanted.items())
    ]
    db.add_all(created)
    await db.flush()

    for row in old_rows:
        record_change(db, TABLE, "DELETE", {}, row)
    for entry in created:
        record_change(db, TABLE, "INSERT", stock_row(entry))
    logger.info("Склад точки %s на %s: %s позиций (было %s)", canteen_id, day, len(created), len(old_rows))
    return created


async def copy_previous_day(db: AsyncSession, canteen_id: int, day: date) -> list[DailyStockEntry]:
    """Выставить склад на дату по общим количествам предыдущего дня."""
    previous = await list_entries(db, canteen_id, day - timedelta(days=1))
    if not previous:
        raise StockEntryNotFound("Нет данных склада за предыдущий день")
    return await set_daily_stock(
        db,
        canteen_id,
        day,
        [StockEntryInput(menu_item_id=e.menu_item_id, quantity=e.total_quantity) for e in previous],
    )


async def decrement(
    db: AsyncSession,
    canteen_id: int,
    menu_item_id: int,
    day: date,
    qty: int,
) -> Optional[DailyStockEntry]:
    """
    Списать qty тогда и только тогда, когда остатка хватает.
    Возвращает обновлённую строку или None, если списать нельзя.
    """
    if qty <= 0:
        raise ValidationFailed("Количество должно быть больше нуля", menu_item_id=menu_item_id)
    where = (
        DailyStockEntry.canteen_id == canteen_id,
        DailyStockEntry.menu_item_id == menu_item_id,
        DailyStockEntry.date == day,
    )
    result = await db.execute(
        update(DailyStockEntry)
        .where(
            *where,
            DailyStockEntry.status == StockStatus.AVAILABLE,
            DailyStockEntry.remaining_quantity >= qty,
        )
        .values(remaining_quantity=DailyStockEntry.remaining_quantity - qty)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    entry = (
        await db.execute(select(DailyStockEntry).where(*where).execution_options(populate_existing=True))
    ).scalar_one()
    record_change(db, TABLE, "UPDATE", stock_row(entry))
    return entry


async def remaining(db: AsyncSession, canteen_id: int, menu_item_id: int, day: date) -> int:
    r = await db.execute(
        select(DailyStockEntry.remaining_quantity, DailyStockEntry.status).where(
            DailyStockEntry.canteen_id == canteen_id,
            DailyStockEntry.menu_item_id == menu_item_id,
            DailyStockEntry.date == day,
        )
    )
    row = r.one_or_none()
    if row is None or row.status == StockStatus.UNAVAILABLE:
        return 0
    return row.remaining_quantity


async def mark_unavailable(db: AsyncSession, entry_id: int) -> DailyStockEntry:
    """Ручное «нет в наличии»: остаток обнуляется и не восстанавливается."""
    result = await db.execute(
        update(DailyStockEntry)
        .where(DailyStockEntry.id == entry_id)
        .values(status=StockStatus.UNAVAILABLE, remaining_quantity=0)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StockEntryNotFound()
    entry = (
        await db.execute(
            select(DailyStockEntry)
            .where(DailyStockEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    record_change(db, TABLE, "UPDATE", stock_row(entry))
    logger.info("Позиция склада id=%s снята с продажи", entry_id)
    return entry


async def get_entry(db: AsyncSession, entry_id: int) -> DailyStockEntry:
    entry = (await db.execute(select(DailyStockEntry).where(DailyStockEntry.id == entry_id))).scalar_one_or_none()
    if entry is None:
        raise StockEntryNotFound()
    return entry


async def stock_info(db: AsyncSession, vendor_id: int, day: date) -> dict:
    """Режим склада точки, строки на дату и доступность каждого блюда меню."""
    vendor = await _get_vendor(db, vendor_id)
    mode = vendor.stock_mode.value
    rows = [stock_row(e) for e in await list_entries(db, vendor_id, day)] if vendor.stock_mode == StockMode.DAILY else []
    by_item = {row["menu_item_id"]: row for row in rows}
    items = (await db.execute(select(MenuItem).where(MenuItem.vendor_id == vendor_id))).scalars().all()
    return {
        "canteen_id": vendor_id,
        "date": day.isoformat(),
        "mode": mode,
        "has_stock_for_day": bool(rows),
        "entries": rows,
        "items": {
            str(item.id): item_availability(mode, by_item.get(item.id), bool(rows), item.is_available)
            for item in items
        },
    }


async def menu_item_availability(db: AsyncSession, menu_item_id: int, day: date) -> dict:
    item = (await db.execute(select(MenuItem).where(MenuItem.id == menu_item_id))).scalar_one_or_none()
    if item is None:
        raise ValidationFailed("Блюдо не найдено", menu_item_id=menu_item_id)
    info = await stock_info(db, item.vendor_id, day)
    return info["items"][str(item.id)]
