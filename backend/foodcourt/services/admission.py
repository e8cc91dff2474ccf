"""
Допуск заказов в работу: лимит одновременно готовящихся заказов точки.
Счётчик не хранится — каждый раз пересчитывается из заказов (accepted + paid).
Очередь pending лимитом не ограничена.
"""
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from foodcourt.core.errors import ValidationFailed, VendorNotFound
from foodcourt.core.logging_config import get_logger
from foodcourt.feed.outbox import record_change
from foodcourt.models import Order, OrderStatus, PaymentStatus, Vendor

logger = get_logger(__name__)


def active_count_subquery(vendor_id: int):
    """Скалярный подзапрос для условного UPDATE при принятии заказа."""
    active = aliased(Order)
    return (
        select(func.count())
        .select_from(active)
        .where(
            active.vendor_id == vendor_id,
            active.status == OrderStatus.ACCEPTED,
            active.payment_status == PaymentStatus.PAID,
        )
        .scalar_subquery()
    )


async def active_order_count(db: AsyncSession, vendor_id: int) -> int:
    r = await db.execute(
        select(func.count(Order.id)).where(
            Order.vendor_id == vendor_id,
            Order.status == OrderStatus.ACCEPTED,
            Order.payment_status == PaymentStatus.PAID,
        )
    )
    return int(r.scalar_one() or 0)


async def _get_vendor(db: AsyncSession, vendor_id: int) -> Vendor:
    vendor = (
        await db.execute(select(Vendor).where(Vendor.id == vendor_id).execution_options(populate_existing=True))
    ).scalar_one_or_none()
    if vendor is None:
        raise VendorNotFound()
    return vendor


async def can_admit(db: AsyncSession, vendor_id: int) -> bool:
    vendor = await _get_vendor(db, vendor_id)
    if vendor.order_limit is None:
        return True
    return await active_order_count(db, vendor_id) < vendor.order_limit


async def vendor_capacity(db: AsyncSession, vendor_id: int) -> dict:
    """Подсказка для интерфейса; окончательная проверка — при принятии заказа."""
    vendor = await _get_vendor(db, vendor_id)
    count = await active_order_count(db, vendor_id)
    limit = vendor.order_limit
    return {
        "active_count": count,
        "limit": limit,
        "at_limit": limit is not None and count >= limit,
    }


async def set_order_limit(db: AsyncSession, vendor_id: int, limit) -> Vendor:
    if limit is not None and limit < 1:
        raise ValidationFailed("Лимит должен быть не меньше 1 или не задан")
    vendor = await _get_vendor(db, vendor_id)
    vendor.order_limit = limit
    db.add(vendor)
    await db.flush()
    record_change(db, "vendors", "UPDATE", {"id": vendor.id, "order_limit": limit})
    logger.info("Лимит заказов точки %s: %s", vendor_id, limit if limit is not None else "без ограничения")
    return vendor
