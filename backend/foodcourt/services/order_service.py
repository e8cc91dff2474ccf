"""
Жизненный цикл заказа: pending → accepted → ready → completed, либо pending → rejected.
Каждый переход — один условный UPDATE по ожидаемому статусу. Если строка не
обновилась, заказ перечитывается и выясняется причина отказа.
Транзакцией управляет вызывающий (get_db): при ошибке всё откатывается.
"""
import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from foodcourt.config import settings
from foodcourt.core.clock import business_date, utcnow
from foodcourt.core.errors import (
    AlreadyRedeemed,
    AtCapacity,
    InvalidToken,
    InvalidTransition,
    NotYetReady,
    OrderNotFound,
    OutOfStock,
    PaymentNotConfirmed,
    ValidationFailed,
    VendorClosed,
    VendorNotFound,
)
from foodcourt.core.logging_config import get_logger
from foodcourt.feed.outbox import record_change
from foodcourt.feed.rows import order_row, rejection_row
from foodcourt.models import (
    MenuItem,
    Order,
    OrderItem,
    OrderRejectionNotification,
    OrderStatus,
    PaymentStatus,
    StockMode,
    TERMINAL_STATUSES,
    Vendor,
)
from foodcourt.schemas.order import OrderCreate
from foodcourt.services import admission, stock_ledger
from foodcourt.services.fees import calculate_fees
from foodcourt.services.order_status import ensure_transition
from foodcourt.services.payments import PaymentVerifier

logger = get_logger(__name__)

TABLE = "orders"

# Без похожих символов (0/O, 1/I), чтобы код легко продиктовать
PICKUP_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_pickup_code(length: Optional[int] = None) -> str:
    length = length or settings.pickup_code_length
    return "".join(secrets.choice(PICKUP_ALPHABET) for _ in range(length))


def generate_qr_token() -> str:
    return secrets.token_urlsafe(24)


PICKUP_CODE_ATTEMPTS = 10


async def _free_pickup_code(db: AsyncSession, vendor_id: int) -> str:
    """Код, которого нет у незавершённых заказов точки."""
    for _ in range(PICKUP_CODE_ATTEMPTS):
        code = generate_pickup_code()
        taken = (
            await db.execute(
                select(Order.id).where(
                    Order.vendor_id == vendor_id,
                    Order.pickup_code == code,
                    Order.status.notin_(list(TERMINAL_STATUSES)),
                )
            )
        ).first()
        if taken is None:
            return code
    raise ValidationFailed("Не удалось выдать свободный код выдачи, повторите попытку")


async def get_order(db: AsyncSession, order_id: str) -> Order:
    result = await db.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise OrderNotFound()
    return order


async def _get_vendor(db: AsyncSession, vendor_id: int, for_update: bool = False) -> Vendor:
    q = select(Vendor).where(Vendor.id == vendor_id).execution_options(populate_existing=True)
    if for_update:
        q = q.with_for_update()
    vendor = (await db.execute(q)).scalar_one_or_none()
    if vendor is None:
        raise VendorNotFound()
    return vendor


async def _conditional_update(db: AsyncSession, order_id: str, where: tuple, values: dict) -> bool:
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, *where)
        .values(version=Order.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _transition(
    db: AsyncSession,
    order_id: str,
    expected: OrderStatus,
    target: OrderStatus,
    values: Optional[dict] = None,
) -> Order:
    ensure_transition(expected, target)
    ok = await _conditional_update(
        db, order_id, (Order.status == expected,), {"status": target, **(values or {})}
    )
    order = await get_order(db, order_id)
    if not ok:
        raise InvalidTransition(order.status.value, target.value)
    record_change(db, TABLE, "UPDATE", order_row(order), {"id": order.id, "status": expected.value})
    logger.info("Заказ %s: %s → %s", order.id, expected.value, target.value)
    return order


def _merge_items(data: OrderCreate) -> dict[int, int]:
    merged: dict[int, int] = {}
    for item in data.items:
        merged[item.menu_item_id] = merged.get(item.menu_item_id, 0) + item.quantity
    return merged


async def _order_for_payment(db: AsyncSession, customer_id: int, data: OrderCreate) -> Optional[Order]:
    existing = (
        await db.execute(
            select(Order).where(Order.payment_ref == data.payment_ref).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if existing is None:
        return None
    if existing.customer_id != customer_id or existing.vendor_id != data.vendor_id:
        raise ValidationFailed("Ссылка на платёж уже использована")
    logger.info("Повтор оформления по платежу %s, заказ %s", data.payment_ref, existing.id)
    return existing


async def place_order(
    db: AsyncSession,
    customer_id: int,
    data: OrderCreate,
    verifier: PaymentVerifier,
    now: Optional[datetime] = None,
) -> Order:
    """
    Создать оплаченный заказ в статусе pending.
    В дневном режиме склада остатки списываются все или ни одного (OutOfStock).
    Повтор с той же ссылкой на платёж, в том числе одновременный, возвращает
    уже созданный заказ: вторая вставка упирается в уникальность payment_ref,
    её транзакция со списаниями откатывается.
    """
    now = now or utcnow()
    existing = await _order_for_payment(db, customer_id, data)
    if existing is not None:
        return existing

    vendor = await _get_vendor(db, data.vendor_id)
    if not vendor.is_open:
        raise VendorClosed()

    wanted = _merge_items(data)
    r = await db.execute(
        select(MenuItem).where(MenuItem.vendor_id == vendor.id, MenuItem.id.in_(list(wanted)))
    )
    menu = {m.id: m for m in r.scalars().all()}
    missing = sorted(set(wanted) - set(menu))
    if missing:
        raise ValidationFailed("Блюда не найдены в меню точки", menu_item_ids=missing)

    if vendor.stock_mode == StockMode.SIMPLE:
        disabled = [
            {"menu_item_id": m.id, "name": m.name, "needed": wanted[m.id], "available": 0}
            for m in menu.values()
            if not m.is_available
        ]
        if disabled:
            raise OutOfStock(disabled)

    subtotal = sum((menu[mid].price * qty for mid, qty in wanted.items()), Decimal("0"))
    fees = calculate_fees(subtotal)

    if not await verifier.is_paid(data.payment_ref, fees.total_payable):
        logger.warning("Оплата %s не подтверждена (точка %s)", data.payment_ref, vendor.id)
        raise PaymentNotConfirmed()

    if vendor.stock_mode == StockMode.DAILY:
        day = business_date(now)
        short = []
        for mid, qty in sorted(wanted.items()):
            entry = await stock_ledger.decrement(db, vendor.id, mid, day, qty)
            if entry is None:
                short.append({
                    "menu_item_id": mid,
                    "name": menu[mid].name,
                    "needed": qty,
                    "available": await stock_ledger.remaining(db, vendor.id, mid, day),
                })
        if short:
            logger.info("Недостаточно остатка у точки %s: %s", vendor.id, short)
            raise OutOfStock(short)

    order = Order(
        vendor_id=vendor.id,
        customer_id=customer_id,
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PAID,
        payment_ref=data.payment_ref,
        pickup_code=await _free_pickup_code(db, vendor.id),
        qr_token=generate_qr_token(),
        qr_used=False,
        estimated_ready_time=None,
        total=fees.total_payable,
        platform_fee=fees.platform_fee,
        version=1,
        created_at=now,
        updated_at=now,
        items=[
            OrderItem(
                menu_item_id=mid,
                name=menu[mid].name,
                quantity=qty,
                unit_price=menu[mid].price,
                line_total=menu[mid].price * qty,
            )
            for mid, qty in sorted(wanted.items())
        ],
    )
    db.add(order)
    try:
        await db.flush()
    except IntegrityError:
        # Тот же платёж одновременно оформил другой запрос: его списания уже в силе
        await db.rollback()
        existing = await _order_for_payment(db, customer_id, data)
        if existing is None:
            raise
        return existing
    record_change(db, TABLE, "INSERT", order_row(order))
    logger.info("Создан заказ %s точка=%s сумма=%s", order.id, vendor.id, order.total)
    return order


async def accept_order(
    db: AsyncSession,
    order_id: str,
    prep_minutes: int,
    now: Optional[datetime] = None,
) -> Order:
    """
    pending → accepted. Лимит точки проверяется в момент принятия тем же UPDATE,
    что меняет статус. Время готовности фиксируется один раз и больше не меняется.
    """
    if prep_minutes < 1 or prep_minutes > settings.max_prep_minutes:
        raise ValidationFailed(f"Время приготовления: от 1 до {settings.max_prep_minutes} минут")
    now = now or utcnow()
    order = await get_order(db, order_id)
    ensure_transition(order.status, OrderStatus.ACCEPTED)

    # Блокировка строки точки упорядочивает одновременные принятия (PostgreSQL)
    vendor = await _get_vendor(db, order.vendor_id, for_update=True)
    where = [Order.status == OrderStatus.PENDING, Order.payment_status == PaymentStatus.PAID]
    if vendor.order_limit is not None:
        where.append(admission.active_count_subquery(vendor.id) < vendor.order_limit)

    ok = await _conditional_update(
        db,
        order_id,
        tuple(where),
        {
            "status": OrderStatus.ACCEPTED,
            "estimated_ready_time": now + timedelta(minutes=prep_minutes),
            "accepted_at": now,
        },
    )
    order = await get_order(db, order_id)
    if not ok:
        if order.status != OrderStatus.PENDING:
            raise InvalidTransition(order.status.value, OrderStatus.ACCEPTED.value)
        if order.payment_status != PaymentStatus.PAID:
            raise PaymentNotConfirmed()
        count = await admission.active_order_count(db, vendor.id)
        logger.info("Точка %s на пределе: %s/%s, заказ %s не принят", vendor.id, count, vendor.order_limit, order_id)
        raise AtCapacity(count, vendor.order_limit)

    record_change(db, TABLE, "UPDATE", order_row(order), {"id": order.id, "status": OrderStatus.PENDING.value})
    logger.info("Заказ %s принят, готовность к %s", order.id, order.estimated_ready_time)
    return order


async def reject_order(
    db: AsyncSession,
    order_id: str,
    reason: str = "",
    now: Optional[datetime] = None,
) -> Order:
    """pending → rejected и уведомление покупателю (основание для возврата)."""
    now = now or utcnow()
    reason = (reason or "").strip() or None
    order = await _transition(
        db,
        order_id,
        OrderStatus.PENDING,
        OrderStatus.REJECTED,
        {"rejection_reason": reason, "rejected_at": now},
    )
    vendor = await _get_vendor(db, order.vendor_id)
    notification = OrderRejectionNotification(
        order_id=order.id,
        customer_id=order.customer_id,
        vendor_name=vendor.name,
        rejection_reason=reason,
        created_at=now,
    )
    db.add(notification)
    await db.flush()
    record_change(db, "order_rejection_notifications", "INSERT", rejection_row(notification))
    return order


async def mark_ready(db: AsyncSession, order_id: str, now: Optional[datetime] = None) -> Order:
    return await _transition(
        db, order_id, OrderStatus.ACCEPTED, OrderStatus.READY, {"ready_at": now or utcnow()}
    )


async def complete_order(db: AsyncSession, order_id: str, now: Optional[datetime] = None) -> Order:
    return await _transition(
        db, order_id, OrderStatus.READY, OrderStatus.COMPLETED, {"completed_at": now or utcnow()}
    )


async def complete_by_pickup_code(
    db: AsyncSession,
    vendor_id: int,
    pickup_code: str,
    now: Optional[datetime] = None,
) -> Order:
    code = pickup_code.strip().upper()
    r = await db.execute(
        select(Order).where(
            Order.vendor_id == vendor_id,
            Order.pickup_code == code,
            Order.status.notin_(list(TERMINAL_STATUSES)),
        )
    )
    candidates = list(r.scalars().all())
    ready = [o for o in candidates if o.status == OrderStatus.READY]
    if not ready:
        if candidates:
            raise NotYetReady()
        raise OrderNotFound("Нет активного заказа с таким кодом")
    if len(ready) > 1:
        logger.warning("Код %s совпал у %s готовых заказов точки %s", code, len(ready), vendor_id)
        raise ValidationFailed("Код совпал у нескольких заказов, выдайте по QR", order_ids=[o.id for o in ready])
    return await complete_order(db, ready[0].id, now)


async def redeem_by_qr(
    db: AsyncSession,
    qr_token: str,
    vendor_id: int,
    now: Optional[datetime] = None,
) -> Order:
    """
    Выдача по QR: ready и qr_used = false → completed и qr_used = true одним UPDATE.
    Из двух одновременных попыток успешна ровно одна.
    """
    now = now or utcnow()
    result = await db.execute(
        update(Order)
        .where(
            Order.qr_token == qr_token,
            Order.vendor_id == vendor_id,
            Order.status == OrderStatus.READY,
            Order.qr_used == False,  # noqa: E712
        )
        .values(
            status=OrderStatus.COMPLETED,
            qr_used=True,
            completed_at=now,
            version=Order.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    order = (
        await db.execute(
            select(Order).where(Order.qr_token == qr_token).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()

    if result.rowcount == 1 and order is not None:
        record_change(db, TABLE, "UPDATE", order_row(order), {"id": order.id, "status": OrderStatus.READY.value})
        logger.info("Заказ %s выдан по QR", order.id)
        return order

    if order is None or order.vendor_id != vendor_id or order.status == OrderStatus.REJECTED:
        logger.warning("Недействительный QR-код для точки %s", vendor_id)
        raise InvalidToken()
    if order.qr_used or order.status == OrderStatus.COMPLETED:
        logger.warning("Повторная выдача по QR: заказ %s, точка %s", order.id, vendor_id)
        raise AlreadyRedeemed()
    raise NotYetReady()


async def list_vendor_orders(
    db: AsyncSession,
    vendor_id: int,
    status: Optional[OrderStatus] = None,
    include_terminal: bool = False,
    limit: int = 200,
) -> list[Order]:
    q = select(Order).where(Order.vendor_id == vendor_id).order_by(Order.created_at.desc()).limit(limit)
    if status is not None:
        q = q.where(Order.status == status)
    elif not include_terminal:
        q = q.where(Order.status.notin_(list(TERMINAL_STATUSES)))
    return list((await db.execute(q)).scalars().all())


async def list_customer_orders(
    db: AsyncSession,
    customer_id: int,
    status: Optional[OrderStatus] = None,
    limit: int = 100,
) -> list[Order]:
    q = select(Order).where(Order.customer_id == customer_id).order_by(Order.created_at.desc()).limit(limit)
    if status is not None:
        q = q.where(Order.status == status)
    return list((await db.execute(q)).scalars().all())


async def list_rejections(db: AsyncSession, customer_id: int) -> list[OrderRejectionNotification]:
    q = (
        select(OrderRejectionNotification)
        .where(
            OrderRejectionNotification.customer_id == customer_id,
            OrderRejectionNotification.is_dismissed == False,  # noqa: E712
        )
        .order_by(OrderRejectionNotification.created_at.desc())
    )
    return list((await db.execute(q)).scalars().all())


async def dismiss_rejection(db: AsyncSession, notification_id: int, customer_id: int) -> OrderRejectionNotification:
    n = (
        await db.execute(
            select(OrderRejectionNotification).where(
                OrderRejectionNotification.id == notification_id,
                OrderRejectionNotification.customer_id == customer_id,
            )
        )
    ).scalar_one_or_none()
    if n is None:
        raise OrderNotFound("Уведомление не найдено")
    if not n.is_dismissed:
        n.is_dismissed = True
        db.add(n)
        await db.flush()
        record_change(db, "order_rejection_notifications", "UPDATE", rejection_row(n))
    return n
