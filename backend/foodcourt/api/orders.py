from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from foodcourt.api.auth import RequireAnyAuth, RequireStudent, RequireVendorAccess, UserInfo
from foodcourt.config import settings
from foodcourt.core.clock import utcnow
from foodcourt.core.database import get_db
from foodcourt.core.errors import VendorNotFound
from foodcourt.core.logging_config import get_logger
from foodcourt.core.permissions import can_manage_vendor, can_see_qr, can_view_order
from foodcourt.feed.rows import iso, order_row
from foodcourt.models import Order, OrderStatus, Vendor
from foodcourt.schemas.order import (
    AcceptBody,
    AcceptOrderResponse,
    CompleteByCodeBody,
    OrderCreate,
    PlaceOrderResponse,
    RedeemQrBody,
    RedeemResponse,
    RejectBody,
    StatusResponse,
)
from foodcourt.services import notify, order_service
from foodcourt.services.payments import PaymentVerifier, get_payment_verifier

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


async def _get_vendor(db: AsyncSession, vendor_id: int) -> Vendor:
    vendor = (await db.execute(select(Vendor).where(Vendor.id == vendor_id))).scalar_one_or_none()
    if vendor is None:
        raise VendorNotFound()
    return vendor


async def _managed_vendor(db: AsyncSession, vendor_id: int, user: UserInfo) -> Vendor:
    vendor = await _get_vendor(db, vendor_id)
    if not can_manage_vendor(user.role, user.id, vendor):
        raise HTTPException(status_code=403, detail="Нет доступа к этой точке")
    return vendor


async def _managed_order(db: AsyncSession, order_id: str, user: UserInfo) -> Order:
    order = await order_service.get_order(db, order_id)
    await _managed_vendor(db, order.vendor_id, user)
    return order


def _status(order: Order) -> StatusResponse:
    return StatusResponse(order_id=order.id, status=order.status.value, version=order.version)


@router.post("", response_model=PlaceOrderResponse)
async def place_order(
    data: OrderCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireStudent),
    verifier: PaymentVerifier = Depends(get_payment_verifier),
):
    """Оформить оплаченный заказ. Точка получает его в статусе pending."""
    order = await order_service.place_order(db, user.id, data, verifier)
    await db.commit()
    background_tasks.add_task(notify.notify_vendor_new_order, order.id)
    return PlaceOrderResponse(
        order_id=order.id,
        pickup_code=order.pickup_code,
        qr_token=order.qr_token,
        total=order.total,
        platform_fee=order.platform_fee,
        status=order.status.value,
    )


@router.get("/mine")
async def my_orders(
    status: Optional[OrderStatus] = None,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireAnyAuth),
):
    """Заказы текущего покупателя, новые сверху."""
    orders = await order_service.list_customer_orders(db, user.id, status)
    return {
        "server_time": iso(utcnow()),
        "orders": [{**order_row(o), "qr_token": o.qr_token} for o in orders],
    }


@router.get("")
async def vendor_orders(
    vendor_id: int,
    status: Optional[OrderStatus] = None,
    include_terminal: bool = False,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireVendorAccess),
):
    """Доска заказов точки: по умолчанию только незавершённые."""
    await _managed_vendor(db, vendor_id, user)
    orders = await order_service.list_vendor_orders(db, vendor_id, status, include_terminal)
    return {"server_time": iso(utcnow()), "orders": [order_row(o) for o in orders]}


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireAnyAuth),
):
    """Текущее состояние заказа и серверное время — чтение перед подпиской на поток."""
    order = await order_service.get_order(db, order_id)
    vendor = await _get_vendor(db, order.vendor_id)
    if not can_view_order(user.role, user.id, order, vendor):
        raise HTTPException(status_code=403, detail="Нет доступа к заказу")
    row = order_row(order)
    if can_see_qr(user.id, order):
        row["qr_token"] = order.qr_token
    row["vendor_name"] = vendor.name
    row["vendor_kind"] = vendor.kind.value
    row["server_time"] = iso(utcnow())
    return row


@router.post("/{order_id}/accept", response_model=AcceptOrderResponse)
async def accept_order(
    order_id: str,
    body: AcceptBody,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireVendorAccess),
):
    """Принять заказ в работу. Отказ AtCapacity, если точка на пределе."""
    await _managed_order(db, order_id, user)
    prep = body.prep_minutes or settings.default_prep_minutes
    order = await order_service.accept_order(db, order_id, prep)
    return AcceptOrderResponse(
        order_id=order.id,
        status=order.status.value,
        estimated_ready_time=order.estimated_ready_time,
    )


@router.post("/{order_id}/reject", response_model=StatusResponse)
async def reject_order(
    order_id: str,
    body: RejectBody,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireVendorAccess),
):
    """Отклонить заказ; покупатель получает уведомление для возврата денег."""
    await _managed_order(db, order_id, user)
    order = await order_service.reject_order(db, order_id, body.reason)
    await db.commit()
    background_tasks.add_task(notify.notify_customer_rejected, order.id)
    return _status(order)


@router.post("/{order_id}/ready", response_model=StatusResponse)
async def mark_ready(
    order_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireVendorAccess),
):
    await _managed_order(db, order_id, user)
    order = await order_service.mark_ready(db, order_id)
    await db.commit()
    background_tasks.add_task(notify.notify_customer_ready, order.id)
    return _status(order)


@router.post("/{order_id}/complete", response_model=StatusResponse)
async def complete_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireVendorAccess),
):
    await _managed_order(db, order_id, user)
    order = await order_service.complete_order(db, order_id)
    return _status(order)


@router.post("/redeem-qr", response_model=RedeemResponse)
async def redeem_qr(
    body: RedeemQrBody,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireVendorAccess),
):
    """Выдача заказа по QR-коду покупателя. Повторное сканирование — AlreadyRedeemed."""
    await _managed_vendor(db, body.vendor_id, user)
    order = await order_service.redeem_by_qr(db, body.qr_token, body.vendor_id)
    return RedeemResponse(success=True, order_id=order.id)


@router.post("/complete-by-code", response_model=StatusResponse)
async def complete_by_code(
    body: CompleteByCodeBody,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireVendorAccess),
):
    """Выдача по коду, который покупатель называет на кассе."""
    await _managed_vendor(db, body.vendor_id, user)
    order = await order_service.complete_by_pickup_code(db, body.vendor_id, body.pickup_code)
    return _status(order)
