"""
Поток изменений по HTTP (Server-Sent Events).
Первым кадром приходит `event: subscribed`; после него клиент делает чтение
текущего состояния и применяет события `change` поверх него.
"""
import asyncio
import json
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from foodcourt.api.auth import RequireAnyAuth, RequireVendorAccess, UserInfo
from foodcourt.api.orders import _get_vendor, _managed_vendor
from foodcourt.core.clock import business_date
from foodcourt.core.database import get_db
from foodcourt.core.logging_config import get_logger
from foodcourt.core.permissions import can_view_order, is_admin
from foodcourt.feed.broker import (
    ChangeEvent,
    FeedFilter,
    FeedStatus,
    change_feed,
    capacity_filter,
    customer_orders_filter,
    order_filter,
    rejections_filter,
    stock_filter,
    vendor_orders_filter,
)
from foodcourt.services import order_service

logger = get_logger(__name__)

router = APIRouter(prefix="/feed", tags=["feed"])

KEEPALIVE_SECONDS = 15.0


def change_signal(event: ChangeEvent) -> dict:
    """Только факт изменения, без содержимого строки."""
    return {"seq": event.seq, "table": event.table, "type": event.type, "new": {}, "old": {}, "commit_time": event.commit_time}


def format_frame(event: str, data: dict, event_id: Optional[int] = None) -> str:
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(data, ensure_ascii=False, default=str)}")
    return "\n".join(lines) + "\n\n"


async def event_stream(request: Request, flt: FeedFilter, project=None):
    queue: asyncio.Queue = asyncio.Queue()
    sub = change_feed.subscribe(flt, queue.put, queue.put)
    try:
        while True:
            if await request.is_disconnected():
                break
            try:
                item = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            if isinstance(item, ChangeEvent):
                yield format_frame("change", project(item) if project else item.to_dict(), item.seq)
            elif item == FeedStatus.SUBSCRIBED:
                yield format_frame("subscribed", {"filter": str(flt)})
            elif item == FeedStatus.RECONNECTING:
                # Часть событий потеряна: клиент должен перечитать состояние
                yield format_frame("resync", {"filter": str(flt)})
    finally:
        sub.unsubscribe()
        logger.debug("SSE-подписка %s закрыта", flt)


def _sse(request: Request, flt: FeedFilter, project=None) -> StreamingResponse:
    return StreamingResponse(
        event_stream(request, flt, project),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def _ensure_self(user: UserInfo, customer_id: int) -> None:
    if user.id != customer_id and not is_admin(user.role):
        raise HTTPException(status_code=403, detail="Нет доступа к чужим заказам")


@router.get("/orders/{order_id}")
async def order_feed(
    order_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireAnyAuth),
):
    order = await order_service.get_order(db, order_id)
    vendor = await _get_vendor(db, order.vendor_id)
    if not can_view_order(user.role, user.id, order, vendor):
        raise HTTPException(status_code=403, detail="Нет доступа к заказу")
    return _sse(request, order_filter(order_id))


@router.get("/vendors/{vendor_id}/orders")
async def vendor_orders_feed(
    vendor_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireVendorAccess),
):
    await _managed_vendor(db, vendor_id, user)
    return _sse(request, vendor_orders_filter(vendor_id))


@router.get("/vendors/{vendor_id}/capacity")
async def capacity_feed(
    vendor_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    _user: UserInfo = Depends(RequireAnyAuth),
):
    """Сигнал «загрузка точки изменилась»; саму загрузку клиент перечитывает."""
    await _get_vendor(db, vendor_id)
    return _sse(request, capacity_filter(vendor_id), change_signal)


@router.get("/customers/{customer_id}/orders")
async def customer_orders_feed(
    customer_id: int,
    request: Request,
    user: UserInfo = Depends(RequireAnyAuth),
):
    _ensure_self(user, customer_id)
    return _sse(request, customer_orders_filter(customer_id))


@router.get("/customers/{customer_id}/rejections")
async def rejections_feed(
    customer_id: int,
    request: Request,
    user: UserInfo = Depends(RequireAnyAuth),
):
    _ensure_self(user, customer_id)
    return _sse(request, rejections_filter(customer_id))


@router.get("/stock/{canteen_id}")
async def stock_feed(
    canteen_id: int,
    request: Request,
    day: Optional[date] = None,
    _user: UserInfo = Depends(RequireAnyAuth),
):
    return _sse(request, stock_filter(canteen_id, day or business_date()))
