"""Настройки точки: лимит одновременных заказов, режим склада, приём заказов."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from foodcourt.api.auth import RequireAnyAuth, RequireVendorAccess, UserInfo
from foodcourt.api.orders import _get_vendor, _managed_vendor
from foodcourt.core.database import get_db
from foodcourt.core.logging_config import get_logger
from foodcourt.schemas.vendor import CapacityResponse, OpenBody, OrderLimitBody, StockModeBody
from foodcourt.services import admission

logger = get_logger(__name__)

router = APIRouter(prefix="/vendors", tags=["vendors"])


def _vendor_dict(vendor) -> dict:
    return {
        "id": vendor.id,
        "name": vendor.name,
        "kind": vendor.kind.value,
        "is_open": vendor.is_open,
        "stock_mode": vendor.stock_mode.value,
        "order_limit": vendor.order_limit,
    }


@router.get("/{vendor_id}")
async def get_vendor(
    vendor_id: int,
    db: AsyncSession = Depends(get_db),
    _user: UserInfo = Depends(RequireAnyAuth),
):
    return _vendor_dict(await _get_vendor(db, vendor_id))


@router.get("/{vendor_id}/capacity", response_model=CapacityResponse)
async def vendor_capacity(
    vendor_id: int,
    db: AsyncSession = Depends(get_db),
    _user: UserInfo = Depends(RequireAnyAuth),
):
    """Подсказка для интерфейса: сколько заказов готовится и есть ли свободное место."""
    return CapacityResponse(**await admission.vendor_capacity(db, vendor_id))


@router.put("/{vendor_id}/order-limit")
async def set_order_limit(
    vendor_id: int,
    body: OrderLimitBody,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireVendorAccess),
):
    await _managed_vendor(db, vendor_id, user)
    vendor = await admission.set_order_limit(db, vendor_id, body.order_limit)
    return _vendor_dict(vendor)


@router.put("/{vendor_id}/stock-mode")
async def set_stock_mode(
    vendor_id: int,
    body: StockModeBody,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireVendorAccess),
):
    vendor = await _managed_vendor(db, vendor_id, user)
    vendor.stock_mode = body.mode
    db.add(vendor)
    await db.flush()
    logger.info("Режим склада точки %s: %s", vendor_id, body.mode.value)
    return _vendor_dict(vendor)


@router.put("/{vendor_id}/open")
async def set_open(
    vendor_id: int,
    body: OpenBody,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireVendorAccess),
):
    vendor = await _managed_vendor(db, vendor_id, user)
    vendor.is_open = body.is_open
    db.add(vendor)
    await db.flush()
    logger.info("Точка %s %s", vendor_id, "открыта" if body.is_open else "закрыта")
    return _vendor_dict(vendor)
