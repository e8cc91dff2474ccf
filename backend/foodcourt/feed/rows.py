"""Строки таблиц в том виде, в каком их видят подписчики потока и клиенты."""
from datetime import datetime
from typing import Optional

from foodcourt.models import DailyStockEntry, Order, OrderRejectionNotification


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def order_row(order: Order) -> dict:
    return {
        "id": order.id,
        "vendor_id": order.vendor_id,
        "customer_id": order.customer_id,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "pickup_code": order.pickup_code,
        "qr_used": order.qr_used,
        "estimated_ready_time": iso(order.estimated_ready_time),
        "total": str(order.total),
        "platform_fee": str(order.platform_fee),
        "rejection_reason": order.rejection_reason,
        "version": order.version,
        "created_at": iso(order.created_at),
        "updated_at": iso(order.updated_at),
        "items": [
            {
                "menu_item_id": item.menu_item_id,
                "name": item.name,
                "quantity": item.quantity,
                "unit_price": str(item.unit_price),
            }
            for item in order.items
        ],
    }


def stock_row(entry: DailyStockEntry) -> dict:
    return {
        "id": entry.id,
        "canteen_id": entry.canteen_id,
        "menu_item_id": entry.menu_item_id,
        "date": entry.date.isoformat(),
        "total_quantity": entry.total_quantity,
        "remaining_quantity": entry.remaining_quantity,
        "status": entry.status.value,
    }


def rejection_row(n: OrderRejectionNotification) -> dict:
    return {
        "id": n.id,
        "order_id": n.order_id,
        "customer_id": n.customer_id,
        "vendor_name": n.vendor_name,
        "rejection_reason": n.rejection_reason,
        "is_dismissed": n.is_dismissed,
        "created_at": iso(n.created_at),
    }
