"""
Агенты внутри того же процесса, что и сервис: чтения идут прямо в БД,
подписки — в брокер ChangeFeed. Используется воркерами и в тестах.
"""
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from foodcourt.core.clock import utcnow
from foodcourt.core.database import async_session_maker
from foodcourt.core.errors import OrderNotFound
from foodcourt.feed.broker import (
    ChangeFeed,
    change_feed,
    capacity_filter,
    customer_orders_filter,
    order_filter,
    rejections_filter,
    stock_filter,
    vendor_orders_filter,
)
from foodcourt.feed.rows import iso, order_row, rejection_row
from foodcourt.services import admission, order_service, stock_ledger


class LocalBackend:
    def __init__(self, session_maker: Optional[async_sessionmaker] = None, feed: Optional[ChangeFeed] = None):
        self.session_maker = session_maker or async_session_maker
        self.feed = feed or change_feed

    async def fetch_order(self, order_id: str) -> Optional[dict]:
        async with self.session_maker() as db:
            try:
                order = await order_service.get_order(db, order_id)
            except OrderNotFound:
                return None
            return {**order_row(order), "server_time": iso(utcnow())}

    async def fetch_customer_orders(self, customer_id: int) -> dict:
        async with self.session_maker() as db:
            orders = await order_service.list_customer_orders(db, customer_id)
            return {"server_time": iso(utcnow()), "orders": [order_row(o) for o in orders]}

    async def fetch_vendor_board(self, vendor_id: int) -> dict:
        async with self.session_maker() as db:
            orders = await order_service.list_vendor_orders(db, vendor_id)
            return {"server_time": iso(utcnow()), "orders": [order_row(o) for o in orders]}

    async def fetch_stock(self, canteen_id: int, day: date) -> dict:
        async with self.session_maker() as db:
            return await stock_ledger.stock_info(db, canteen_id, day)

    async def fetch_capacity(self, vendor_id: int) -> dict:
        async with self.session_maker() as db:
            return await admission.vendor_capacity(db, vendor_id)

    async def fetch_rejections(self, customer_id: int) -> list:
        async with self.session_maker() as db:
            return [rejection_row(n) for n in await order_service.list_rejections(db, customer_id)]

    async def dismiss_rejection(self, notification_id: int, customer_id: int) -> None:
        async with self.session_maker() as db:
            await order_service.dismiss_rejection(db, notification_id, customer_id)
            await db.commit()

    def subscribe_order(self, order_id: str, on_event, on_status=None):
        return self.feed.subscribe(order_filter(order_id), on_event, on_status)

    def subscribe_customer_orders(self, customer_id: int, on_event, on_status=None):
        return self.feed.subscribe(customer_orders_filter(customer_id), on_event, on_status)

    def subscribe_vendor_orders(self, vendor_id: int, on_event, on_status=None):
        return self.feed.subscribe(vendor_orders_filter(vendor_id), on_event, on_status)

    def subscribe_stock(self, canteen_id: int, day: date, on_event, on_status=None):
        return self.feed.subscribe(stock_filter(canteen_id, day), on_event, on_status)

    def subscribe_rejections(self, customer_id: int, on_event, on_status=None):
        return self.feed.subscribe(rejections_filter(customer_id), on_event, on_status)

    def subscribe_capacity(self, vendor_id: int, on_event, on_status=None):
        return self.feed.subscribe(capacity_filter(vendor_id), on_event, on_status)
