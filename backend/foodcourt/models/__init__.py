from foodcourt.core.database import Base
from foodcourt.models.account import Account, AccountRole
from foodcourt.models.vendor import Vendor, VendorKind, StockMode, MenuItem
from foodcourt.models.order import Order, OrderItem, OrderStatus, PaymentStatus, TERMINAL_STATUSES
from foodcourt.models.daily_stock import DailyStockEntry, StockStatus
from foodcourt.models.rejection_notification import OrderRejectionNotification

__all__ = [
    "Base",
    "Account",
    "AccountRole",
    "DailyStockEntry",
    "MenuItem",
    "Order",
    "OrderItem",
    "OrderRejectionNotification",
    "OrderStatus",
    "PaymentStatus",
    "StockMode",
    "StockStatus",
    "TERMINAL_STATUSES",
    "Vendor",
    "VendorKind",
]
