"""Дневной склад: остаток блюда на конкретную дату. Новый день — новые строки."""
import enum
from datetime import date as date_type, datetime
from sqlalchemy import Integer, Date, DateTime, Enum, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from foodcourt.core.clock import utcnow
from foodcourt.core.database import Base


class StockStatus(str, enum.Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class DailyStockEntry(Base):
    """(canteen_id, menu_item_id, date) → общий и оставшийся остаток."""
    __tablename__ = "daily_stock"
    __table_args__ = (
        UniqueConstraint("canteen_id", "menu_item_id", "date", name="uq_daily_stock_item_date"),
        CheckConstraint("remaining_quantity >= 0", name="ck_daily_stock_remaining_nonneg"),
        CheckConstraint("remaining_quantity <= total_quantity", name="ck_daily_stock_remaining_le_total"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    canteen_id: Mapped[int] = mapped_column(ForeignKey("vendors.id"), nullable=False, index=True)
    menu_item_id: Mapped[int] = mapped_column(ForeignKey("menu_items.id"), nullable=False)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    total_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    remaining_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[StockStatus] = mapped_column(
        Enum(StockStatus), default=StockStatus.AVAILABLE, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
