"""Точка питания (столовая или магазин) и её меню."""
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import String, Enum, Boolean, BigInteger, Integer, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from foodcourt.core.clock import utcnow
from foodcourt.core.database import Base


class VendorKind(str, enum.Enum):
    CANTEEN = "canteen"
    SHOP = "shop"


class StockMode(str, enum.Enum):
    SIMPLE = "simple"  # доступность — статичный флаг блюда
    DAILY = "daily"    # доступность — остаток дневного склада


class Vendor(Base):
    __tablename__ = "vendors"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[VendorKind] = mapped_column(Enum(VendorKind), default=VendorKind.CANTEEN, nullable=False)
    is_open: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    stock_mode: Mapped[StockMode] = mapped_column(Enum(StockMode), default=StockMode.SIMPLE, nullable=False)
    # None — без ограничения одновременно готовящихся заказов
    order_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    telegram_chat_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    owner = relationship("Account", back_populates="vendors")
    menu_items = relationship("MenuItem", back_populates="vendor")


class MenuItem(Base):
    __tablename__ = "menu_items"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    vendor_id: Mapped[int] = mapped_column(ForeignKey("vendors.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(140), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    vendor = relationship("Vendor", back_populates="menu_items")
