import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import String, Enum, Boolean, Integer, Numeric, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from foodcourt.core.clock import utcnow
from foodcourt.core.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    READY = "ready"
    COMPLETED = "completed"
    REJECTED = "rejected"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset((OrderStatus.COMPLETED, OrderStatus.REJECTED))


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_vendor_status", "vendor_id", "status"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    vendor_id: Mapped[int] = mapped_column(ForeignKey("vendors.id"), nullable=False)
    customer_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False, index=True)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.UNPAID, nullable=False
    )
    # Один платёж — один заказ; повтор оформления находит заказ по этой ссылке
    payment_ref: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True)
    pickup_code: Mapped[str] = mapped_column(String(16), nullable=False)
    qr_token: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    qr_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Заполняется ровно один раз — при принятии заказа
    estimated_ready_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Растёт на каждом изменении строки; по нему клиенты отбрасывают дубли событий
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ready_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    vendor = relationship("Vendor")
    items = relationship("OrderItem", back_populates="order", lazy="selectin")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id: Mapped[int] = mapped_column(ForeignKey("menu_items.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(140), nullable=False, default="")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    order = relationship("Order", back_populates="items")
