import enum
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Enum, Boolean, BigInteger, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from foodcourt.core.clock import utcnow
from foodcourt.core.database import Base


class AccountRole(str, enum.Enum):
    ROLE_ADMIN = "ROLE_ADMIN"
    ROLE_VENDOR = "ROLE_VENDOR"
    ROLE_STUDENT = "ROLE_STUDENT"


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[AccountRole] = mapped_column(Enum(AccountRole), nullable=False)
    telegram_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    login: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    vendors = relationship("Vendor", back_populates="owner")
