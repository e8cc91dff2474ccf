from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field


class OrderItemIn(BaseModel):
    menu_item_id: int
    quantity: int = Field(default=1, ge=1, le=50)


class OrderCreate(BaseModel):
    """Оплаченная корзина: точка, позиции и ссылка на платёж в шлюзе."""
    vendor_id: int
    items: List[OrderItemIn] = Field(..., min_length=1)
    payment_ref: str = Field(..., min_length=1, max_length=128)


class PlaceOrderResponse(BaseModel):
    order_id: str
    pickup_code: str
    qr_token: Optional[str] = None
    total: Decimal
    platform_fee: Decimal
    status: str


class AcceptBody(BaseModel):
    # Не указано — время приготовления по умолчанию из настроек
    prep_minutes: Optional[int] = Field(default=None, ge=1)


class AcceptOrderResponse(BaseModel):
    order_id: str
    status: str
    estimated_ready_time: datetime


class RejectBody(BaseModel):
    reason: str = Field(default="", max_length=500)


class StatusResponse(BaseModel):
    order_id: str
    status: str
    version: int


class RedeemQrBody(BaseModel):
    qr_token: str = Field(..., min_length=1)
    vendor_id: int


class RedeemResponse(BaseModel):
    success: bool
    order_id: Optional[str] = None
    message: str = "Заказ выдан"


class CompleteByCodeBody(BaseModel):
    vendor_id: int
    pickup_code: str = Field(..., min_length=1, max_length=16)
