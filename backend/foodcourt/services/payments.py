"""
Проверка оплаты у платёжного шлюза по ссылке на платёж.
Протокол шлюза — внешний; здесь только вопрос «оплачено или нет».
"""
from decimal import Decimal
from typing import Optional

import httpx

from foodcourt.config import settings
from foodcourt.core.logging_config import get_logger

logger = get_logger(__name__)


class PaymentVerifier:
    async def is_paid(self, payment_ref: str, amount: Decimal) -> bool:
        raise NotImplementedError


class HttpPaymentVerifier(PaymentVerifier):
    def __init__(self, base_url: Optional[str] = None, timeout: float = 10.0):
        self.base_url = (base_url or settings.payment_verify_url).rstrip("/")
        self.timeout = timeout

    async def is_paid(self, payment_ref: str, amount: Decimal) -> bool:
        if not payment_ref:
            return False
        headers = {
            "x-client-id": settings.payment_app_id,
            "x-client-secret": settings.payment_secret_key,
            "x-api-version": "2023-08-01",
        }
        async with httpx.AsyncClient() as client:
            r = await client.get(f"{self.base_url}/{payment_ref}", headers=headers, timeout=self.timeout)
        if r.status_code != 200:
            logger.warning("Проверка оплаты %s: %s %s", payment_ref, r.status_code, r.text)
            return False
        data = r.json()
        if data.get("order_status") != "PAID":
            return False
        paid_amount = data.get("order_amount")
        if paid_amount is not None and Decimal(str(paid_amount)) < amount:
            logger.warning("Оплата %s меньше суммы заказа: %s < %s", payment_ref, paid_amount, amount)
            return False
        return True


def get_payment_verifier() -> PaymentVerifier:
    return HttpPaymentVerifier()
