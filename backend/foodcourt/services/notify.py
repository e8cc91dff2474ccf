"""
Уведомления в Telegram: покупателю — «заказ готов» / «заказ отклонён»,
точке — «новый заказ». Лучшее усилие: ошибки пишутся в лог и не пробрасываются.
Вызываются фоновыми задачами после ответа, поэтому открывают свою сессию БД.
"""
from typing import Optional

import httpx
from sqlalchemy import select

from foodcourt.config import settings
from foodcourt.core.database import async_session_maker
from foodcourt.core.logging_config import get_logger
from foodcourt.models import Account, Order, Vendor

logger = get_logger(__name__)


def _get_bot_token() -> Optional[str]:
    return settings.telegram_bot_token or None


async def send_message(chat_id: int, text: str) -> bool:
    token = _get_bot_token()
    if not token:
        logger.warning("TELEGRAM_BOT_TOKEN не задан — уведомление не отправлено")
        return False
    url = f"https://api.telegram.org/bot{token}/sendMessage"
    try:
        async with httpx.AsyncClient() as client:
            r = await client.post(url, json={"chat_id": chat_id, "text": text}, timeout=10.0)
        if r.status_code != 200:
            logger.warning("Telegram sendMessage %s: %s", r.status_code, r.text)
            return False
        return True
    except httpx.HTTPError as e:
        logger.exception("Ошибка отправки в Telegram chat_id=%s: %s", chat_id, e)
        return False


async def _load(order_id: str):
    async with async_session_maker() as session:
        r = await session.execute(
            select(Order, Vendor, Account)
            .join(Vendor, Vendor.id == Order.vendor_id)
            .join(Account, Account.id == Order.customer_id)
            .where(Order.id == order_id)
        )
        return r.one_or_none()


def format_ready_message(vendor_name: str, pickup_code: str) -> str:
    return f"✅ Заказ готов!\n\n{vendor_name}\nКод выдачи: {pickup_code}"


def format_rejected_message(vendor_name: str, reason: Optional[str]) -> str:
    text = f"❌ {vendor_name} отклонил(а) заказ."
    if reason:
        text += f"\nПричина: {reason}"
    return text + "\nДеньги будут возвращены."


def format_new_order_message(order: Order) -> str:
    lines = [f"🆕 Новый заказ {order.pickup_code}", f"Сумма: {order.total}"]
    lines += [f"• {item.name} × {item.quantity}" for item in order.items]
    return "\n".join(lines)


async def notify_customer_ready(order_id: str) -> None:
    row = await _load(order_id)
    if row is None:
        return
    order, vendor, customer = row
    if not customer.telegram_id:
        return
    await send_message(customer.telegram_id, format_ready_message(vendor.name, order.pickup_code))


async def notify_customer_rejected(order_id: str) -> None:
    row = await _load(order_id)
    if row is None:
        return
    order, vendor, customer = row
    if not customer.telegram_id:
        return
    await send_message(customer.telegram_id, format_rejected_message(vendor.name, order.rejection_reason))


async def notify_vendor_new_order(order_id: str) -> None:
    row = await _load(order_id)
    if row is None:
        return
    order, vendor, _ = row
    if not vendor.telegram_chat_id:
        logger.info("У точки %s нет telegram_chat_id — уведомление не отправлено", vendor.id)
        return
    await send_message(vendor.telegram_chat_id, format_new_order_message(order))
