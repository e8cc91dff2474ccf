"""Уведомления в Telegram: тексты и отправка без влияния на заказ."""
import asyncio
import json

import httpx

from foodcourt.core.clock import business_date
from foodcourt.core.database import async_session_maker
from foodcourt.models import Account
from foodcourt.services import notify


def test_message_texts():
    assert notify.format_ready_message("Главная столовая", "ABC234") == (
        "✅ Заказ готов!\n\nГлавная столовая\nКод выдачи: ABC234"
    )
    assert "Причина: нет теста" in notify.format_rejected_message("Кафе", "нет теста")
    assert "Причина" not in notify.format_rejected_message("Кафе", None)


def test_send_without_token_is_skipped(monkeypatch):
    monkeypatch.setattr(notify.settings, "telegram_bot_token", "")
    assert asyncio.run(notify.send_message(1, "привет")) is False


def _mock_telegram(monkeypatch, handler):
    real_client = httpx.AsyncClient
    monkeypatch.setattr(notify.settings, "telegram_bot_token", "bot-token")
    monkeypatch.setattr(
        notify.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )


def test_ready_notification_goes_to_customer_chat(world, ops, monkeypatch):
    sent = []

    def handler(request):
        sent.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"ok": True})

    _mock_telegram(monkeypatch, handler)

    async def scenario():
        async with async_session_maker() as db:
            student = await db.get(Account, world.student)
            student.telegram_id = 555
            await db.commit()
        await ops.set_stock(world.canteen, business_date(), [(world.dosa, 2)])
        order = await ops.place(world.student, world.canteen, [(world.dosa, 1)], "pay-1")
        await ops.accept(order.id)
        await ops.ready(order.id)
        await notify.notify_customer_ready(order.id)
        return order

    order = asyncio.run(scenario())
    assert sent == [
        ("/botbot-token/sendMessage", {"chat_id": 555, "text": notify.format_ready_message("Главная столовая", order.pickup_code)})
    ]


def test_telegram_failure_is_swallowed(monkeypatch):
    def handler(request):
        raise httpx.ConnectError("нет сети", request=request)

    _mock_telegram(monkeypatch, handler)
    assert asyncio.run(notify.send_message(1, "привет")) is False
