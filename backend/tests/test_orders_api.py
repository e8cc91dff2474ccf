"""Жизненный цикл заказа через HTTP: оформление, принятие, готовность, выдача, отказ."""
import asyncio
from datetime import datetime

import pytest
from sqlalchemy import update

from foodcourt.core.clock import business_date
from foodcourt.core.errors import ValidationFailed
from foodcourt.models import Order, OrderStatus
from foodcourt.services import order_service, stock_ledger


def _stock(client, world, headers, dosa=10, tea=10):
    body = {"entries": [{"menu_item_id": world.dosa, "quantity": dosa}, {"menu_item_id": world.tea, "quantity": tea}]}
    r = client.put(f"/stock/{world.canteen}/{business_date().isoformat()}", json=body, headers=headers)
    assert r.status_code == 200, r.text


def _place(client, world, headers, ref="pay-1", items=None):
    body = {
        "vendor_id": world.canteen,
        "items": items or [{"menu_item_id": world.dosa, "quantity": 1}],
        "payment_ref": ref,
    }
    return client.post("/orders", json=body, headers=headers)


def test_place_order(client, world, student_headers, owner_headers):
    """Оплаченный заказ создаётся в pending без времени готовности; сумма включает сбор."""
    _stock(client, world, owner_headers)
    r = _place(client, world, student_headers, items=[
        {"menu_item_id": world.dosa, "quantity": 1},
        {"menu_item_id": world.tea, "quantity": 1},
    ])
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["status"] == "pending"
    assert len(data["pickup_code"]) == 6
    assert data["qr_token"]
    # 50.00 + сбор: 1.50 не оставляет платформе 0.50 после шлюза, поэтому 1.53
    assert data["total"] == "51.53"

    r = client.get(f"/orders/{data['order_id']}", headers=student_headers)
    order = r.json()
    assert order["estimated_ready_time"] is None
    assert order["version"] == 1
    assert order["qr_token"] == data["qr_token"]
    assert "server_time" in order
    assert [i["quantity"] for i in order["items"]] == [1, 1]


def test_place_order_is_idempotent_by_payment_ref(client, world, student_headers, owner_headers):
    """Повтор оформления с той же ссылкой на платёж возвращает тот же заказ и не списывает склад дважды."""
    _stock(client, world, owner_headers, dosa=3)
    first = _place(client, world, student_headers, ref="pay-same").json()
    second = _place(client, world, student_headers, ref="pay-same").json()
    assert first["order_id"] == second["order_id"]
    r = client.get(f"/stock/items/{world.dosa}", headers=student_headers)
    assert r.json()["remaining"] == 2


def test_concurrent_replay_of_one_payment_creates_one_order(world, ops):
    """Два одновременных оформления с одной ссылкой на платёж: один заказ, одно списание."""
    day = business_date()

    async def scenario():
        await ops.set_stock(world.canteen, day, [(world.dosa, 5)])
        first, second = await asyncio.gather(
            ops.place(world.student, world.canteen, [(world.dosa, 1)], "pay-same"),
            ops.place(world.student, world.canteen, [(world.dosa, 1)], "pay-same"),
        )
        orders = await ops.run(order_service.list_customer_orders, world.student)
        left = await ops.run(stock_ledger.remaining, world.canteen, world.dosa, day)
        return first, second, orders, left

    first, second, orders, left = asyncio.run(scenario())
    assert first.id == second.id
    assert [o.id for o in orders] == [first.id]
    assert left == 4


def test_place_order_failures(client, world, student_headers, owner_headers):
    _stock(client, world, owner_headers, dosa=1)
    r = _place(client, world, student_headers, ref="unpaid-1")
    assert r.status_code == 402
    assert r.json()["code"] == "payment_not_confirmed"

    r = _place(client, world, student_headers, items=[{"menu_item_id": world.dosa, "quantity": 2}])
    assert r.status_code == 409
    assert r.json()["code"] == "out_of_stock"
    assert r.json()["items"][0]["available"] == 1

    r = client.put(f"/vendors/{world.canteen}/open", json={"is_open": False}, headers=owner_headers)
    assert r.status_code == 200
    r = _place(client, world, student_headers, ref="pay-closed")
    assert r.status_code == 409
    assert r.json()["code"] == "vendor_closed"


def test_place_order_requires_student(client, world, owner_headers):
    r = _place(client, world, owner_headers)
    assert r.status_code == 403


def test_vendor_lifecycle(client, world, student_headers, owner_headers):
    """pending → accepted → ready → completed; время готовности фиксируется при принятии."""
    _stock(client, world, owner_headers)
    order_id = _place(client, world, student_headers).json()["order_id"]

    r = client.post(f"/orders/{order_id}/accept", json={"prep_minutes": 20}, headers=owner_headers)
    assert r.status_code == 200, r.text
    eta = r.json()["estimated_ready_time"]
    assert datetime.fromisoformat(eta)

    r = client.get("/orders", params={"vendor_id": world.canteen}, headers=owner_headers)
    assert [o["status"] for o in r.json()["orders"]] == ["accepted"]

    r = client.post(f"/orders/{order_id}/ready", headers=owner_headers)
    assert r.json()["status"] == "ready"
    r = client.post(f"/orders/{order_id}/complete", headers=owner_headers)
    assert r.json() == {"order_id": order_id, "status": "completed", "version": 4}

    r = client.get(f"/orders/{order_id}", headers=owner_headers)
    order = r.json()
    assert datetime.fromisoformat(order["estimated_ready_time"]) == datetime.fromisoformat(eta)
    # QR-токен видит только покупатель
    assert "qr_token" not in order


def test_accept_twice_keeps_first_eta(client, world, student_headers, owner_headers):
    """Повторное принятие — InvalidTransition, время готовности не меняется."""
    _stock(client, world, owner_headers)
    order_id = _place(client, world, student_headers).json()["order_id"]
    first = client.post(f"/orders/{order_id}/accept", json={"prep_minutes": 10}, headers=owner_headers).json()
    r = client.post(f"/orders/{order_id}/accept", json={"prep_minutes": 60}, headers=owner_headers)
    assert r.status_code == 409
    assert r.json()["code"] == "invalid_transition"
    order = client.get(f"/orders/{order_id}", headers=student_headers).json()
    assert datetime.fromisoformat(order["estimated_ready_time"]) == datetime.fromisoformat(first["estimated_ready_time"])
    assert order["status"] == "accepted"


def test_illegal_transitions(client, world, student_headers, owner_headers):
    """Недопустимые переходы отклоняются и не меняют заказ."""
    _stock(client, world, owner_headers)
    order_id = _place(client, world, student_headers).json()["order_id"]

    r = client.post(f"/orders/{order_id}/ready", headers=owner_headers)
    assert r.status_code == 409
    r = client.post(f"/orders/{order_id}/complete", headers=owner_headers)
    assert r.status_code == 409
    client.post(f"/orders/{order_id}/accept", json={}, headers=owner_headers)
    r = client.post(f"/orders/{order_id}/reject", json={"reason": "поздно"}, headers=owner_headers)
    assert r.status_code == 409
    assert r.json()["current"] == "accepted"

    order = client.get(f"/orders/{order_id}", headers=student_headers).json()
    assert order["status"] == "accepted"
    assert order["version"] == 2


def test_accept_prep_minutes_bounds(client, world, student_headers, owner_headers):
    _stock(client, world, owner_headers)
    order_id = _place(client, world, student_headers).json()["order_id"]
    r = client.post(f"/orders/{order_id}/accept", json={"prep_minutes": 10_000}, headers=owner_headers)
    assert r.status_code == 400
    assert r.json()["code"] == "validation_failed"


def test_reject_creates_notification(client, world, student_headers, owner_headers):
    """Отказ создаёт уведомление покупателю; скрытое уведомление пропадает из списка."""
    _stock(client, world, owner_headers)
    order_id = _place(client, world, student_headers).json()["order_id"]
    r = client.post(f"/orders/{order_id}/reject", json={"reason": "Закончилось тесто"}, headers=owner_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "rejected"

    r = client.get("/notifications/rejections", headers=student_headers)
    notices = r.json()
    assert len(notices) == 1
    assert notices[0]["order_id"] == order_id
    assert notices[0]["rejection_reason"] == "Закончилось тесто"
    assert notices[0]["vendor_name"] == "Главная столовая"

    r = client.post(f"/notifications/rejections/{notices[0]['id']}/dismiss", headers=student_headers)
    assert r.json()["is_dismissed"] is True
    assert client.get("/notifications/rejections", headers=student_headers).json() == []


def test_vendor_cannot_touch_other_vendors_orders(client, world, student_headers, owner_headers, other_owner_headers):
    _stock(client, world, owner_headers)
    order_id = _place(client, world, student_headers).json()["order_id"]
    r = client.post(f"/orders/{order_id}/accept", json={}, headers=other_owner_headers)
    assert r.status_code == 403
    r = client.get(f"/orders/{order_id}", headers=other_owner_headers)
    assert r.status_code == 403


def test_customer_sees_only_own_orders(client, world, student_headers, student2_headers, owner_headers):
    _stock(client, world, owner_headers)
    order_id = _place(client, world, student_headers).json()["order_id"]
    assert client.get(f"/orders/{order_id}", headers=student2_headers).status_code == 403
    mine = client.get("/orders/mine", headers=student_headers).json()["orders"]
    assert [o["id"] for o in mine] == [order_id]
    assert client.get("/orders/mine", headers=student2_headers).json()["orders"] == []


def test_complete_by_pickup_code(client, world, student_headers, owner_headers):
    """Выдача по коду: только из ready; до готовности — NotYetReady."""
    _stock(client, world, owner_headers)
    placed = _place(client, world, student_headers).json()
    body = {"vendor_id": world.canteen, "pickup_code": placed["pickup_code"].lower()}
    r = client.post("/orders/complete-by-code", json=body, headers=owner_headers)
    assert r.status_code == 409
    assert r.json()["code"] == "not_yet_ready"

    client.post(f"/orders/{placed['order_id']}/accept", json={}, headers=owner_headers)
    client.post(f"/orders/{placed['order_id']}/ready", headers=owner_headers)
    r = client.post("/orders/complete-by-code", json=body, headers=owner_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "completed"

    r = client.post("/orders/complete-by-code", json=body, headers=owner_headers)
    assert r.status_code == 404


def test_pickup_code_is_not_reused_among_open_orders(world, ops, monkeypatch):
    """Занятый незавершённым заказом код точки не выдаётся второй раз."""
    codes = iter(["SAME22", "SAME22", "OTHER3"])
    monkeypatch.setattr(order_service, "generate_pickup_code", lambda: next(codes))

    async def scenario():
        await ops.set_stock(world.canteen, business_date(), [(world.dosa, 5)])
        first = await ops.place(world.student, world.canteen, [(world.dosa, 1)], "pay-c1")
        second = await ops.place(world.student2, world.canteen, [(world.dosa, 1)], "pay-c2")
        return first, second

    first, second = asyncio.run(scenario())
    assert first.pickup_code == "SAME22"
    assert second.pickup_code == "OTHER3"


def test_complete_by_code_refuses_ambiguous_code(world, ops):
    """Два готовых заказа с одним кодом: выдача по коду отказывает, заказы не трогаются."""

    async def share_code(db, order_id, code):
        await db.execute(update(Order).where(Order.id == order_id).values(pickup_code=code))

    async def scenario():
        await ops.set_stock(world.canteen, business_date(), [(world.dosa, 5)])
        orders = []
        for customer, ref in ((world.student, "pay-a"), (world.student2, "pay-b")):
            order = await ops.place(customer, world.canteen, [(world.dosa, 1)], ref)
            await ops.accept(order.id)
            orders.append(await ops.ready(order.id))
        await ops.run(share_code, orders[1].id, orders[0].pickup_code)
        with pytest.raises(ValidationFailed):
            await ops.run(order_service.complete_by_pickup_code, world.canteen, orders[0].pickup_code)
        return [await ops.get(o.id) for o in orders]

    orders = asyncio.run(scenario())
    assert [o.status for o in orders] == [OrderStatus.READY, OrderStatus.READY]


def test_unknown_order(client, world, owner_headers):
    r = client.post("/orders/nope/ready", headers=owner_headers)
    assert r.status_code == 404
    assert r.json()["code"] == "order_not_found"


def test_simple_mode_vendor(client, world, student_headers):
    """Точка в простом режиме: склад не нужен, выключенное блюдо — OutOfStock."""
    body = {"vendor_id": world.shop, "items": [{"menu_item_id": world.coffee, "quantity": 2}], "payment_ref": "p-1"}
    r = client.post("/orders", json=body, headers=student_headers)
    assert r.status_code == 200, r.text
    body = {"vendor_id": world.shop, "items": [{"menu_item_id": world.cake, "quantity": 1}], "payment_ref": "p-2"}
    r = client.post("/orders", json=body, headers=student_headers)
    assert r.status_code == 409
    assert r.json()["code"] == "out_of_stock"
