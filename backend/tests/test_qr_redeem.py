"""Выдача по QR-коду: ровно одна успешная попытка на заказ."""
import asyncio

import pytest

from foodcourt.core.clock import business_date
from foodcourt.core.errors import AlreadyRedeemed, InvalidToken, NotYetReady
from foodcourt.models import OrderStatus


def _ready_order(world, ops):
    async def scenario():
        await ops.set_stock(world.canteen, business_date(), [(world.dosa, 5)])
        order = await ops.place(world.student, world.canteen, [(world.dosa, 1)], "pay-qr")
        await ops.accept(order.id)
        return await ops.ready(order.id)

    return asyncio.run(scenario())


def test_concurrent_redeem_single_success(world, ops):
    """Два одновременных сканирования: одно выдаёт заказ, второе — AlreadyRedeemed."""
    order = _ready_order(world, ops)

    async def scenario():
        return await asyncio.gather(
            ops.redeem(order.qr_token, world.canteen),
            ops.redeem(order.qr_token, world.canteen),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())
    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert successes[0].status == OrderStatus.COMPLETED
    assert successes[0].qr_used is True
    assert len(failures) == 1
    assert isinstance(failures[0], AlreadyRedeemed)


def test_redeem_before_ready(world, ops):
    async def scenario():
        await ops.set_stock(world.canteen, business_date(), [(world.dosa, 5)])
        order = await ops.place(world.student, world.canteen, [(world.dosa, 1)], "pay-qr")
        with pytest.raises(NotYetReady):
            await ops.redeem(order.qr_token, world.canteen)
        return await ops.get(order.id)

    order = asyncio.run(scenario())
    assert order.qr_used is False
    assert order.status == OrderStatus.PENDING


def test_redeem_wrong_vendor_or_token(world, ops):
    order = _ready_order(world, ops)
    with pytest.raises(InvalidToken):
        asyncio.run(ops.redeem(order.qr_token, world.shop))
    with pytest.raises(InvalidToken):
        asyncio.run(ops.redeem("no-such-token", world.canteen))
    # Неудачные попытки не испортили заказ
    assert asyncio.run(ops.redeem(order.qr_token, world.canteen)).status == OrderStatus.COMPLETED


def test_redeem_api(client, world, owner_headers, ops):
    order = _ready_order(world, ops)
    body = {"qr_token": order.qr_token, "vendor_id": world.canteen}
    r = client.post("/orders/redeem-qr", json=body, headers=owner_headers)
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert r.json()["order_id"] == order.id

    r = client.post("/orders/redeem-qr", json=body, headers=owner_headers)
    assert r.status_code == 409
    assert r.json()["code"] == "already_redeemed"
