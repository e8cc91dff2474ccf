"""Дневной склад: замена остатков, списание без гонок, «нет в наличии», доступность."""
import asyncio
from datetime import timedelta

import pytest

from foodcourt.core.clock import business_date
from foodcourt.core.errors import OutOfStock, StockEntryNotFound, ValidationFailed
from foodcourt.models import StockStatus
from foodcourt.services import stock_ledger


def test_set_daily_stock_replaces_instead_of_adding(world, ops):
    """Повторная отправка той же формы не удваивает количества."""
    day = business_date()

    async def scenario():
        await ops.set_stock(world.canteen, day, [(world.dosa, 5), (world.tea, 3)])
        await ops.set_stock(world.canteen, day, [(world.dosa, 5), (world.tea, 3)])
        return await ops.run(stock_ledger.list_entries, world.canteen, day)

    entries = asyncio.run(scenario())
    assert sorted((e.menu_item_id, e.total_quantity, e.remaining_quantity) for e in entries) == sorted(
        [(world.dosa, 5, 5), (world.tea, 3, 3)]
    )


def test_set_daily_stock_drops_items_missing_from_new_form(world, ops):
    """Блюдо, которого нет в новой форме (или с нулём), исчезает со склада на эту дату."""
    day = business_date()

    async def scenario():
        await ops.set_stock(world.canteen, day, [(world.dosa, 5), (world.tea, 3)])
        await ops.set_stock(world.canteen, day, [(world.dosa, 2), (world.tea, 0)])
        return await ops.run(stock_ledger.list_entries, world.canteen, day)

    entries = asyncio.run(scenario())
    assert [(e.menu_item_id, e.remaining_quantity) for e in entries] == [(world.dosa, 2)]


def test_set_daily_stock_validation(world, ops):
    day = business_date()
    with pytest.raises(ValidationFailed):
        asyncio.run(ops.set_stock(world.canteen, day, [(world.dosa, 0)]))
    with pytest.raises(ValidationFailed):
        asyncio.run(ops.set_stock(world.canteen, day, [(world.coffee, 3)]))
    with pytest.raises(ValidationFailed):
        asyncio.run(ops.set_stock(world.canteen, day, [(world.dosa, 1), (world.dosa, 2)]))


def test_copy_previous_day_uses_total_quantity(world, ops):
    """Копия вчерашнего склада берёт общие количества, а не остатки."""
    today = business_date()
    yesterday = today - timedelta(days=1)

    async def scenario():
        await ops.set_stock(world.canteen, yesterday, [(world.dosa, 4)])
        assert await ops.run(stock_ledger.decrement, world.canteen, world.dosa, yesterday, 3) is not None
        await ops.run(stock_ledger.copy_previous_day, world.canteen, today)
        return await ops.run(stock_ledger.list_entries, world.canteen, today)

    entries = asyncio.run(scenario())
    assert [(e.total_quantity, e.remaining_quantity) for e in entries] == [(4, 4)]


def test_copy_previous_day_without_data(world, ops):
    with pytest.raises(StockEntryNotFound):
        asyncio.run(ops.run(stock_ledger.copy_previous_day, world.canteen, business_date()))


def test_decrement_never_goes_negative_under_concurrency(world, ops):
    """Пять одновременных списаний по одному при остатке 3: успешны ровно три."""
    day = business_date()

    async def scenario():
        await ops.set_stock(world.canteen, day, [(world.dosa, 3)])
        results = await asyncio.gather(
            *[ops.run(stock_ledger.decrement, world.canteen, world.dosa, day, 1) for _ in range(5)]
        )
        left = await ops.run(stock_ledger.remaining, world.canteen, world.dosa, day)
        return results, left

    results, left = asyncio.run(scenario())
    assert sum(1 for r in results if r is not None) == 3
    assert left == 0


def test_last_unit_two_simultaneous_orders(world, ops):
    """Остаток 1, два заказа «одновременно»: один проходит, второй — OutOfStock."""
    day = business_date()

    async def scenario():
        await ops.set_stock(world.canteen, day, [(world.dosa, 1)])
        results = await asyncio.gather(
            ops.place(world.student, world.canteen, [(world.dosa, 1)], "pay-a"),
            ops.place(world.student2, world.canteen, [(world.dosa, 1)], "pay-b"),
            return_exceptions=True,
        )
        left = await ops.run(stock_ledger.remaining, world.canteen, world.dosa, day)
        return results, left

    results, left = asyncio.run(scenario())
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], OutOfStock)
    assert failures[0].items[0]["menu_item_id"] == world.dosa
    assert left == 0


def test_order_is_all_or_nothing_across_items(world, ops):
    """Если не хватает одного блюда, остатки других не списываются."""
    day = business_date()

    async def scenario():
        await ops.set_stock(world.canteen, day, [(world.dosa, 5), (world.tea, 1)])
        with pytest.raises(OutOfStock) as exc:
            await ops.place(world.student, world.canteen, [(world.dosa, 2), (world.tea, 2)], "pay-1")
        dosa_left = await ops.run(stock_ledger.remaining, world.canteen, world.dosa, day)
        tea_left = await ops.run(stock_ledger.remaining, world.canteen, world.tea, day)
        return exc.value, dosa_left, tea_left

    err, dosa_left, tea_left = asyncio.run(scenario())
    assert err.items == [{"menu_item_id": world.tea, "name": "Чай", "needed": 2, "available": 1}]
    assert (dosa_left, tea_left) == (5, 1)


def test_mark_unavailable_zeroes_and_blocks_orders(world, ops):
    day = business_date()

    async def scenario():
        entries = await ops.set_stock(world.canteen, day, [(world.dosa, 5)])
        entry = await ops.run(stock_ledger.mark_unavailable, entries[0].id)
        with pytest.raises(OutOfStock):
            await ops.place(world.student, world.canteen, [(world.dosa, 1)], "pay-1")
        return entry

    entry = asyncio.run(scenario())
    assert entry.status == StockStatus.UNAVAILABLE
    assert entry.remaining_quantity == 0
    assert entry.total_quantity == 5


def test_mark_unavailable_unknown_entry(world, ops):
    with pytest.raises(StockEntryNotFound):
        asyncio.run(ops.run(stock_ledger.mark_unavailable, 999))


def test_stock_info_reasons(world, ops):
    """Причины недоступности: склад не выставлен, блюда нет в форме, распродано."""
    day = business_date()

    async def scenario():
        before = await ops.run(stock_ledger.stock_info, world.canteen, day)
        await ops.set_stock(world.canteen, day, [(world.dosa, 1)])
        await ops.run(stock_ledger.decrement, world.canteen, world.dosa, day, 1)
        after = await ops.run(stock_ledger.stock_info, world.canteen, day)
        return before, after

    before, after = asyncio.run(scenario())
    assert before["has_stock_for_day"] is False
    assert before["items"][str(world.dosa)] == {"available": False, "mode": "daily", "reason": "Stock not set"}
    assert after["items"][str(world.dosa)]["reason"] == "Sold out"
    assert after["items"][str(world.tea)]["reason"] == "Not in stock"


def test_simple_mode_ignores_ledger(world, ops):
    """В простом режиме доступность — флаг блюда, склад не участвует."""
    info = asyncio.run(ops.run(stock_ledger.stock_info, world.shop, business_date()))
    assert info["mode"] == "simple"
    assert info["items"][str(world.coffee)] == {"available": True, "mode": "simple"}
    assert info["items"][str(world.cake)]["available"] is False


def test_stock_api(client, world, owner_headers, other_owner_headers, student_headers):
    """PUT склада — только владелец точки; GET доступности — любой авторизованный."""
    day = business_date().isoformat()
    body = {"entries": [{"menu_item_id": world.dosa, "quantity": 2}]}
    r = client.put(f"/stock/{world.canteen}/{day}", json=body, headers=other_owner_headers)
    assert r.status_code == 403
    r = client.put(f"/stock/{world.canteen}/{day}", json=body, headers=owner_headers)
    assert r.status_code == 200, r.text
    entry_id = r.json()["entries"][0]["id"]

    r = client.get(f"/stock/items/{world.dosa}", headers=student_headers)
    assert r.json() == {"available": True, "mode": "daily", "remaining": 2}

    r = client.put(f"/stock/entries/{entry_id}/unavailable", headers=owner_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "unavailable"

    r = client.get(f"/stock/{world.canteen}/{day}", headers=student_headers)
    assert r.json()["items"][str(world.dosa)]["reason"] == "Sold out"
