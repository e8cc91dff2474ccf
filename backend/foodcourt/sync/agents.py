"""
Агенты синхронизации клиента.

Порядок жизни агента: прочитать сохранённое состояние → прочитать текущее
состояние с сервера → подписаться на поток. После каждого (пере)подключения
потока чтение повторяется, так что пропущенные за время обрыва события
восстанавливаются. Строки заказов сравниваются по version: дубли и
устаревшие события отбрасываются, поэтому порядок прихода снимка и событий
не важен.
"""
import asyncio
from datetime import date
from typing import Optional

from foodcourt.core.logging_config import get_logger
from foodcourt.feed.broker import ChangeEvent, FeedStatus
from foodcourt.services.availability import DAILY, SIMPLE, item_availability
from foodcourt.sync.effects import Effects, NotificationKind, fire_safely
from foodcourt.sync.overdue import ServerClock, is_overdue, parse_ts
from foodcourt.sync.state import NotificationState

logger = get_logger(__name__)

PENDING = "pending"
ACCEPTED = "accepted"
READY = "ready"
TERMINAL = frozenset(("completed", "rejected"))


def _version(row: Optional[dict]) -> int:
    try:
        return int((row or {}).get("version") or 0)
    except (TypeError, ValueError):
        return 0


class Agent:
    def __init__(
        self,
        backend,
        state: Optional[NotificationState] = None,
        effects: Optional[Effects] = None,
        clock: Optional[ServerClock] = None,
        tick_interval: Optional[float] = None,
    ):
        self.backend = backend
        self.state = state
        self.effects = effects or Effects()
        self.clock = clock or ServerClock()
        self.tick_interval = tick_interval
        self.feed_status: Optional[FeedStatus] = None
        self._versions: dict[str, int] = {}
        self._subscription = None
        self._ticker: Optional[asyncio.Task] = None
        self._mounted = False
        self._closed = False

    @property
    def failed(self) -> bool:
        return self.feed_status == FeedStatus.FAILED

    async def mount(self) -> None:
        if self._mounted or self._closed:
            return
        self._mounted = True
        self.load_persisted()
        await self.resync()
        # unmount() мог случиться, пока шло чтение
        if self._closed:
            return
        self._subscription = self._subscribe(self._on_event, self._on_status)
        if self.tick_interval:
            self._ticker = asyncio.get_running_loop().create_task(self._tick_loop())

    def unmount(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    async def resync(self) -> None:
        if self._closed:
            return
        snapshot = await self._fetch()
        if self._closed:
            return
        await self._reconcile(snapshot)
        self.tick()

    async def _on_status(self, status: FeedStatus) -> None:
        self.feed_status = status
        if status == FeedStatus.SUBSCRIBED:
            await self.resync()
        elif status == FeedStatus.FAILED:
            logger.warning("%s: поток недоступен, данные могут устареть", type(self).__name__)

    async def _on_event(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        self._apply_event(event)
        self.tick()

    async def _tick_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.tick_interval)
            self.tick()

    def _is_newer(self, row: dict) -> bool:
        """Запоминает версию строки заказа; False — дубль или устаревшее событие."""
        order_id = row.get("id")
        if not order_id:
            return False
        version = _version(row)
        if version <= self._versions.get(order_id, 0):
            return False
        self._versions[order_id] = version
        return True

    def load_persisted(self) -> None:
        pass

    def tick(self) -> None:
        pass

    def _subscribe(self, on_event, on_status):
        raise NotImplementedError

    async def _fetch(self):
        raise NotImplementedError

    async def _reconcile(self, snapshot) -> None:
        raise NotImplementedError

    def _apply_event(self, event: ChangeEvent) -> None:
        raise NotImplementedError


class OrderTimerAgent(Agent):
    """
    Экран активного заказа покупателя: статус, время готовности, празднование
    готовности и сигнал просрочки. Оба эффекта — не больше раза на заказ.
    """

    def __init__(self, backend, state: NotificationState, order_id: str, customer_id=None, **kwargs):
        super().__init__(backend, state, **kwargs)
        self.order_id = order_id
        self.customer_id = customer_id
        self.order: Optional[dict] = None
        self.persisted: Optional[dict] = None

    def load_persisted(self) -> None:
        self.persisted = self.state.get_active(self.order_id)

    @property
    def status(self) -> Optional[str]:
        return self.order["status"] if self.order else None

    @property
    def estimated_ready_time(self):
        if self.order is not None:
            return parse_ts(self.order.get("estimated_ready_time"))
        if self.persisted is not None:
            return parse_ts(self.persisted.get("estimatedReadyTime"))
        return None

    @property
    def is_overdue(self) -> bool:
        return self.status == ACCEPTED and is_overdue(self.estimated_ready_time, self.clock.now())

    def _subscribe(self, on_event, on_status):
        return self.backend.subscribe_order(self.order_id, on_event, on_status)

    async def _fetch(self):
        return await self.backend.fetch_order(self.order_id)

    async def _reconcile(self, row: Optional[dict]) -> None:
        if row is None:
            logger.warning("Заказ %s не найден", self.order_id)
            return
        self.clock.sync(row.get("server_time"))
        self._apply_row(row)

    def _apply_event(self, event: ChangeEvent) -> None:
        if event.table == "orders" and event.new.get("id") == self.order_id:
            self._apply_row(event.new)

    def _apply_row(self, row: dict) -> None:
        if not self._is_newer(row):
            return
        self.order = row
        status = row["status"]
        if status in TERMINAL:
            self.state.finish(self.order_id)
            self.persisted = None
            return
        self.state.save_active(row)
        self.persisted = self.state.get_active(self.order_id)
        if self.customer_id is None:
            self.customer_id = row.get("customer_id")
        if status == READY and self.state.claim(NotificationKind.READY, self.order_id, self.customer_id):
            code = row.get("pickup_code") or ""
            fire_safely(self.effects.celebrate, self.order_id)
            fire_safely(self.effects.play_sound, NotificationKind.READY, self.order_id)
            fire_safely(self.effects.show_banner, NotificationKind.READY, self.order_id, f"Заказ {code} готов!")

    def tick(self) -> None:
        if self.is_overdue and self.state.claim(NotificationKind.OVERDUE, self.order_id):
            fire_safely(self.effects.play_sound, NotificationKind.OVERDUE, self.order_id)
            fire_safely(
                self.effects.show_banner,
                NotificationKind.OVERDUE,
                self.order_id,
                "Заказ задерживается — точка уже готовит его",
            )


class ReadyOrdersAgent(Agent):
    """Список готовых заказов покупателя со скрытием по каждому заказу."""

    def __init__(self, backend, state: NotificationState, customer_id: int, **kwargs):
        super().__init__(backend, state, **kwargs)
        self.customer_id = customer_id
        self.orders: dict[str, dict] = {}

    @property
    def ready_orders(self) -> list:
        rows = [r for r in self.orders.values() if r["status"] == READY]
        return sorted(rows, key=lambda r: r.get("updated_at") or "")

    @property
    def visible_ready(self) -> list:
        return [r for r in self.ready_orders if not self.state.is_dismissed(r["id"])]

    def dismiss(self, order_id: str) -> None:
        self.state.dismiss(order_id)

    def restore(self, order_id: str) -> None:
        self.state.restore(order_id)

    def _subscribe(self, on_event, on_status):
        return self.backend.subscribe_customer_orders(self.customer_id, on_event, on_status)

    async def _fetch(self):
        return await self.backend.fetch_customer_orders(self.customer_id)

    async def _reconcile(self, snapshot: dict) -> None:
        self.clock.sync(snapshot.get("server_time"))
        for row in snapshot.get("orders") or []:
            self._apply_row(row)

    def _apply_event(self, event: ChangeEvent) -> None:
        if event.table == "orders":
            self._apply_row(event.new)

    def _apply_row(self, row: dict) -> None:
        if not self._is_newer(row):
            return
        order_id = row["id"]
        if row["status"] in TERMINAL:
            self.orders.pop(order_id, None)
            self.state.finish(order_id)
            return
        self.orders[order_id] = row
        if row["status"] == READY and self.state.claim(NotificationKind.READY, order_id, self.customer_id):
            fire_safely(self.effects.celebrate, order_id)
            fire_safely(self.effects.play_sound, NotificationKind.READY, order_id)


class VendorOrdersAgent(Agent):
    """
    Доска заказов точки. Новый оплаченный заказ — звук один раз на заказ;
    несколько новых заказов в одном чтении дают один звук.
    Просроченный принятый заказ — сигнал один раз на заказ.
    """

    def __init__(self, backend, state: NotificationState, vendor_id: int, **kwargs):
        super().__init__(backend, state, **kwargs)
        self.vendor_id = vendor_id
        self.board: dict[str, dict] = {}

    def _by_status(self, status: str) -> list:
        rows = [r for r in self.board.values() if r["status"] == status]
        return sorted(rows, key=lambda r: r.get("created_at") or "")

    @property
    def pending(self) -> list:
        return self._by_status(PENDING)

    @property
    def accepted(self) -> list:
        return self._by_status(ACCEPTED)

    @property
    def ready(self) -> list:
        return self._by_status(READY)

    @property
    def overdue(self) -> list:
        now = self.clock.now()
        return [r for r in self.accepted if is_overdue(r.get("estimated_ready_time"), now)]

    def _subscribe(self, on_event, on_status):
        return self.backend.subscribe_vendor_orders(self.vendor_id, on_event, on_status)

    async def _fetch(self):
        return await self.backend.fetch_vendor_board(self.vendor_id)

    async def _reconcile(self, snapshot: dict) -> None:
        self.clock.sync(snapshot.get("server_time"))
        fresh: list[str] = []
        seen = set()
        for row in snapshot.get("orders") or []:
            seen.add(row["id"])
            self._apply_row(row, fresh)
        # Пропавшие с доски заказы завершились, пока поток был оборван
        for order_id in [oid for oid in self.board if oid not in seen]:
            row = await self.backend.fetch_order(order_id)
            if row is None:
                self.board.pop(order_id, None)
            else:
                self._apply_row(row, fresh)
        if fresh:
            self._announce(fresh)

    def _apply_event(self, event: ChangeEvent) -> None:
        if event.table != "orders":
            return
        fresh: list[str] = []
        self._apply_row(event.new, fresh)
        if fresh:
            self._announce(fresh)

    def _apply_row(self, row: dict, fresh: list) -> None:
        if not self._is_newer(row):
            return
        order_id = row["id"]
        if row["status"] in TERMINAL:
            self.board.pop(order_id, None)
            self.state.finish(order_id)
            return
        self.board[order_id] = row
        if (
            row["status"] == PENDING
            and row.get("payment_status") == "paid"
            and self.state.claim(NotificationKind.NEW_ORDER, order_id)
        ):
            fresh.append(order_id)

    def _announce(self, order_ids: list) -> None:
        fire_safely(self.effects.play_sound, NotificationKind.NEW_ORDER, order_ids[0])
        text = "Новый заказ" if len(order_ids) == 1 else f"Новых заказов: {len(order_ids)}"
        fire_safely(self.effects.show_banner, NotificationKind.NEW_ORDER, order_ids[0], text)

    def tick(self) -> None:
        for row in self.overdue:
            if self.state.claim(NotificationKind.OVERDUE, row["id"]):
                fire_safely(self.effects.play_sound, NotificationKind.OVERDUE, row["id"])


class StockAgent(Agent):
    """
    Живая карта остатков точки на дату — только для отображения меню.
    Остаток строки склада только убывает, а «нет в наличии» необратимо,
    поэтому из двух версий одной строки верна меньшая.
    """

    def __init__(self, backend, canteen_id: int, day: date, **kwargs):
        super().__init__(backend, **kwargs)
        self.canteen_id = canteen_id
        self.day = day
        self.mode: Optional[str] = None
        self.entries: dict[int, dict] = {}
        self._simple_items: dict[str, dict] = {}
        self._deleted: set[int] = set()

    @property
    def has_stock_for_day(self) -> bool:
        return bool(self.entries)

    def _entry_for(self, menu_item_id: int) -> Optional[dict]:
        rows = [r for r in self.entries.values() if r["menu_item_id"] == menu_item_id]
        return max(rows, key=lambda r: r["id"]) if rows else None

    def availability(self, menu_item_id: int) -> dict:
        if self.mode == SIMPLE:
            known = self._simple_items.get(str(menu_item_id))
            enabled = bool(known and known.get("available"))
            return item_availability(SIMPLE, None, False, enabled)
        return item_availability(DAILY, self._entry_for(menu_item_id), self.has_stock_for_day)

    def remaining(self, menu_item_id: int) -> int:
        return self.availability(menu_item_id).get("remaining", 0)

    def _subscribe(self, on_event, on_status):
        return self.backend.subscribe_stock(self.canteen_id, self.day, on_event, on_status)

    async def _fetch(self):
        return await self.backend.fetch_stock(self.canteen_id, self.day)

    async def _reconcile(self, snapshot: dict) -> None:
        self.mode = snapshot.get("mode")
        self._simple_items = snapshot.get("items") or {}
        rows = [r for r in snapshot.get("entries") or [] if r["id"] not in self._deleted]
        newest = max((r["id"] for r in rows), default=0)
        snapshot_ids = {r["id"] for r in rows}
        # Строки моложе снимка пришли событием во время чтения, их оставляем
        for entry_id in [i for i in self.entries if i not in snapshot_ids and i <= newest]:
            del self.entries[entry_id]
        for row in rows:
            self._merge(row)

    def _apply_event(self, event: ChangeEvent) -> None:
        if event.table != "daily_stock":
            return
        if event.type == "DELETE":
            entry_id = event.old.get("id")
            self._deleted.add(entry_id)
            self.entries.pop(entry_id, None)
            return
        if event.new.get("id") not in self._deleted:
            self._merge(event.new)

    def _merge(self, row: dict) -> None:
        current = self.entries.get(row["id"])
        if current is None:
            self.entries[row["id"]] = dict(row)
            return
        merged = dict(row)
        merged["remaining_quantity"] = min(current["remaining_quantity"], row["remaining_quantity"])
        if "unavailable" in (current["status"], row["status"]):
            merged["status"] = "unavailable"
            merged["remaining_quantity"] = 0
        self.entries[row["id"]] = merged


class CapacityAgent(Agent):
    """
    Загрузка точки для покупателя: сколько заказов готовится и упёрлась ли
    точка в лимит. Поток несёт только сигнал «изменилось», на каждый сигнал
    загрузка перечитывается целиком.
    """

    def __init__(self, backend, vendor_id: int, **kwargs):
        super().__init__(backend, **kwargs)
        self.vendor_id = vendor_id
        self.capacity: Optional[dict] = None
        self._reads = 0
        self._applied = 0

    @property
    def active_count(self) -> int:
        return (self.capacity or {}).get("active_count", 0)

    @property
    def limit(self) -> Optional[int]:
        return (self.capacity or {}).get("limit")

    @property
    def at_limit(self) -> bool:
        return bool((self.capacity or {}).get("at_limit"))

    async def resync(self) -> None:
        if self._closed:
            return
        self._reads += 1
        ticket = self._reads
        snapshot = await self._fetch()
        # Чтения могут обгонять друг друга: старое не затирает новое
        if self._closed or ticket < self._applied:
            return
        self._applied = ticket
        await self._reconcile(snapshot)

    async def _on_event(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        await self.resync()

    def _subscribe(self, on_event, on_status):
        return self.backend.subscribe_capacity(self.vendor_id, on_event, on_status)

    async def _fetch(self):
        return await self.backend.fetch_capacity(self.vendor_id)

    async def _reconcile(self, snapshot: Optional[dict]) -> None:
        if snapshot is None:
            logger.warning("Точка %s не найдена, загрузка неизвестна", self.vendor_id)
            return
        self.capacity = dict(snapshot)


class RejectionAgent(Agent):
    """Уведомления об отклонённых заказах: звук один раз на уведомление, живут до скрытия."""

    def __init__(self, backend, state: NotificationState, customer_id: int, **kwargs):
        super().__init__(backend, state, **kwargs)
        self.customer_id = customer_id
        self.notices: dict[int, dict] = {}

    @property
    def visible(self) -> list:
        return sorted(self.notices.values(), key=lambda n: n.get("created_at") or "", reverse=True)

    async def dismiss(self, notification_id: int) -> None:
        await self.backend.dismiss_rejection(notification_id, self.customer_id)
        self.notices.pop(notification_id, None)
        self.state.forget_notice(notification_id)

    def _subscribe(self, on_event, on_status):
        return self.backend.subscribe_rejections(self.customer_id, on_event, on_status)

    async def _fetch(self):
        return await self.backend.fetch_rejections(self.customer_id)

    async def _reconcile(self, rows: list) -> None:
        newest = max((n["id"] for n in rows), default=0)
        ids = {n["id"] for n in rows}
        for nid in [i for i in self.notices if i not in ids and i <= newest]:
            self.notices.pop(nid, None)
            self.state.forget_notice(nid)
        for n in rows:
            self._apply_row(n)

    def _apply_event(self, event: ChangeEvent) -> None:
        if event.table == "order_rejection_notifications":
            self._apply_row(event.new)

    def _apply_row(self, n: dict) -> None:
        nid = n["id"]
        if n.get("is_dismissed"):
            self.notices.pop(nid, None)
            self.state.forget_notice(nid)
            return
        self.notices[nid] = n
        if self.state.claim_notice(nid):
            reason = n.get("rejection_reason")
            text = f"{n.get('vendor_name', '')} отклонил(а) заказ"
            if reason:
                text += f": {reason}"
            fire_safely(self.effects.play_sound, NotificationKind.REJECTED, n["order_id"])
            fire_safely(self.effects.show_banner, NotificationKind.REJECTED, n["order_id"], text)
