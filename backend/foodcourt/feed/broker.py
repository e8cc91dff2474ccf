"""
Поток изменений: упорядоченные по строке события INSERT/UPDATE/DELETE для подписчиков.
Доставка «хотя бы один раз»; при переполнении очереди подписчик получает сигнал
пересинхронизации и обязан перечитать состояние.
"""
import asyncio
import enum
import inspect
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from foodcourt.config import settings
from foodcourt.core.clock import utcnow
from foodcourt.core.logging_config import get_logger

logger = get_logger(__name__)


class FeedStatus(str, enum.Enum):
    SUBSCRIBED = "subscribed"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: str  # INSERT / UPDATE / DELETE
    new: dict = field(default_factory=dict)
    old: dict = field(default_factory=dict)
    seq: int = 0
    commit_time: str = ""

    @property
    def row(self) -> dict:
        """Актуальная строка; для DELETE — удалённая."""
        return self.new or self.old

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "type": self.type,
            "new": self.new,
            "old": self.old,
            "seq": self.seq,
            "commit_time": self.commit_time,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChangeEvent":
        return cls(
            table=data["table"],
            type=data["type"],
            new=data.get("new") or {},
            old=data.get("old") or {},
            seq=int(data.get("seq") or 0),
            commit_time=data.get("commit_time") or "",
        )


@dataclass(frozen=True)
class FeedFilter:
    """Фильтр вида "orders:vendor_id=eq.5,status=eq.ready"."""
    table: str
    conditions: tuple = ()

    @classmethod
    def parse(cls, expr: str) -> "FeedFilter":
        table, _, rest = expr.partition(":")
        table = table.strip()
        if not table:
            raise ValueError(f"Пустая таблица в фильтре: {expr!r}")
        conditions = []
        for part in filter(None, (p.strip() for p in rest.split(","))):
            column, sep, value = part.partition("=eq.")
            if not sep or not column:
                raise ValueError(f"Неверное условие фильтра: {part!r}")
            conditions.append((column, value))
        return cls(table=table, conditions=tuple(conditions))

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        row = event.row
        return all(str(row.get(column)) == value for column, value in self.conditions)

    def __str__(self) -> str:
        conds = ",".join(f"{c}=eq.{v}" for c, v in self.conditions)
        return f"{self.table}:{conds}" if conds else self.table


@dataclass(frozen=True)
class AnyFilter:
    """Событие подходит, если подходит под любой из фильтров."""
    filters: tuple

    def matches(self, event: ChangeEvent) -> bool:
        return any(f.matches(event) for f in self.filters)

    def __str__(self) -> str:
        return "|".join(str(f) for f in self.filters)


_RESYNC = object()

EventCallback = Callable[[ChangeEvent], Any]
StatusCallback = Callable[[FeedStatus], Any]


async def _call(fn: Callable, arg) -> None:
    result = fn(arg)
    if inspect.isawaitable(result):
        await result


class Subscription:
    """Подписка на поток. unsubscribe() синхронный и идемпотентный."""

    def __init__(
        self,
        feed: "ChangeFeed",
        flt: FeedFilter,
        on_event: EventCallback,
        on_status: Optional[StatusCallback] = None,
        queue_size: int = 1000,
    ):
        self.filter = flt
        self._feed = feed
        self._on_event = on_event
        self._on_status = on_status
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.closed = False
        self._task = self._loop.create_task(self._run())

    def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._remove(self)
        if not self._task.done():
            self._task.cancel()

    def offer(self, event: ChangeEvent) -> None:
        if self.closed:
            return
        if self._loop.is_closed():
            # Цикл подписчика завершился без unsubscribe()
            self.closed = True
            self._feed._remove(self)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._put(event)
        else:
            self._loop.call_soon_threadsafe(self._put, event)

    def _put(self, item) -> None:
        if self.closed:
            return
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning("Очередь подписки %s переполнена — пересинхронизация", self.filter)
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(_RESYNC)

    async def _status(self, status: FeedStatus) -> None:
        if self._on_status is None:
            return
        try:
            await _call(self._on_status, status)
        except Exception:
            logger.exception("Ошибка обработчика статуса подписки %s", self.filter)

    async def _run(self) -> None:
        await self._status(FeedStatus.SUBSCRIBED)
        while not self.closed:
            item = await self._queue.get()
            if item is _RESYNC:
                await self._status(FeedStatus.RECONNECTING)
                await self._status(FeedStatus.SUBSCRIBED)
                continue
            try:
                await _call(self._on_event, item)
            except Exception:
                logger.exception("Ошибка обработчика события %s seq=%s", item.table, item.seq)


class ChangeFeed:
    def __init__(self, queue_size: int = 1000):
        self.queue_size = queue_size
        self._subscriptions: list[Subscription] = []
        self._seq = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        flt,
        on_event: EventCallback,
        on_status: Optional[StatusCallback] = None,
    ) -> Subscription:
        if isinstance(flt, str):
            flt = FeedFilter.parse(flt)
        sub = Subscription(self, flt, on_event, on_status, self.queue_size)
        self._subscriptions.append(sub)
        logger.debug("Подписка на %s (всего %s)", flt, self.subscriber_count)
        return sub

    def publish(self, table: str, type: str, new: Optional[dict] = None, old: Optional[dict] = None) -> ChangeEvent:
        event = ChangeEvent(
            table=table,
            type=type,
            new=new or {},
            old=old or {},
            seq=next(self._seq),
            commit_time=utcnow().isoformat(),
        )
        for sub in list(self._subscriptions):
            if sub.filter.matches(event):
                sub.offer(event)
        return event

    def _remove(self, sub: Subscription) -> None:
        try:
            self._subscriptions.remove(sub)
        except ValueError:
            pass


change_feed = ChangeFeed(queue_size=settings.feed_queue_size)


def order_filter(order_id: str) -> FeedFilter:
    return FeedFilter("orders", (("id", str(order_id)),))


def vendor_orders_filter(vendor_id: int) -> FeedFilter:
    return FeedFilter("orders", (("vendor_id", str(vendor_id)),))


def customer_orders_filter(customer_id: int) -> FeedFilter:
    return FeedFilter("orders", (("customer_id", str(customer_id)),))


def stock_filter(canteen_id: int, day) -> FeedFilter:
    return FeedFilter("daily_stock", (("canteen_id", str(canteen_id)), ("date", str(day))))


def rejections_filter(customer_id: int) -> FeedFilter:
    return FeedFilter("order_rejection_notifications", (("customer_id", str(customer_id)),))


def capacity_filter(vendor_id: int) -> AnyFilter:
    """Заказы точки и её собственная строка (лимит)."""
    return AnyFilter((vendor_orders_filter(vendor_id), FeedFilter("vendors", (("id", str(vendor_id)),))))
