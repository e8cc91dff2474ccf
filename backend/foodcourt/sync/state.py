"""
Состояние уведомлений одного клиента поверх ClientStore.

Ключи:
  active_order:{id}        — {orderId, vendorId, pickupCode, estimatedReadyTime}
  sentinel:{kind}:{id}     — эффект kind для заказа id уже сработал
  shared_sentinel:{kind}:{customer} — общий флаг празднования покупателя (значение — id заказа)
  dismissed:{id}           — покупатель скрыл уведомление о заказе
  notice:{id}              — звук по уведомлению об отклонении уже был

Флаг ставится ДО эффекта: сбой между записью и эффектом теряет уведомление,
но никогда не дублирует его.
"""
from typing import Optional

from foodcourt.config import settings
from foodcourt.core.logging_config import get_logger
from foodcourt.sync.effects import NotificationKind
from foodcourt.sync.storage import ClientStore

logger = get_logger(__name__)

SCOPE_ORDER = "order"
SCOPE_CUSTOMER = "customer"


def _active_key(order_id: str) -> str:
    return f"active_order:{order_id}"


def _sentinel_key(kind: str, order_id: str) -> str:
    return f"sentinel:{kind}:{order_id}"


def _shared_key(kind: str, customer_id) -> str:
    return f"shared_sentinel:{kind}:{customer_id}"


def _dismissed_key(order_id: str) -> str:
    return f"dismissed:{order_id}"


def _notice_key(notification_id) -> str:
    return f"notice:{notification_id}"


class NotificationState:
    """
    Общий для всех агентов одной клиентской сессии.
    celebration_scope="customer" — один общий флаг празднования на покупателя:
    второй одновременный заказ не празднуется, пока первый не завершён.
    """

    def __init__(self, store: ClientStore, celebration_scope: Optional[str] = None):
        self.store = store
        self.celebration_scope = celebration_scope or settings.celebration_sentinel_scope
        # Завершённые в этой сессии заказы: запоздалое событие другого агента их не оживит
        self._finished: set[str] = set()

    # -- активный заказ --

    def get_active(self, order_id: str) -> Optional[dict]:
        record = self.store.get_json(_active_key(order_id))
        if not isinstance(record, dict) or record.get("orderId") != order_id:
            return None
        return record

    def save_active(self, row: dict) -> None:
        record = {
            "orderId": row["id"],
            "vendorId": row.get("vendor_id"),
            "pickupCode": row.get("pickup_code"),
            "estimatedReadyTime": row.get("estimated_ready_time"),
        }
        if self.get_active(row["id"]) != record:
            self.store.set_json(_active_key(row["id"]), record)

    def active_order_ids(self) -> list:
        prefix = _active_key("")
        return [k[len(prefix):] for k in self.store.keys(prefix)]

    # -- флаги эффектов --

    def claim(self, kind: NotificationKind, order_id: str, customer_id=None) -> bool:
        """
        True: эффект можно запускать (флаг уже записан), False: уже было.
        Флаг заказа пишется всегда, поэтому агенты с customer_id и без него
        видят одно и то же. В режиме "customer" готовность дополнительно
        занимает общий флаг покупателя.
        """
        if order_id in self._finished:
            return False
        kind = NotificationKind(kind).value
        key = _sentinel_key(kind, order_id)
        if self.store.get(key) is not None:
            return False
        shared = None
        if kind == NotificationKind.READY.value and self.celebration_scope == SCOPE_CUSTOMER:
            if customer_id is None:
                logger.warning("Заказ %s: покупатель неизвестен, общий флаг празднования не проверен", order_id)
            else:
                shared = _shared_key(kind, customer_id)
                holder = self.store.get(shared)
                if holder is not None and holder != order_id:
                    return False
        self.store.set(key, "1")
        if shared is not None:
            self.store.set(shared, order_id)
        return True

    def was_claimed(self, kind: NotificationKind, order_id: str, customer_id=None) -> bool:
        kind = NotificationKind(kind).value
        if self.store.get(_sentinel_key(kind, order_id)) is not None:
            return True
        if customer_id is None:
            return False
        return self.store.get(_shared_key(kind, customer_id)) == order_id

    # -- скрытие --

    def dismiss(self, order_id: str) -> None:
        self.store.set(_dismissed_key(order_id), "1")

    def restore(self, order_id: str) -> None:
        self.store.delete(_dismissed_key(order_id))

    def is_dismissed(self, order_id: str) -> bool:
        return self.store.get(_dismissed_key(order_id)) is not None

    # -- уведомления об отклонении (живут до скрытия) --

    def claim_notice(self, notification_id) -> bool:
        key = _notice_key(notification_id)
        if self.store.get(key) is not None:
            return False
        self.store.set(key, "1")
        return True

    def forget_notice(self, notification_id) -> None:
        self.store.delete(_notice_key(notification_id))

    # -- очистка --

    def purge(self, order_id: str) -> None:
        """Удалить всё, что хранится о заказе; код выдачи и слот можно переиспользовать."""
        self.store.delete(_active_key(order_id))
        self.store.delete(_dismissed_key(order_id))
        for kind in NotificationKind:
            self.store.delete(_sentinel_key(kind.value, order_id))
        for key in list(self.store.keys("shared_sentinel:")):
            if self.store.get(key) == order_id:
                self.store.delete(key)

    def finish(self, order_id: str) -> None:
        """Заказ стал завершённым: очистить хранилище и больше не срабатывать в этой сессии."""
        self._finished.add(order_id)
        self.purge(order_id)
        logger.debug("Состояние заказа %s очищено", order_id)

    def is_finished(self, order_id: str) -> bool:
        return order_id in self._finished

    def clear_session(self) -> None:
        """Выход из аккаунта: забыть всё, что помнилось только в памяти сессии."""
        self._finished.clear()
