"""Побочные эффекты интерфейса: звук, баннер, празднование. Только лучшее усилие."""
import enum
from typing import Callable

from foodcourt.core.logging_config import get_logger

logger = get_logger(__name__)


class NotificationKind(str, enum.Enum):
    READY = "ready"
    OVERDUE = "overdue"
    NEW_ORDER = "new_order"
    REJECTED = "rejected"


class Effects:
    """По умолчанию ничего не делает; интерфейс переопределяет нужные методы."""

    def play_sound(self, kind: NotificationKind, order_id: str) -> None:
        pass

    def show_banner(self, kind: NotificationKind, order_id: str, message: str) -> None:
        pass

    def celebrate(self, order_id: str) -> None:
        pass


def fire_safely(fn: Callable, *args) -> None:
    """Ошибка эффекта пишется в лог и не влияет на состояние агента."""
    try:
        fn(*args)
    except Exception:
        logger.exception("Ошибка эффекта %s%s", getattr(fn, "__name__", fn), args)
