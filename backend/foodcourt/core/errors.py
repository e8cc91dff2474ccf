"""
Ошибки координатора заказов.
Каждая ошибка знает свой код и HTTP-статус; main.py превращает их в JSON-ответ.
"""
from typing import Optional


class CoordinatorError(Exception):
    code = "error"
    http_status = 400
    default_message = "Ошибка обработки заказа"

    def __init__(self, message: Optional[str] = None, **context):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.context = context

    def to_dict(self) -> dict:
        out = {"detail": self.message, "code": self.code}
        if self.context:
            out.update(self.context)
        return out


class ValidationFailed(CoordinatorError):
    code = "validation_failed"
    http_status = 400
    default_message = "Некорректные данные"


class OrderNotFound(CoordinatorError):
    code = "order_not_found"
    http_status = 404
    default_message = "Заказ не найден"


class VendorNotFound(CoordinatorError):
    code = "vendor_not_found"
    http_status = 404
    default_message = "Точка питания не найдена"


class StockEntryNotFound(CoordinatorError):
    code = "stock_entry_not_found"
    http_status = 404
    default_message = "Запись склада не найдена"


class InvalidTransition(CoordinatorError):
    """Переход статуса недопустим из текущего состояния. Не повторяется."""
    code = "invalid_transition"
    http_status = 409

    def __init__(self, current: str, target: str, message: Optional[str] = None):
        super().__init__(
            message or f"Переход из {current} в {target} невозможен",
            current=current,
            target=target,
        )
        self.current = current
        self.target = target


class OutOfStock(CoordinatorError):
    code = "out_of_stock"
    http_status = 409
    default_message = "Недостаточно остатка"

    def __init__(self, items: list):
        super().__init__(items=items)
        self.items = items


class AtCapacity(CoordinatorError):
    code = "at_capacity"
    http_status = 409

    def __init__(self, active_count: int, limit: int):
        super().__init__(
            f"Достигнут лимит одновременных заказов ({active_count}/{limit})",
            active_count=active_count,
            limit=limit,
        )
        self.active_count = active_count
        self.limit = limit


class VendorClosed(CoordinatorError):
    code = "vendor_closed"
    http_status = 409
    default_message = "Точка сейчас не принимает заказы"


class PaymentNotConfirmed(CoordinatorError):
    code = "payment_not_confirmed"
    http_status = 402
    default_message = "Оплата не подтверждена"


class InvalidToken(CoordinatorError):
    code = "invalid_token"
    http_status = 404
    default_message = "QR-код недействителен"


class AlreadyRedeemed(CoordinatorError):
    code = "already_redeemed"
    http_status = 409
    default_message = "Заказ уже выдан по этому QR-коду"


class NotYetReady(CoordinatorError):
    code = "not_yet_ready"
    http_status = 409
    default_message = "Заказ ещё не готов"


class FeedUnavailable(Exception):
    """Поток изменений недоступен после всех повторных попыток подключения."""
