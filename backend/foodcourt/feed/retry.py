"""Повтор с экспоненциальной задержкой для временных сбоев транспорта потока."""
import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from foodcourt.config import settings
from foodcourt.core.errors import FeedUnavailable
from foodcourt.core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base: Optional[float] = None, maximum: Optional[float] = None) -> float:
    """attempt начинается с 1: base, 2*base, 4*base, ... но не больше maximum."""
    base = settings.feed_retry_base_delay if base is None else base
    maximum = settings.feed_retry_max_delay if maximum is None else maximum
    return min(maximum, base * (2 ** max(0, attempt - 1)))


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    retry_on: Tuple[Type[BaseException], ...],
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Вызвать fn; при ошибке из retry_on повторить не более attempts раз.
    Когда попытки кончились — FeedUnavailable.
    """
    attempts = settings.feed_retry_attempts if attempts is None else attempts
    attempt = 0
    while True:
        try:
            return await fn()
        except retry_on as e:
            attempt += 1
            if attempt > attempts:
                raise FeedUnavailable(f"Сервер недоступен после {attempts} повторов: {e}") from e
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.info("Временная ошибка (%s), повтор %s/%s через %.1f с", e, attempt, attempts, delay)
            await sleep(delay)
