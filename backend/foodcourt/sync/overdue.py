"""
Просрочка считается из зафиксированного сервером времени готовности
и оценки серверного «сейчас». Никаких хранимых обратных отсчётов.
"""
from datetime import datetime, timedelta
from typing import Optional, Union

from foodcourt.core.clock import utcnow


def parse_ts(value: Union[str, datetime, None]) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    # Сервер отдаёт наивное UTC; aware-значения приводим к нему же
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed


def is_overdue(eta: Union[str, datetime, None], server_now: datetime) -> bool:
    eta = parse_ts(eta)
    if eta is None:
        return False
    return server_now >= eta


class ServerClock:
    """Серверное время = локальное + смещение, измеренное при чтении состояния."""

    def __init__(self, local_now=utcnow):
        self._local_now = local_now
        self.offset = timedelta(0)

    def sync(self, server_time: Union[str, datetime, None]) -> None:
        server = parse_ts(server_time)
        if server is not None:
            self.offset = server - self._local_now()

    def now(self) -> datetime:
        return self._local_now() + self.offset
