"""
Клиентская сторона потока изменений поверх HTTP.
HttpFeedClient держит SSE-соединение и переподключается с экспоненциальной
задержкой; после каждого (пере)подключения сообщает SUBSCRIBED, и агент
делает свежее чтение состояния, чтобы закрыть пропуск.
"""
import asyncio
import inspect
import json
from datetime import date
from typing import AsyncIterator, Optional

import httpx

from foodcourt.config import settings
from foodcourt.core.logging_config import get_logger
from foodcourt.feed.broker import ChangeEvent, EventCallback, FeedStatus, StatusCallback
from foodcourt.feed.retry import backoff_delay, with_retry

logger = get_logger(__name__)


class FeedRejected(Exception):
    """Сервер отказал в подписке (4xx) — повторять бессмысленно."""


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[tuple]:
    """Разбор text/event-stream: (event, data, id) на каждый кадр. Комментарии пропускаются."""
    event, data, event_id = "message", [], None
    async for line in lines:
        if line == "":
            if data:
                yield event, "\n".join(data), event_id
            event, data, event_id = "message", [], None
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
        elif field == "id":
            event_id = value


class HttpSubscription:
    """Живое SSE-соединение. unsubscribe() синхронный и идемпотентный."""

    def __init__(
        self,
        client: "HttpFeedClient",
        path: str,
        on_event: EventCallback,
        on_status: Optional[StatusCallback] = None,
    ):
        self.path = path
        self._client = client
        self._on_event = on_event
        self._on_status = on_status
        self.closed = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        if not self._task.done():
            self._task.cancel()

    async def _emit(self, fn, arg) -> None:
        if fn is None:
            return
        try:
            result = fn(arg)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Ошибка обработчика подписки %s", self.path)

    async def _stream_once(self) -> None:
        async with self._client.http.stream("GET", self.path, headers=self._client.headers) as r:
            if 400 <= r.status_code < 500:
                await r.aread()
                raise FeedRejected(f"{r.status_code}: {r.text}")
            r.raise_for_status()
            async for event, data, _ in iter_sse(r.aiter_lines()):
                if event == "subscribed":
                    self._attempt = 0
                    await self._emit(self._on_status, FeedStatus.SUBSCRIBED)
                elif event == "resync":
                    await self._emit(self._on_status, FeedStatus.RECONNECTING)
                    await self._emit(self._on_status, FeedStatus.SUBSCRIBED)
                elif event == "change":
                    await self._emit(self._on_event, ChangeEvent.from_dict(json.loads(data)))

    async def _run(self) -> None:
        self._attempt = 0
        while not self.closed:
            try:
                await self._stream_once()
                reason = "сервер закрыл поток"
            except FeedRejected as e:
                logger.warning("Подписка %s отклонена сервером: %s", self.path, e)
                await self._emit(self._on_status, FeedStatus.FAILED)
                return
            except (httpx.HTTPError, ValueError) as e:
                reason = str(e) or type(e).__name__
            if self.closed:
                return
            self._attempt += 1
            if self._attempt > self._client.attempts:
                logger.warning("Подписка %s: попытки исчерпаны (%s)", self.path, reason)
                await self._emit(self._on_status, FeedStatus.FAILED)
                return
            delay = backoff_delay(self._attempt, self._client.base_delay, self._client.max_delay)
            logger.info("Подписка %s оборвалась (%s), повтор через %.1f с", self.path, reason, delay)
            await self._emit(self._on_status, FeedStatus.RECONNECTING)
            await asyncio.sleep(delay)


class HttpFeedClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        token: Optional[str] = None,
        attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
    ):
        self.http = http
        self.headers = {"Accept": "text/event-stream"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self.attempts = settings.feed_retry_attempts if attempts is None else attempts
        self.base_delay = settings.feed_retry_base_delay if base_delay is None else base_delay
        self.max_delay = settings.feed_retry_max_delay if max_delay is None else max_delay

    def subscribe(
        self,
        path: str,
        on_event: EventCallback,
        on_status: Optional[StatusCallback] = None,
    ) -> HttpSubscription:
        return HttpSubscription(self, path, on_event, on_status)


class HttpBackend:
    """Чтения состояния и подписки агентов через HTTP API сервиса."""

    def __init__(self, base_url: str, token: str, http: Optional[httpx.AsyncClient] = None, **feed_options):
        self.http = http or httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(10.0, read=None))
        self.headers = {"Authorization": f"Bearer {token}"}
        self.feed = HttpFeedClient(self.http, token, **feed_options)

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _get(self, path: str, **params):
        async def call():
            r = await self.http.get(path, headers=self.headers, params=params or None)
            if r.status_code == 404:
                return None
            r.raise_for_status()
            return r.json()
        return await with_retry(
            call,
            (httpx.TransportError,),
            self.feed.attempts,
            self.feed.base_delay,
            self.feed.max_delay,
        )

    async def fetch_order(self, order_id: str) -> Optional[dict]:
        return await self._get(f"/orders/{order_id}")

    async def fetch_customer_orders(self, customer_id: int) -> dict:
        return await self._get("/orders/mine")

    async def fetch_vendor_board(self, vendor_id: int) -> dict:
        return await self._get("/orders", vendor_id=vendor_id)

    async def fetch_stock(self, canteen_id: int, day: date) -> dict:
        return await self._get(f"/stock/{canteen_id}/{day.isoformat()}")

    async def fetch_capacity(self, vendor_id: int) -> Optional[dict]:
        return await self._get(f"/vendors/{vendor_id}/capacity")

    async def fetch_rejections(self, customer_id: int) -> list:
        return await self._get("/notifications/rejections") or []

    async def dismiss_rejection(self, notification_id: int, customer_id: int) -> None:
        r = await self.http.post(f"/notifications/rejections/{notification_id}/dismiss", headers=self.headers)
        r.raise_for_status()

    def subscribe_order(self, order_id: str, on_event, on_status=None):
        return self.feed.subscribe(f"/feed/orders/{order_id}", on_event, on_status)

    def subscribe_customer_orders(self, customer_id: int, on_event, on_status=None):
        return self.feed.subscribe(f"/feed/customers/{customer_id}/orders", on_event, on_status)

    def subscribe_vendor_orders(self, vendor_id: int, on_event, on_status=None):
        return self.feed.subscribe(f"/feed/vendors/{vendor_id}/orders", on_event, on_status)

    def subscribe_stock(self, canteen_id: int, day: date, on_event, on_status=None):
        return self.feed.subscribe(f"/feed/stock/{canteen_id}?day={day.isoformat()}", on_event, on_status)

    def subscribe_rejections(self, customer_id: int, on_event, on_status=None):
        return self.feed.subscribe(f"/feed/customers/{customer_id}/rejections", on_event, on_status)

    def subscribe_capacity(self, vendor_id: int, on_event, on_status=None):
        return self.feed.subscribe(f"/feed/vendors/{vendor_id}/capacity", on_event, on_status)
