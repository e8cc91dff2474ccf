"""Фикстуры для тестов: временная SQLite-БД, тестовые аккаунты, точка и меню."""
import asyncio
import os
import tempfile
from decimal import Decimal
from types import SimpleNamespace

import pytest

# До импорта приложения: настройки читаются один раз при импорте
_TMP_DIR = tempfile.mkdtemp(prefix="foodcourt-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/test.db"
os.environ["TELEGRAM_BOT_TOKEN"] = ""

from fastapi.testclient import TestClient  # noqa: E402

from foodcourt.core.database import Base, async_session_maker, engine  # noqa: E402
from foodcourt.feed.broker import change_feed  # noqa: E402
from foodcourt.models import Account, AccountRole, MenuItem, StockMode, Vendor, VendorKind  # noqa: E402
from foodcourt.services.auth_service import create_access_token  # noqa: E402
from foodcourt.services.payments import PaymentVerifier  # noqa: E402


class FakeVerifier(PaymentVerifier):
    """Оплачено всё, кроме ссылок, начинающихся с "unpaid"."""

    async def is_paid(self, payment_ref, amount):
        return not payment_ref.startswith("unpaid")


async def _reset_schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture(autouse=True)
def fresh_db():
    """Чистая схема на каждый тест; подписки прошлых тестов не переживают тест."""
    asyncio.run(_reset_schema())
    yield
    for sub in list(change_feed._subscriptions):
        sub.closed = True
        change_feed._remove(sub)


async def _seed():
    async with async_session_maker() as db:
        student = Account(name="Аня", role=AccountRole.ROLE_STUDENT, login="anya")
        student2 = Account(name="Борис", role=AccountRole.ROLE_STUDENT, login="boris")
        owner = Account(name="Столовая", role=AccountRole.ROLE_VENDOR, login="canteen")
        other_owner = Account(name="Кафе", role=AccountRole.ROLE_VENDOR, login="cafe")
        db.add_all([student, student2, owner, other_owner])
        await db.flush()
        canteen = Vendor(
            owner_id=owner.id,
            name="Главная столовая",
            kind=VendorKind.CANTEEN,
            stock_mode=StockMode.DAILY,
        )
        shop = Vendor(
            owner_id=other_owner.id,
            name="Кафе у библиотеки",
            kind=VendorKind.SHOP,
            stock_mode=StockMode.SIMPLE,
        )
        db.add_all([canteen, shop])
        await db.flush()
        dosa = MenuItem(vendor_id=canteen.id, name="Доса", price=Decimal("40.00"))
        tea = MenuItem(vendor_id=canteen.id, name="Чай", price=Decimal("10.00"))
        coffee = MenuItem(vendor_id=shop.id, name="Кофе", price=Decimal("30.00"))
        cake = MenuItem(vendor_id=shop.id, name="Пирожное", price=Decimal("25.00"), is_available=False)
        db.add_all([dosa, tea, coffee, cake])
        await db.commit()
        return SimpleNamespace(
            student=student.id,
            student2=student2.id,
            owner=owner.id,
            other_owner=other_owner.id,
            canteen=canteen.id,
            shop=shop.id,
            dosa=dosa.id,
            tea=tea.id,
            coffee=coffee.id,
            cake=cake.id,
        )


@pytest.fixture
def world():
    """Два покупателя, столовая (дневной склад) и кафе (простой режим) с меню."""
    return asyncio.run(_seed())


def auth_headers(account_id: int, role: AccountRole, login: str = "") -> dict:
    token = create_access_token(subject=account_id, role=role.value, name=login, login=login)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def student_headers(world):
    return auth_headers(world.student, AccountRole.ROLE_STUDENT, "anya")


@pytest.fixture
def owner_headers(world):
    return auth_headers(world.owner, AccountRole.ROLE_VENDOR, "canteen")


@pytest.fixture
def other_owner_headers(world):
    return auth_headers(world.other_owner, AccountRole.ROLE_VENDOR, "cafe")


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def client():
    """Тестовый клиент приложения с подменённой проверкой оплаты."""
    from foodcourt.main import app
    from foodcourt.services.payments import get_payment_verifier

    app.dependency_overrides[get_payment_verifier] = lambda: FakeVerifier()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def student2_headers(world):
    return auth_headers(world.student2, AccountRole.ROLE_STUDENT, "boris")


async def _in_session(fn, *args, **kwargs):
    """Один вызов сервиса — одна транзакция, как в обработчике запроса."""
    async with async_session_maker() as db:
        try:
            result = await fn(db, *args, **kwargs)
            await db.commit()
            return result
        except Exception:
            await db.rollback()
            raise


@pytest.fixture
def ops(verifier):
    """Асинхронные операции координатора, каждая в своей транзакции."""
    from foodcourt.schemas.order import OrderCreate, OrderItemIn
    from foodcourt.services import admission, order_service, stock_ledger
    from foodcourt.services.stock_ledger import StockEntryInput

    async def place(customer_id, vendor_id, items, ref):
        data = OrderCreate(
            vendor_id=vendor_id,
            items=[OrderItemIn(menu_item_id=mid, quantity=qty) for mid, qty in items],
            payment_ref=ref,
        )
        return await _in_session(order_service.place_order, customer_id, data, verifier)

    async def set_stock(canteen_id, day, entries):
        return await _in_session(
            stock_ledger.set_daily_stock,
            canteen_id,
            day,
            [StockEntryInput(menu_item_id=mid, quantity=qty) for mid, qty in entries],
        )

    return SimpleNamespace(
        run=_in_session,
        place=place,
        set_stock=set_stock,
        accept=lambda order_id, prep=15, now=None: _in_session(order_service.accept_order, order_id, prep, now),
        reject=lambda order_id, reason="": _in_session(order_service.reject_order, order_id, reason),
        ready=lambda order_id: _in_session(order_service.mark_ready, order_id),
        complete=lambda order_id: _in_session(order_service.complete_order, order_id),
        redeem=lambda token, vendor_id: _in_session(order_service.redeem_by_qr, token, vendor_id),
        set_limit=lambda vendor_id, limit: _in_session(admission.set_order_limit, vendor_id, limit),
        get=lambda order_id: _in_session(order_service.get_order, order_id),
    )
