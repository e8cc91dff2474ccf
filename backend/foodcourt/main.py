from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select

from foodcourt.config import settings
from foodcourt.core.database import engine, Base, async_session_maker
from foodcourt.core.errors import CoordinatorError
from foodcourt.core.logging_config import setup_logging, get_logger
from foodcourt.models import Account, AccountRole
from foodcourt.api.auth import router as auth_router
from foodcourt.api.orders import router as orders_router
from foodcourt.api.stock import router as stock_router
from foodcourt.api.vendors import router as vendors_router
from foodcourt.api.notifications import router as notifications_router
from foodcourt.api.feed import router as feed_router
from foodcourt.services.auth_service import hash_password

setup_logging()
logger = get_logger(__name__)


async def ensure_superuser():
    """Создать администратора из настроек, если такого логина ещё нет."""
    async with async_session_maker() as session:
        r = await session.execute(select(Account).where(Account.login == settings.superuser_login))
        if r.scalar_one_or_none() is not None:
            return
        session.add(
            Account(
                name=settings.superuser_name,
                role=AccountRole.ROLE_ADMIN,
                login=settings.superuser_login,
                password_hash=hash_password(settings.superuser_password),
                is_active=True,
            )
        )
        await session.commit()
        logger.info("Создан администратор: %s", settings.superuser_login)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Таблицы БД проверены/созданы")
    try:
        await ensure_superuser()
    except Exception as e:
        logger.warning("Администратор: %s", e)
    yield
    await engine.dispose()


app = FastAPI(title="Кампусный фудкорт", version="1.0.0", lifespan=lifespan)


@app.exception_handler(CoordinatorError)
async def coordinator_error_handler(request: Request, exc: CoordinatorError):
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Необработанная ошибка: %s", exc)
    detail = "Внутренняя ошибка сервера"
    err_str = str(exc).lower()
    if "duplicate key" in err_str or "unique constraint" in err_str:
        detail = "Конфликт данных (дубликат). Обновите страницу и повторите."
    elif "foreign key" in err_str:
        detail = "Ошибка связи с данными. Выйдите и войдите снова."
    return JSONResponse(status_code=500, content={"detail": detail})


_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins or ["*"],
    allow_credentials=bool(_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(auth_router)
app.include_router(orders_router)
app.include_router(stock_router)
app.include_router(vendors_router)
app.include_router(notifications_router)
app.include_router(feed_router)


@app.get("/health")
def health():
    return {"status": "ok"}
