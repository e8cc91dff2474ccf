"""Веб-авторизация: логин по login+пароль, JWT, проверка ролей."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from foodcourt.core.database import get_db
from foodcourt.core.logging_config import get_logger
from foodcourt.models import Account, AccountRole
from foodcourt.services.auth_service import (
    create_access_token,
    decode_token,
    hash_password,
    verify_password,
)

router = APIRouter(prefix="/auth", tags=["auth"])
security = HTTPBearer(auto_error=False)
logger = get_logger(__name__)


class UserInfo(BaseModel):
    id: int
    name: str
    role: str
    login: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserInfo


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[UserInfo]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    payload = decode_token(credentials.credentials)
    if not payload or "sub" not in payload:
        logger.warning("Токен не прошёл проверку (неверный или истёк)")
        return None
    sub = payload["sub"]
    return UserInfo(
        id=int(sub),
        name=payload.get("name", ""),
        role=payload.get("role", ""),
        login=payload.get("login", ""),
    )


def require_roles(allowed_roles: List[AccountRole]):
    async def _check(
        current_user: Optional[UserInfo] = Depends(get_current_user),
    ) -> UserInfo:
        if not current_user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Требуется авторизация",
                headers={"WWW-Authenticate": "Bearer"},
            )
        try:
            role_enum = AccountRole(current_user.role)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Неизвестная роль")
        if role_enum not in allowed_roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Недостаточно прав")
        return current_user
    return _check


RequireAnyAuth = require_roles([AccountRole.ROLE_STUDENT, AccountRole.ROLE_VENDOR, AccountRole.ROLE_ADMIN])
RequireStudent = require_roles([AccountRole.ROLE_STUDENT])
RequireVendorAccess = require_roles([AccountRole.ROLE_VENDOR, AccountRole.ROLE_ADMIN])
RequireAdmin = require_roles([AccountRole.ROLE_ADMIN])


@router.post("/login", response_model=LoginResponse)
async def login(
    form: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    username = (form.username or "").strip().lower()
    if not username:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Неверный логин или пароль")
    result = await db.execute(
        select(Account).where(
            func.lower(Account.login) == username,
            Account.is_active == True,  # noqa: E712
        )
    )
    account = result.scalar_one_or_none()
    if not account or not account.password_hash or not verify_password(form.password, account.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Неверный логин или пароль")
    token = create_access_token(
        subject=account.id,
        role=account.role.value,
        name=account.name,
        login=account.login or "",
    )
    return LoginResponse(
        access_token=token,
        user=UserInfo(id=account.id, name=account.name, role=account.role.value, login=account.login or ""),
    )


@router.get("/me", response_model=UserInfo)
async def me(current_user: UserInfo = Depends(RequireAnyAuth)):
    """Текущий пользователь по токену."""
    return current_user


class ChangePasswordBody(BaseModel):
    old_password: str
    new_password: str


@router.post("/change-password")
async def change_password(
    body: ChangePasswordBody,
    current_user: UserInfo = Depends(RequireAnyAuth),
    db: AsyncSession = Depends(get_db),
):
    """Смена пароля текущего пользователя (требуется старый пароль)."""
    if not body.new_password or len(body.new_password) < 4:
        raise HTTPException(status_code=400, detail="Новый пароль должен быть не менее 4 символов")
    account = (await db.execute(select(Account).where(Account.id == current_user.id))).scalar_one_or_none()
    if not account or not account.password_hash:
        raise HTTPException(status_code=404, detail="Пользователь не найден")
    if not verify_password(body.old_password, account.password_hash):
        raise HTTPException(status_code=400, detail="Неверный текущий пароль")
    account.password_hash = hash_password(body.new_password)
    db.add(account)
    await db.flush()
    return {"ok": True}
