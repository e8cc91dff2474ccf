from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from foodcourt.api.auth import RequireAnyAuth, UserInfo
from foodcourt.core.database import get_db
from foodcourt.feed.rows import rejection_row
from foodcourt.services import order_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/rejections")
async def list_rejections(
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireAnyAuth),
):
    """Непрочитанные уведомления об отклонённых заказах текущего покупателя."""
    return [rejection_row(n) for n in await order_service.list_rejections(db, user.id)]


@router.post("/rejections/{notification_id}/dismiss")
async def dismiss_rejection(
    notification_id: int,
    db: AsyncSession = Depends(get_db),
    user: UserInfo = Depends(RequireAnyAuth),
):
    n = await order_service.dismiss_rejection(db, notification_id, user.id)
    return rejection_row(n)
