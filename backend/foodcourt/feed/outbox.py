"""
Изменения копятся в сессии и уходят в поток только после COMMIT.
Откат транзакции — ничего не публикуется.
"""
from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from foodcourt.feed.broker import change_feed

PENDING_KEY = "feed_pending"


def record_change(db: AsyncSession, table: str, type: str, new: dict, old: Optional[dict] = None) -> None:
    db.info.setdefault(PENDING_KEY, []).append((table, type, new, old or {}))


@event.listens_for(Session, "after_commit")
def _publish_after_commit(session: Session) -> None:
    pending = session.info.pop(PENDING_KEY, None)
    for table, type, new, old in pending or ():
        change_feed.publish(table, type, new, old)


@event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session: Session) -> None:
    session.info.pop(PENDING_KEY, None)
