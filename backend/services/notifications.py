"""
Notification dispatch and the per-user notification inbox.

Core operations never deliver notifications themselves. They return Notice
values, and the route layer hands them to the injected dispatcher after the
mutation has committed. Dispatch is asynchronous and best-effort: every
notice is attempted (gathered, not fire-and-forget) and failures are logged,
never raised.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterable

from sqlalchemy.orm import Session

import models
from errors import NotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    user_id: int
    type: str
    message: str


def notices_for(user_ids: Iterable[int], type_: str, message: str, exclude: Iterable[int] = ()) -> list[Notice]:
    """One notice per distinct user, skipping excluded ids (usually the actor)."""
    skipped = set(exclude)
    return [
        Notice(user_id, type_, message)
        for user_id in dict.fromkeys(user_ids)
        if user_id is not None and user_id not in skipped
    ]


class NotificationDispatcher(ABC):
    """Delivery channel contract: notify(user_id, type, message)."""

    @abstractmethod
    async def notify(self, user_id: int, type_: str, message: str) -> None:
        ...

    async def dispatch(self, notices: Iterable[Notice]) -> int:
        """
        Attempt every distinct notice concurrently.

        Returns:
            Number of notices delivered successfully
        """
        pending = list(dict.fromkeys(notices))
        if not pending:
            return 0

        results = await asyncio.gather(
            *(self.notify(n.user_id, n.type, n.message) for n in pending),
            return_exceptions=True,
        )

        delivered = 0
        for notice, result in zip(pending, results):
            if isinstance(result, BaseException):
                logger.error(f"Notification to user {notice.user_id} failed: {result!r}")
            else:
                delivered += 1
        logger.debug(f"Dispatched {delivered}/{len(pending)} notifications")
        return delivered


class DatabaseNotificationDispatcher(NotificationDispatcher):
    """Stores each notice as a Notification row using its own session."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def _store(self, user_id: int, type_: str, message: str) -> None:
        db = self.session_factory()
        try:
            db.add(models.Notification(user_id=user_id, type=type_, message=message))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def notify(self, user_id: int, type_: str, message: str) -> None:
        # Session I/O is blocking; keep it off the event loop
        await asyncio.to_thread(self._store, user_id, type_, message)
        logger.info(f"Notification stored for user {user_id}: {type_}")


# ============== Inbox ==============


def list_notifications(db: Session, user: models.User) -> list[models.Notification]:
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user.id)
        .order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
        .all()
    )


def _get_own_notification(db: Session, user: models.User, notification_id: int) -> models.Notification:
    notification = (
        db.query(models.Notification)
        .filter(models.Notification.id == notification_id, models.Notification.user_id == user.id)
        .first()
    )
    if notification is None:
        raise NotFoundError("Notification not found")
    return notification


def mark_notification(db: Session, user: models.User, notification_id: int, is_read: bool) -> models.Notification:
    notification = _get_own_notification(db, user, notification_id)
    notification.is_read = is_read
    db.commit()
    db.refresh(notification)
    return notification


def delete_notification(db: Session, user: models.User, notification_id: int) -> None:
    notification = _get_own_notification(db, user, notification_id)
    db.delete(notification)
    db.commit()
    logger.info(f"Notification {notification_id} deleted by user {user.id}")
