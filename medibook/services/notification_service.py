"""Notification persistence and delivery.

Notifications are stored in the caller's transaction by
:meth:`NotificationDispatcher.notify` and pushed to external channels by
:meth:`NotificationDispatcher.deliver`. The dispatcher is passed explicitly to
the services that emit notifications.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple
import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.config import settings
from ..core.exceptions import NotFoundError
from ..models.notification import Notification, NotificationPriority, NotificationType

logger = logging.getLogger(__name__)


class NotificationDeliveryError(Exception):
    """A channel failed to deliver a notification."""


class NotificationChannel(Protocol):
    name: str

    async def deliver(self, notification: Notification) -> None:
        ...


class LoggingChannel:
    """Writes notifications to the application log instead of an external transport."""

    name = "log"

    async def deliver(self, notification: Notification) -> None:
        logger.info(
            "Notification %s to user %s [%s]: %s",
            notification.id, notification.user_id, notification.type.value, notification.title
        )


class NotificationDispatcher:
    def __init__(self, channels: Sequence[NotificationChannel] = ()):
        self.channels = list(channels)

    async def notify(
        self,
        db: AsyncSession,
        user_id: int,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
    ) -> Notification:
        """Persist a notification in the current transaction."""
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            data=data or {},
            priority=priority,
        )
        db.add(notification)
        await db.flush()
        return notification

    async def deliver(self, notification: Notification, strict: bool = False) -> List[str]:
        """Push a stored notification through every channel.

        Returns the names of the channels that accepted it. With ``strict``
        the first channel failure is raised as NotificationDeliveryError;
        otherwise failures are logged and the remaining channels still run.
        """
        delivered = []
        for channel in self.channels:
            try:
                await channel.deliver(notification)
                delivered.append(channel.name)
            except Exception as e:
                if strict:
                    raise NotificationDeliveryError(
                        f"Channel '{channel.name}' failed for notification {notification.id}: {e}"
                    ) from e
                logger.warning(
                    "Channel %s failed to deliver notification %s: %s",
                    channel.name, notification.id, e
                )
        return delivered


def build_channels(names: Sequence[str]) -> List[NotificationChannel]:
    available = {LoggingChannel.name: LoggingChannel}
    channels = []
    for name in names:
        channel_cls = available.get(name)
        if channel_cls is None:
            logger.warning("Unknown notification channel '%s' ignored", name)
            continue
        channels.append(channel_cls())
    return channels


def create_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(build_channels(settings.NOTIFICATION_CHANNELS))


class NotificationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_for_user(
        self, user_id: int, unread_only: bool = False, page: int = 1, limit: int = 20
    ) -> Tuple[List[Notification], int]:
        conditions = [Notification.user_id == user_id]
        if unread_only:
            conditions.append(Notification.is_read.is_(False))

        total = await self.db.scalar(select(func.count(Notification.id)).where(*conditions))
        result = await self.db.execute(
            select(Notification)
            .where(*conditions)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def mark_as_read(self, user_id: int, notification_id: int) -> Notification:
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if not notification:
            raise NotFoundError("Notification not found")

        notification.is_read = True
        await self.db.commit()
        return notification

    async def mark_all_as_read(self, user_id: int) -> int:
        """Mark every unread notification of the user as read; returns how many changed."""
        result = await self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        await self.db.commit()
        return result.rowcount

    async def unread_count(self, user_id: int) -> int:
        count = await self.db.scalar(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        return count or 0

    async def purge_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        """Delete notifications created more than ``days`` days ago."""
        cutoff = (now or utcnow()) - timedelta(days=days)
        result = await self.db.execute(
            delete(Notification).where(Notification.created_at < cutoff)
        )
        await self.db.commit()
        logger.info("Purged %d notifications older than %s", result.rowcount, cutoff)
        return result.rowcount
