"""Notification fanout: persist first, then push to live connections."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import AuthorizationError, NotFoundError
from marketplace_service.logging import get_logger
from marketplace_service.services.clock import now_iso

if TYPE_CHECKING:
    from marketplace_service.services.notification_store import NotificationStore
    from marketplace_service.services.presence import PresenceRegistry

NOTIFICATION_TYPES = frozenset(
    {
        "bid_received",
        "bid_accepted",
        "bid_rejected",
        "message",
        "payment",
        "task_update",
        "milestone_approved",
        "contract_completed",
        "system",
    }
)

MAX_TITLE_LENGTH = 100
MAX_MESSAGE_LENGTH = 500


class NotificationFanout:
    """
    Persists user-facing notifications and pushes them best-effort.

    The persisted row is the durable record of the unread fact. A push that
    fails or finds the user offline never rolls it back. Callers inside
    retryable sequences pass a ``dedupe_key`` so that a retry persists and
    pushes nothing new.
    """

    def __init__(self, store: NotificationStore, presence: PresenceRegistry) -> None:
        self._store = store
        self._presence = presence
        self._logger = get_logger(__name__)

    async def notify(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
        action_url: str | None = None,
        dedupe_key: str | None = None,
    ) -> dict[str, Any] | None:
        """
        Persist a notification and push it to the user's live connections.

        Returns the stored notification, or None if ``dedupe_key`` was
        already used.
        """
        if notification_type not in NOTIFICATION_TYPES:
            msg = f"Unknown notification type: {notification_type}"
            raise ValueError(msg)

        notification: dict[str, Any] = {
            "notification_id": f"ntf-{uuid.uuid4()}",
            "user_id": user_id,
            "type": notification_type,
            "title": title[:MAX_TITLE_LENGTH],
            "message": message[:MAX_MESSAGE_LENGTH],
            "data": data if data is not None else {},
            "read": False,
            "read_at": None,
            "action_url": action_url,
            "dedupe_key": dedupe_key,
            "created_at": now_iso(),
        }

        inserted = await self._store.insert_notification(notification)
        if not inserted:
            self._logger.info(
                "Notification already emitted",
                extra={"user_id": user_id, "dedupe_key": dedupe_key},
            )
            return None

        notification.pop("dedupe_key")
        await self.push(user_id, "notification", notification)
        return notification

    async def push(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        """Best-effort delivery of one event to the user's live connections."""
        try:
            delivered = await self._presence.publish(user_id, event, payload)
        except Exception:
            self._logger.warning(
                "Live push failed",
                extra={"user_id": user_id, "event": event},
                exc_info=True,
            )
            return
        if delivered == 0:
            self._logger.debug("User offline, push skipped", extra={"user_id": user_id})

    async def list_notifications(
        self,
        user_id: str,
        *,
        unread_only: bool,
        page: int,
        limit: int,
    ) -> dict[str, Any]:
        """List the caller's notifications with pagination."""
        offset = (page - 1) * limit
        notifications = await self._store.list_for_user(
            user_id, unread_only=unread_only, limit=limit, offset=offset
        )
        total = await self._store.count_for_user(user_id, unread_only=unread_only)
        unread = await self._store.count_for_user(user_id, unread_only=True)
        return {
            "notifications": notifications,
            "unread_count": unread,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    async def unread_count(self, user_id: str) -> dict[str, Any]:
        """Count the caller's unread notifications."""
        return {"unread_count": await self._store.count_for_user(user_id, unread_only=True)}

    async def mark_read(self, notification_id: str, actor_id: str) -> dict[str, Any]:
        """
        Mark a notification read on behalf of its owner.

        Marking an already-read notification returns it unchanged.
        """
        notification = await self._store.get_notification(notification_id)
        if notification is None:
            raise NotFoundError("NOTIFICATION_NOT_FOUND", "Notification not found")
        if notification["user_id"] != actor_id:
            raise AuthorizationError("Only the recipient can mark a notification as read")

        if not notification["read"]:
            updated = await self._store.mark_read(notification_id, now_iso())
            if updated == 1:
                await self.push(
                    actor_id,
                    "notification_read",
                    {"notification_id": notification_id},
                )

        refreshed = await self._store.get_notification(notification_id)
        if refreshed is None:
            msg = f"Notification {notification_id} not found after update"
            raise RuntimeError(msg)
        return refreshed

    async def mark_all_read(self, user_id: str) -> dict[str, Any]:
        """Mark every unread notification of the caller as read."""
        updated = await self._store.mark_all_read(user_id, now_iso())
        if updated > 0:
            await self.push(user_id, "notification_read", {"all": True})
        return {"updated": updated}
