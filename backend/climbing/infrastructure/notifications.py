from __future__ import annotations

import json
import logging
from typing import Iterable, Sequence

from ..domain.notifications import Channel, Notification, NotificationSink

logger = logging.getLogger(__name__)

_notification_logger = logging.getLogger("notifications")


class LoggingNotificationSink(NotificationSink):
    """
    Default sink: writes each notification as a JSON line to the "notifications" logger.

    Admin-channel notifications fan out to every configured admin address.
    """

    def __init__(self, admin_emails: Sequence[str] = ()) -> None:
        self.admin_emails = tuple(admin_emails)

    async def send(self, notification: Notification) -> None:
        payload = {
            "type": notification.type.value,
            "channel": notification.channel.value,
            "user_id": notification.user_id,
            "slot_id": notification.slot_id,
            "event_id": notification.event_id,
            "reservation_id": notification.reservation_id,
            "participants": notification.participants,
            **notification.extra,
        }
        if notification.channel == Channel.ADMIN:
            payload["recipients"] = list(self.admin_emails)
        compact = {k: v for k, v in payload.items() if v is not None}
        _notification_logger.info(json.dumps(compact, ensure_ascii=True, default=str))


async def dispatch_notifications(sink: NotificationSink, notifications: Iterable[Notification]) -> None:
    """Send after commit. A failing notification is logged and skipped; it never affects the booking."""
    for notification in notifications:
        try:
            await sink.send(notification)
        except Exception:
            logger.exception(
                "failed to send %s notification to %s channel for user %s",
                notification.type.value,
                notification.channel.value,
                notification.user_id,
            )
