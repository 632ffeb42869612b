"""
Notification Dispatcher - fire-and-forget user notifications.

DESIGN PRINCIPLES:
- Notifications are a SIDE CHANNEL, never part of a workflow decision
- Dispatch happens only after the triggering transaction has committed
- A failed dispatch is logged and swallowed; it never rolls back or fails
  the operation that caused it

WHAT THIS SERVICE DOES:
✅ Write an in-app notification document per recipient
✅ Respect the NOTIFICATIONS_ENABLED switch

WHAT THIS SERVICE DOES NOT:
❌ Deliver push, SMS or email (an external consumer reads the collection)
❌ Retry failed writes
"""

from civictrack.config.firebase import get_db
from civictrack.core.settings import settings
from civictrack.utils.firestore_helpers import utcnow, where_filter
from civictrack.utils.records import NOTIFICATIONS
from typing import Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


class NotificationType:
    """Notification type values consumed by the client apps."""
    ASSIGNMENT = "assignment"
    RESOLUTION = "resolution"
    REWORK = "rework"
    REASSIGNMENT = "reassignment"
    ESCALATION = "escalation"


class NotificationService:
    """
    Writes notifications to the notifications collection.
    """

    def __init__(self, db=None):
        self.db = db or get_db()

    def dispatch(
        self,
        recipient: Optional[str],
        title: str,
        message: str,
        notification_type: str,
        link: Optional[str] = None,
    ) -> Optional[str]:
        """
        Send one notification.

        Args:
            recipient: User id to notify; None is skipped
            title: Short title
            message: Body text
            notification_type: One of NotificationType
            link: Optional deep link into the app

        Returns:
            Notification id, or None when skipped or failed
        """
        if not settings.NOTIFICATIONS_ENABLED:
            logger.debug(f"Notifications disabled, skipping {notification_type} for {recipient}")
            return None
        if not recipient:
            return None

        try:
            doc_ref = self.db.collection(NOTIFICATIONS).document()
            doc_ref.set({
                "user_id": recipient,
                "title": title,
                "message": message,
                "type": notification_type,
                "link": link,
                "is_read": False,
                "created_at": utcnow(),
            })
            logger.info(f"📨 Notification [{notification_type}] queued for {recipient}")
            return doc_ref.id
        except Exception as e:
            logger.error(f"Notification [{notification_type}] to {recipient} failed: {e}")
            return None

    def dispatch_many(self, recipients: List[Optional[str]], title: str, message: str, notification_type: str, link: Optional[str] = None) -> List[str]:
        """Send the same notification to several users, skipping duplicates."""
        sent = []
        seen = set()
        for recipient in recipients:
            if not recipient or recipient in seen:
                continue
            seen.add(recipient)
            notification_id = self.dispatch(recipient, title, message, notification_type, link)
            if notification_id:
                sent.append(notification_id)
        return sent

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[Dict]:
        query = where_filter(self.db.collection(NOTIFICATIONS), "user_id", "==", user_id)
        if unread_only:
            query = where_filter(query, "is_read", "==", False)

        items = []
        for doc in query.stream():
            data = doc.to_dict()
            data["id"] = doc.id
            items.append(data)
        items.sort(key=lambda n: n["created_at"], reverse=True)
        return items


# Global service instance (singleton pattern)
_notification_service = None


def get_notification_service() -> NotificationService:
    """Get or create NotificationService singleton instance."""
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service
