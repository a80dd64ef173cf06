"""
Notification Module

In-app notifications for loan events. Notifications are informational: the
repayment processor sends them after its atomic unit commits and a delivery
failure never undoes a payment.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .logging_config import get_logger, log_action


class NotificationType(Enum):
    """Types of notifications"""
    LOAN_REPAYMENT = "loan_repayment"
    LOAN_APPROVED = "loan_approved"
    LOAN_DISBURSED = "loan_disbursed"
    LOAN_COMPLETED = "loan_completed"


@dataclass
class Notification(StorageRecord):
    """Individual notification instance"""
    notification_type: NotificationType
    title: str
    message: str
    user_id: Optional[str] = None
    related_id: Optional[str] = None
    is_read: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notification':
        data = cls.parse_timestamps(data)
        data['notification_type'] = NotificationType(data['notification_type'])
        return cls(**data)


class NotificationService:
    """Persists in-app notifications and mirrors them to the log"""

    TABLE = "notifications"

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.logger = get_logger("notifications")

    def notify(
        self,
        notification_type: NotificationType,
        title: str,
        message: str,
        user_id: Optional[str] = None,
        related_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """
        Record a notification for a user

        Args:
            notification_type: Kind of event
            title: Short title
            message: Human readable body
            user_id: Recipient; notifications without one are still kept
            related_id: Entity the notification refers to (loan id)
            metadata: Additional data

        Returns:
            Created Notification
        """
        now = datetime.now(timezone.utc)
        notification = Notification(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            notification_type=notification_type,
            title=title,
            message=message,
            user_id=user_id,
            related_id=related_id,
            metadata=metadata or {}
        )
        self.storage.save(self.TABLE, notification.id, notification.to_dict())

        log_action(
            self.logger, "info", title,
            user_id=user_id, action=notification_type.value, resource=related_id
        )
        return notification

    def get_notifications(self, user_id: str, unread_only: bool = False) -> List[Notification]:
        notifications = [
            Notification.from_dict(data)
            for data in self.storage.find(self.TABLE, {"user_id": user_id})
        ]
        if unread_only:
            notifications = [n for n in notifications if not n.is_read]
        return notifications

    def mark_as_read(self, notification_id: str) -> bool:
        data = self.storage.load(self.TABLE, notification_id)
        if not data:
            return False
        notification = Notification.from_dict(data)
        notification.is_read = True
        notification.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.TABLE, notification.id, notification.to_dict())
        return True
