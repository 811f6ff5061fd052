# ==============================================================================
# NOTIFICATION SERVICE
# ==============================================================================
# Outbound messages are never sent inline. They are rows in the
# `notifications` table (status "queued") that a separate worker delivers.
# Invoking a named function ("send-notification") records the call as a
# queued row carrying the function name and body.
# ==============================================================================

import logging
from typing import Any, Dict, List, Optional

from tire_store.repositories.interfaces import ITableRepository

logger = logging.getLogger(__name__)

STATUS_QUEUED = 'queued'
STATUS_SENT = 'sent'
STATUS_FAILED = 'failed'


class NotificationService:
    """Queue for outbound notifications."""

    def __init__(self, notifications: ITableRepository, admin_email: str):
        """
        Args:
            notifications: notifications table
            admin_email: Recipient for internal alerts
        """
        self.notifications = notifications
        self.admin_email = admin_email

    def queue(
        self,
        notification_type: str,
        to_email: str,
        subject: str,
        payload: Dict[str, Any] = None
    ) -> Dict[str, Any]:
        """
        Insert a queued notification row.

        Raises:
            BackendError: If the insert fails
        """
        return self.notifications.insert({
            'type': notification_type,
            'to_email': to_email,
            'subject': subject,
            'payload': payload or {},
            'status': STATUS_QUEUED,
        })

    def notify_admin(self, notification_type: str, subject: str, payload: Dict[str, Any] = None) -> Dict[str, Any]:
        return self.queue(notification_type, self.admin_email, subject, payload)

    def invoke_function(self, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Invoke a named server function (recorded as a queued notification).

        Args:
            name: Function name, e.g. "send-notification"
            body: JSON body ({type, recipientEmail, recipientName, data})
        """
        return self.notifications.insert({
            'type': body.get('type', name),
            'function': name,
            'to_email': body.get('recipientEmail'),
            'subject': body.get('subject') or body.get('type', name).replace('_', ' ').title(),
            'payload': body,
            'status': STATUS_QUEUED,
        })

    def list_notifications(self, status: str = None, limit: int = 200) -> List[Dict[str, Any]]:
        filters = {'status': status} if status else None
        return self.notifications.select(filters, order_by='created_at', desc=True, limit=limit)

    def mark(self, notification_id: str, status: str) -> Optional[Dict[str, Any]]:
        if status not in (STATUS_QUEUED, STATUS_SENT, STATUS_FAILED):
            return None
        return self.notifications.update_row(notification_id, {'status': status})
