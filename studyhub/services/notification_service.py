# studyhub/services/notification_service.py
from __future__ import annotations

import logging
from typing import List

from studyhub.models import Account, Notification
from studyhub.utils.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


class NotificationService:
    """Read side of web notifications."""

    @staticmethod
    def count_unread(account: Account) -> int:
        return Notification.query.filter_by(account_id=account.id, checked=False).count()

    @staticmethod
    def get_notifications(account: Account, checked: bool) -> List[Notification]:
        return (
            Notification.query
            .filter_by(account_id=account.id, checked=checked)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .all()
        )

    @staticmethod
    def mark_as_read(notifications: List[Notification]) -> None:
        with unit_of_work():
            for notification in notifications:
                notification.checked = True

    @staticmethod
    def delete_read(account: Account) -> int:
        with unit_of_work():
            deleted = (
                Notification.query
                .filter_by(account_id=account.id, checked=True)
                .delete(synchronize_session=False)
            )
        logger.info(f"Deleted {deleted} read notification(s) for {account.nickname}")
        return deleted
