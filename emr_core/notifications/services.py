# emr_core/notifications/services.py
from __future__ import annotations

import logging
from typing import Callable, Iterable
from uuid import UUID

from django.db import transaction
from rest_framework.exceptions import NotFound

from emr_core.iam.selectors import users_with_role
from emr_core.notifications.models import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    @staticmethod
    def notify_users(
        *,
        user_ids: Iterable[int],
        kind: str,
        message: str,
        related_entity: str = "",
        related_id=None,
    ) -> list[Notification]:
        objs = [
            Notification(
                recipient_id=uid,
                kind=kind,
                message=message,
                related_entity=related_entity,
                related_id=str(related_id) if related_id is not None else "",
            )
            for uid in dict.fromkeys(user_ids)
        ]
        return Notification.objects.bulk_create(objs)

    @staticmethod
    def notify_role_group(
        *,
        role: str,
        kind: str,
        message: str,
        related_entity: str = "",
        related_id=None,
    ) -> list[Notification]:
        """
        One notification per active user holding `role`.
        """
        user_ids = list(users_with_role(role).values_list("id", flat=True))
        if not user_ids:
            logger.info("No active recipients for role %s (%s)", role, kind)
            return []
        return NotificationService.notify_users(
            user_ids=user_ids,
            kind=kind,
            message=message,
            related_entity=related_entity,
            related_id=related_id,
        )

    @staticmethod
    def deferred_role_group(**kwargs) -> Callable[[], None]:
        """
        Effects.add() friendly: fan-out happens after the primary write commits.
        """
        return lambda: NotificationService.notify_role_group(**kwargs)

    @staticmethod
    def deferred_users(**kwargs) -> Callable[[], None]:
        return lambda: NotificationService.notify_users(**kwargs)

    @staticmethod
    @transaction.atomic
    def mark_read(*, user_id: int, notification_id: UUID) -> Notification:
        notif = Notification.objects.select_for_update().filter(id=notification_id, recipient_id=user_id).first()
        if notif is None:
            raise NotFound("Notification not found.")
        if not notif.is_read:
            notif.mark_read()
            notif.save(update_fields=["is_read", "read_at", "updated_at"])
        return notif
