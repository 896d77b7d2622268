# scheduling/notifications.py
"""
Notification service for Labo Planning.

This file is part of Labo Planning.
Copyright (C) 2025 Labo Planning Contributors

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.
"""

import logging
from typing import List, Optional

from django.conf import settings
from django.core.mail import send_mail
from django.utils import timezone

from .models import Event, Slot

logger = logging.getLogger(__name__)

DATETIME_FORMAT = '%d/%m/%Y %H:%M'

ACTION_LABELS = {
    'approve': 'approved',
    'reject': 'rejected',
    'counter_propose': 'counter-proposed a new time for',
    'edit': 'modified',
}


def _local(value, fmt=DATETIME_FORMAT):
    return timezone.localtime(value).strftime(fmt)


class SlotNotificationService:
    """Emails the owner of a session about lab staff decisions on its slots."""

    def _enabled(self) -> bool:
        return getattr(settings, 'SCHEDULING_NOTIFY_OWNER', True)

    def _send(self, recipient, subject: str, message: str) -> bool:
        if not recipient or not recipient.email:
            logger.debug("No email address for user %s, skipping notification", getattr(recipient, 'pk', None))
            return False
        try:
            send_mail(
                subject=subject,
                message=message,
                from_email=settings.DEFAULT_FROM_EMAIL,
                recipient_list=[recipient.email],
                fail_silently=False,
            )
            logger.info("Sent '%s' to %s", subject, recipient.email)
            return True
        except Exception as e:
            logger.error(f"Failed to send notification email to {recipient.email}: {e}")
            return False

    def slot_action(self, slot: Slot, action: str, actor, reason: str = '') -> bool:
        """Tell the owner that someone else acted on one of their slots."""
        if not self._enabled():
            return False
        event = slot.event
        if actor is not None and actor.pk == event.owner_id:
            return False

        label = ACTION_LABELS.get(action, action)
        actor_name = actor.get_full_name() or actor.username if actor else 'The lab staff'
        message = (
            f'{actor_name} {label} the slot of "{event.title}" '
            f'on {_local(slot.start_date)}.'
        )
        if slot.state == 'counter_proposed' and slot.proposed_start_date:
            message += (
                f'\nProposed time: {_local(slot.proposed_start_date)} - '
                f'{_local(slot.proposed_end_date, "%H:%M")}.'
            )
        if reason:
            message += f'\nReason: {reason}'
        return self._send(event.owner, f'Session "{event.title}": slot {label}', message)

    def bulk_action(self, event: Event, action: str, actor, slot_ids: List[int],
                    reason: Optional[str] = None) -> bool:
        """Summarize a bulk decision in a single email."""
        if not self._enabled() or not slot_ids:
            return False
        if actor is not None and actor.pk == event.owner_id:
            return False

        label = ACTION_LABELS.get(action, action)
        actor_name = actor.get_full_name() or actor.username if actor else 'The lab staff'
        message = f'{actor_name} {label} {len(slot_ids)} slot(s) of "{event.title}".'
        if reason:
            message += f'\nReason: {reason}'
        return self._send(event.owner, f'Session "{event.title}": {len(slot_ids)} slot(s) {label}', message)

    def event_state_changed(self, event: Event, previous: str, actor) -> bool:
        if not self._enabled():
            return False
        if actor is not None and actor.pk == event.owner_id:
            return False
        message = (
            f'Your session "{event.title}" moved from {previous} to {event.state}.'
        )
        reason = (event.last_state_change or {}).get('reason')
        if reason:
            message += f'\nReason: {reason}'
        return self._send(event.owner, f'Session "{event.title}": {event.get_state_display()}', message)


slot_notifications = SlotNotificationService()
