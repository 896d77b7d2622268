# scheduling/signals.py
"""
Django signals for Labo Planning.

This file is part of Labo Planning.
Copyright (C) 2025 Labo Planning Contributors

This software is dual-licensed:
1. GNU General Public License v3.0 (GPL-3.0) - for open source use
2. Commercial License - for proprietary and commercial use

For GPL-3.0 license terms, see LICENSE file.
For commercial licensing, see COMMERCIAL-LICENSE.txt.
"""

from django.contrib.auth.models import User
from django.db.models.signals import post_save
from django.dispatch import Signal, receiver

from .models import UserProfile
from .notifications import slot_notifications

# Sent after a single slot transition is stored.
# kwargs: slot, action, actor, role, prior_state, reason, batched
slot_action_applied = Signal()

# Sent once a bulk action has settled and the event was re-fetched.
# kwargs: event, action, actor, succeeded, failed, reason
bulk_action_settled = Signal()

# Sent after a planning draft has been persisted.
# kwargs: event, actor, created, updated, deleted
slots_persisted = Signal()

# kwargs: event, user, previous
event_state_changed = Signal()

# kwargs: event, result
event_derived_changed = Signal()


@receiver(post_save, sender=User)
def create_user_profile(sender, instance, created, **kwargs):
    """Create UserProfile when User is created."""
    if created:
        UserProfile.objects.get_or_create(user=instance)


@receiver(slot_action_applied)
def notify_owner_of_slot_action(sender, slot, action, actor, batched=False, reason='', **kwargs):
    """Email the owner when lab staff act on a single slot."""
    if batched:
        return
    slot_notifications.slot_action(slot, action, actor, reason)


@receiver(bulk_action_settled)
def notify_owner_of_bulk_action(sender, event, action, actor, succeeded, reason='', **kwargs):
    slot_notifications.bulk_action(event, action, actor, succeeded, reason)


@receiver(event_state_changed)
def notify_owner_of_state_change(sender, event, user, previous, **kwargs):
    slot_notifications.event_state_changed(event, previous, user)
