"""
Slot persistence for Labo Planning.

Maps Slot rows to state machine values and writes transitions back. Callers
own the transaction; ``get(..., for_update=True)`` must run inside one.
"""

import logging

from django.db import transaction
from django.db.models import Count

from . import state_machine
from .exceptions import SlotNotFound
from .models import Slot
from .roles import Role
from .state_machine import CounterProposedSlot, SimpleSlot, SlotTimes

logger = logging.getLogger(__name__)

SLOT_KINDS = ('all', 'active', 'pending', 'summary')


class SlotStore:
    """Read and write slots of lab events."""

    def get(self, slot_id, for_update=False, action=None):
        queryset = Slot.objects.select_related('event')
        if for_update:
            queryset = queryset.select_for_update()
        try:
            return queryset.get(pk=slot_id)
        except Slot.DoesNotExist:
            raise SlotNotFound(slot_id, action=action)

    def for_event(self, event_id, kind='all'):
        """Slots of an event: all, active (not rejected) or pending (awaiting an answer)."""
        queryset = Slot.objects.filter(event_id=event_id)
        if kind == 'active':
            queryset = queryset.exclude(state=state_machine.REJECTED)
        elif kind == 'pending':
            queryset = queryset.filter(state__in=state_machine.PENDING_STATES)
        elif kind != 'all':
            raise ValueError(f"Unknown slot kind: {kind!r}")
        return queryset.order_by('start_date', 'id')

    def summary(self, event_id):
        counts = {state: 0 for state in state_machine.SLOT_STATES}
        rows = Slot.objects.filter(event_id=event_id).values('state').annotate(total=Count('id'))
        for row in rows:
            counts[row['state']] = row['total']
        counts['total'] = sum(counts[state] for state in state_machine.SLOT_STATES)
        return counts

    def to_value(self, slot):
        actual = SlotTimes(
            start=slot.start_date,
            end=slot.end_date,
            timeslot_date=slot.timeslot_date,
            notes=slot.notes,
            salle_ids=slot.salle_ids or [],
            class_ids=slot.class_ids or [],
        )
        if slot.state == state_machine.COUNTER_PROPOSED:
            proposed = SlotTimes(
                start=slot.proposed_start_date,
                end=slot.proposed_end_date,
                timeslot_date=slot.proposed_timeslot_date,
                notes=slot.proposed_notes,
            )
            proposed_by = Role(slot.proposed_by) if slot.proposed_by else Role.OPERATOR
            return CounterProposedSlot(slot.pk, actual, proposed, proposed_by)
        return SimpleSlot(slot.pk, slot.state, actual)

    def save_transition(self, slot, transition, user):
        """Write a decided transition onto the slot row and log it."""
        value = transition.apply(self.to_value(slot))
        actual = value.actual

        slot.state = value.state
        slot.start_date = actual.start
        slot.end_date = actual.end
        slot.timeslot_date = actual.timeslot_date
        slot.notes = actual.notes or ''
        slot.salle_ids = actual.salle_ids or []
        slot.class_ids = actual.class_ids or []

        if value.proposed is not None:
            slot.proposed_start_date = value.proposed.start
            slot.proposed_end_date = value.proposed.end
            slot.proposed_timeslot_date = value.proposed.timeslot_date
            slot.proposed_notes = value.proposed.notes
            slot.proposed_by = value.proposed_by.value
        else:
            slot.proposed_start_date = None
            slot.proposed_end_date = None
            slot.proposed_timeslot_date = None
            slot.proposed_notes = None
            slot.proposed_by = ''

        slot.append_modification(user, transition.action, transition.reason)
        slot.save()

        logger.info(
            "Slot %s of event %s: %s by %s (%s -> %s)",
            slot.pk, slot.event_id, transition.action, transition.role.value,
            transition.prior_state, transition.new_state,
        )
        return slot

    @transaction.atomic
    def create_batch(self, event, times_list, user):
        """Create new slots in state created; all or nothing."""
        created = []
        for times in times_list:
            slot = Slot(
                event=event,
                state=state_machine.CREATED,
                start_date=times.start,
                end_date=times.end,
                timeslot_date=times.timeslot_date,
                notes=times.notes or '',
                salle_ids=times.salle_ids or [],
                class_ids=times.class_ids or [],
                created_by=user,
            )
            slot.append_modification(user, 'create')
            slot.save()
            created.append(slot)
        if created:
            logger.info("Created %d slot(s) for event %s", len(created), event.pk)
        return created

    def delete(self, slot_id, event_id):
        deleted, _ = Slot.objects.filter(pk=slot_id, event_id=event_id).delete()
        if deleted:
            logger.info("Deleted slot %s of event %s", slot_id, event_id)
        return bool(deleted)


slot_store = SlotStore()


def list_event_slots(event_id, kind='all'):
    """Slots of an event by kind, or per-state counts for ``summary``."""
    if kind == 'summary':
        return slot_store.summary(event_id)
    return slot_store.for_event(event_id, kind)
