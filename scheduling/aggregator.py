"""
Event aggregation for Labo Planning.

Keeps an event's derived fields (room ids, class ids, time bounds) in line
with its slots, settles who the event is waiting on after slot changes, and
applies event-level state changes.
"""

import logging

from django.db import DatabaseError, transaction
from django.utils import timezone

from . import state_machine
from .exceptions import AggregateWriteError, InvalidTransition, PermissionDenied
from .models import Event, EventStateChange, Slot
from .roles import Role, resolve_role
from .signals import event_derived_changed, event_state_changed
from .state_machine import normalize_ids

logger = logging.getLogger(__name__)

# Event fields whose edit re-opens validation
TRACKED_EDIT_FIELDS = ('title', 'description', 'salles', 'materials', 'times', 'slots')

OWNER_SETTABLE_STATES = (Event.PENDING, Event.CANCELLED)

# Slot actions by which an owner changes their own planning
OWNER_EDIT_ACTIONS = (state_machine.EDIT, state_machine.REJECT_COUNTER)


class DerivedFields:
    """Derived event fields computed from a slot set."""

    def __init__(self, salle_ids, class_ids, start_bound, end_bound):
        self.salle_ids = salle_ids
        self.class_ids = class_ids
        self.start_bound = start_bound
        self.end_bound = end_bound


def collect_derived(slots):
    """Compute derived fields from slots.

    Ids are the union over non-rejected slots. Bounds span the approved slots,
    or every non-rejected slot while none is approved yet.
    """
    active = [slot for slot in slots if slot.is_active]
    salle_ids = set()
    class_ids = set()
    for slot in active:
        salle_ids.update(normalize_ids(slot.salle_ids or []))
        class_ids.update(normalize_ids(slot.class_ids or []))

    bounded = [slot for slot in active if slot.state == state_machine.APPROVED] or active
    start_bound = min((slot.start_date for slot in bounded), default=None)
    end_bound = max((slot.end_date for slot in bounded), default=None)

    return DerivedFields(sorted(salle_ids), sorted(class_ids), start_bound, end_bound)


def ids_differ(stored, computed):
    """Compare id collections as sets, ignoring order and duplicates."""
    return set(normalize_ids(stored or [])) != set(normalize_ids(computed or []))


def derived_differs(event, slots):
    derived = collect_derived(slots)
    return (
        ids_differ(event.salle_ids, derived.salle_ids)
        or ids_differ(event.class_ids, derived.class_ids)
        or event.start_bound != derived.start_bound
        or event.end_bound != derived.end_bound
    )


class RecomputeResult:
    """Outcome of a derived-field recompute."""

    def __init__(self, event_id, changed, derived):
        self.event_id = event_id
        self.changed = changed
        self.salle_ids = derived.salle_ids
        self.class_ids = derived.class_ids
        self.start_bound = derived.start_bound
        self.end_bound = derived.end_bound

    def to_dict(self):
        return {
            'changed': self.changed,
            'salleIds': self.salle_ids,
            'classIds': self.class_ids,
            'startBound': timezone.localtime(self.start_bound).isoformat() if self.start_bound else None,
            'endBound': timezone.localtime(self.end_bound).isoformat() if self.end_bound else None,
        }


def recompute_event_derived(event_id):
    """Recompute and conditionally store an event's derived fields.

    Reads the slots, computes and writes in one transaction holding the event
    row. Nothing is written when the stored values already match, so calling
    it twice in a row reports ``changed=False`` the second time.
    """
    try:
        with transaction.atomic():
            event = Event.objects.select_for_update().get(pk=event_id)
            slots = list(Slot.objects.filter(event_id=event_id))
            derived = collect_derived(slots)

            update_fields = []
            if ids_differ(event.salle_ids, derived.salle_ids):
                event.salle_ids = derived.salle_ids
                update_fields.append('salle_ids')
            if ids_differ(event.class_ids, derived.class_ids):
                event.class_ids = derived.class_ids
                update_fields.append('class_ids')
            if event.start_bound != derived.start_bound:
                event.start_bound = derived.start_bound
                update_fields.append('start_bound')
            if event.end_bound != derived.end_bound:
                event.end_bound = derived.end_bound
                update_fields.append('end_bound')

            if update_fields:
                event.save(update_fields=update_fields + ['updated_at'])
    except DatabaseError as exc:
        logger.error("Failed to recompute derived fields of event %s: %s", event_id, exc)
        raise AggregateWriteError(event_id) from exc

    result = RecomputeResult(event_id, bool(update_fields), derived)
    if result.changed:
        logger.info("Derived fields of event %s updated: %s", event_id, ', '.join(update_fields))
        event_derived_changed.send(sender=Event, event=event, result=result)
    return result


def _awaiting(slots):
    """Return (owner_awaited, operator_awaited) for a slot set."""
    owner_awaited = False
    operator_awaited = False
    for slot in slots:
        if slot.state == state_machine.COUNTER_PROPOSED:
            owner_awaited = True
        elif slot.state in (state_machine.CREATED, state_machine.MODIFIED):
            operator_awaited = True
    return owner_awaited, operator_awaited


def _settled_state(role, actions, slots):
    if role == Role.OPERATOR:
        if state_machine.REJECT in actions or state_machine.COUNTER_PROPOSE in actions:
            return Event.OWNER_PENDING
        if state_machine.APPROVE in actions:
            owner_awaited, operator_awaited = _awaiting(slots)
            if owner_awaited:
                return Event.OWNER_PENDING
            if operator_awaited:
                return Event.OPERATOR_PENDING
            return Event.NO_PENDING
        return None

    if role == Role.OWNER:
        if any(action in actions for action in (state_machine.REJECT_COUNTER, state_machine.EDIT)):
            return Event.OPERATOR_PENDING
        if state_machine.ACCEPT_COUNTER in actions:
            owner_awaited, operator_awaited = _awaiting(slots)
            if owner_awaited:
                return Event.OWNER_PENDING
            if operator_awaited:
                return Event.OPERATOR_PENDING
            return Event.NO_PENDING
    return None


def settle_validation_state(event, role, actions):
    """Update who the event is waiting on after slot actions by ``role``.

    Returns the (possibly unchanged) validation state.
    """
    actions = set(actions)
    if not actions:
        return event.validation_state

    new_state = _settled_state(role, actions, list(Slot.objects.filter(event_id=event.pk)))
    if new_state is None or new_state == event.validation_state:
        return event.validation_state

    try:
        Event.objects.filter(pk=event.pk).update(validation_state=new_state, updated_at=timezone.now())
    except DatabaseError as exc:
        logger.error("Failed to update validation state of event %s: %s", event.pk, exc)
        raise AggregateWriteError(event.pk) from exc

    logger.info("Event %s validation state: %s -> %s", event.pk, event.validation_state, new_state)
    event.validation_state = new_state
    return new_state


def aggregate_event(event_id, role, actions, actor=None):
    """Run the single post-mutation pass for an event.

    Settles the validation state, sends an event the owner changed back to
    PENDING, then recomputes the derived fields.
    """
    event = Event.objects.get(pk=event_id)
    settle_validation_state(event, role, actions)
    if role == Role.OWNER and any(action in OWNER_EDIT_ACTIONS for action in actions):
        try:
            apply_event_edit(event, actor, ['times'], role=role)
        except DatabaseError as exc:
            logger.error("Failed to reopen event %s after an owner edit: %s", event_id, exc)
            raise AggregateWriteError(event_id) from exc
    return recompute_event_derived(event_id)


def _record_state_change(event, user, new_state, reason):
    previous = event.state
    event.last_state_change = {
        'from': previous,
        'to': new_state,
        'date': timezone.now().isoformat(),
        'userId': user.pk if user is not None else None,
        'reason': reason or '',
    }
    event.state = new_state
    EventStateChange.objects.create(
        event=event,
        user=user,
        from_state=previous,
        to_state=new_state,
        reason=reason or '',
    )
    return previous


def apply_event_edit(event, user, changed_fields, role=None):
    """Apply the validation policy for an edit of event fields.

    Edits by anyone but an operator put the event back in the lab staff's
    queue; an owner editing their own event forces it back to PENDING unless
    it was cancelled.
    """
    if not any(field in TRACKED_EDIT_FIELDS for field in changed_fields):
        return event

    role = role or resolve_role(user, event)
    if role == Role.OTHER:
        raise PermissionDenied('edit', role, event_id=event.pk)

    update_fields = []
    if role != Role.OPERATOR and event.validation_state != Event.OPERATOR_PENDING:
        event.validation_state = Event.OPERATOR_PENDING
        update_fields.append('validation_state')

    reopen = role == Role.OWNER and event.state not in (Event.PENDING, Event.CANCELLED)
    if reopen:
        update_fields += ['state', 'last_state_change']

    previous = None
    if update_fields:
        with transaction.atomic():
            if reopen:
                previous = _record_state_change(event, user, Event.PENDING, 'Edited by owner')
            event.save(update_fields=update_fields + ['updated_at'])
        logger.info("Event %s edited by %s (%s)", event.pk, role.value, ', '.join(changed_fields))
    if previous is not None:
        event_state_changed.send(sender=Event, event=event, user=user, previous=previous)
    return event


def is_eligible_for_validation(event):
    """True when the event has active slots and all of them are approved."""
    states = set(
        Slot.objects.filter(event_id=event.pk)
        .exclude(state=state_machine.REJECTED)
        .values_list('state', flat=True)
    )
    return states == {state_machine.APPROVED}


def change_event_state(event, user, new_state, reason=''):
    """Move an event to another state, recording who did it and why.

    Slot states are left alone: cancelling an event does not rewrite them.
    """
    valid_states = [state for state, _ in Event.STATE_CHOICES]
    if new_state not in valid_states:
        raise InvalidTransition('change state', new_state, event_id=event.pk, detail="unknown state")

    role = resolve_role(user, event)
    if role == Role.OTHER or (role == Role.OWNER and new_state not in OWNER_SETTABLE_STATES):
        raise PermissionDenied(f"set state {new_state} on", role, event_id=event.pk)

    if event.state == new_state:
        raise InvalidTransition(
            'change state', event.state, event_id=event.pk, detail=f"already {new_state}"
        )
    if new_state == Event.VALIDATED and not is_eligible_for_validation(event):
        raise InvalidTransition(
            'validate', event.state, event_id=event.pk, detail="not every active slot is approved"
        )

    with transaction.atomic():
        previous = _record_state_change(event, user, new_state, reason)
        event.save(update_fields=['state', 'last_state_change', 'updated_at'])

    logger.info("Event %s state changed from %s to %s by user %s", event.pk, previous, new_state, user.pk)
    event_state_changed.send(sender=Event, event=event, user=user, previous=previous)
    return event
