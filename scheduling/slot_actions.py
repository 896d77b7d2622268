"""
Single-slot actions for Labo Planning.

Each action locks its slot row for the duration of the transition, so a
second request on the same slot waits for the first to commit and is then
decided against the new state.
"""

import logging

from django.db import DatabaseError, transaction

from . import aggregator, state_machine
from .exceptions import AggregateWriteError, SchedulingError, SlotWriteError
from .roles import resolve_role
from .signals import slot_action_applied
from .store import slot_store

logger = logging.getLogger(__name__)


class SlotActionResult:
    """What a slot action did: the stored slot and the states around it."""

    def __init__(self, slot, prior_state, new_state, role):
        self.slot = slot
        self.prior_state = prior_state
        self.new_state = new_state
        self.role = role
        self.aggregate = None
        self.aggregate_error = None

    def to_dict(self):
        data = {
            'slotId': self.slot.pk,
            'priorState': self.prior_state,
            'newState': self.new_state,
        }
        if self.aggregate is not None:
            data['aggregate'] = self.aggregate.to_dict()
        if self.aggregate_error is not None:
            data['aggregateError'] = self.aggregate_error.to_dict()
        return data


def apply_slot_action(slot_id, actor, action, payload=None, reason='', role=None, aggregate=True):
    """Apply ``action`` to one slot on behalf of ``actor``.

    ``role`` may be passed when the caller already resolved it for the event.
    With ``aggregate=False`` the event pass is left to the caller, which is
    how bulk actions get a single recompute.

    A failed recompute does not undo the slot change; it is reported on the
    result as ``aggregate_error``.
    """
    try:
        with transaction.atomic():
            slot = slot_store.get(slot_id, for_update=True, action=action)
            role = role or resolve_role(actor, slot.event)
            value = slot_store.to_value(slot)
            transition = state_machine.decide(value, role, action, payload, reason)
            slot_store.save_transition(slot, transition, actor)
    except SchedulingError as e:
        logger.warning("Slot action %s on slot %s refused: %s", action, slot_id, e.message)
        raise
    except DatabaseError as e:
        logger.error("Failed to store %s on slot %s: %s", action, slot_id, e)
        raise SlotWriteError(f"Could not save slot {slot_id}.", slot_id=slot_id, action=action) from e

    result = SlotActionResult(slot, transition.prior_state, transition.new_state, role)
    slot_action_applied.send(
        sender=slot.__class__,
        slot=slot,
        action=action,
        actor=actor,
        role=role,
        prior_state=transition.prior_state,
        reason=reason,
        batched=not aggregate,
    )

    if aggregate:
        try:
            result.aggregate = aggregator.aggregate_event(slot.event_id, role, [action], actor=actor)
        except AggregateWriteError as e:
            result.aggregate_error = e
    return result


def edit_slot(slot_id, actor, payload, reason='', role=None, aggregate=True):
    """Change a slot's time, date, notes, rooms or classes.

    Any such edit puts the slot back to modified and drops an open proposal.
    """
    return apply_slot_action(
        slot_id, actor, state_machine.EDIT, payload=payload, reason=reason, role=role, aggregate=aggregate
    )
