"""
Bulk slot actions for Labo Planning.

A bulk action is one logical operation over several slots of an event. Every
slot is decided and stored on its own: a failure on one slot never rolls back
the others. Once every slot has settled, the event gets exactly one
aggregation pass and one authoritative re-fetch.
"""

import logging

from django.db import DatabaseError

from . import aggregator, state_machine
from .exceptions import (
    AggregateWriteError, PartialBulkFailure, SchedulingError, SlotNotFound, SlotWriteError,
)
from .models import Event, Slot
from .roles import resolve_role
from .signals import bulk_action_settled
from .slot_actions import apply_slot_action

logger = logging.getLogger(__name__)


class SlotOutcome:
    """Per-slot result of a bulk action."""

    def __init__(self, slot_id, ok, error=None, result=None):
        self.slot_id = slot_id
        self.ok = ok
        self.error = error
        self.result = result

    def to_dict(self):
        data = {'slotId': self.slot_id, 'ok': self.ok}
        if self.error is not None:
            data['error'] = self.error.to_dict()
        return data


class BulkResult:
    """Settled outcome of a bulk action.

    ``event`` is the event as re-read after the aggregation pass.
    """

    def __init__(self, event_id, action, outcomes, event=None, aggregate=None, aggregate_error=None):
        self.event_id = event_id
        self.action = action
        self.outcomes = outcomes
        self.event = event
        self.aggregate = aggregate
        self.aggregate_error = aggregate_error

    @property
    def succeeded_ids(self):
        return [outcome.slot_id for outcome in self.outcomes if outcome.ok]

    @property
    def failed_ids(self):
        return [outcome.slot_id for outcome in self.outcomes if not outcome.ok]

    @property
    def has_failures(self):
        return bool(self.failed_ids)

    def raise_for_failures(self):
        """Raise PartialBulkFailure naming every failed slot, if any failed."""
        failures = {outcome.slot_id: outcome.error for outcome in self.outcomes if not outcome.ok}
        if failures:
            raise PartialBulkFailure(failures, action=self.action)

    def to_dict(self):
        data = {
            'eventId': self.event_id,
            'action': self.action,
            'results': [outcome.to_dict() for outcome in self.outcomes],
            'failedSlotIds': self.failed_ids,
        }
        if self.aggregate is not None:
            data['aggregate'] = self.aggregate.to_dict()
        if self.aggregate_error is not None:
            data['aggregateError'] = self.aggregate_error.to_dict()
        return data


class ValidationOrchestrator:
    """Applies one action to many slots of an event."""

    def apply(self, event_id, slot_ids, actor, action, payload=None, reason=''):
        """Apply ``action`` to each slot and return a BulkResult.

        Never raises for per-slot failures; they are reported on the result.
        Slots are processed in input order, each in its own transaction.
        """
        event = Event.objects.get(pk=event_id)
        role = resolve_role(actor, event)

        ordered_ids = list(dict.fromkeys(slot_ids))
        in_event = set(
            Slot.objects.filter(event_id=event_id, pk__in=ordered_ids).values_list('pk', flat=True)
        )

        outcomes = []
        for slot_id in ordered_ids:
            if slot_id not in in_event:
                outcomes.append(SlotOutcome(slot_id, False, SlotNotFound(slot_id, action=action)))
                continue
            try:
                result = apply_slot_action(
                    slot_id, actor, action, payload=payload, reason=reason, role=role, aggregate=False
                )
            except SchedulingError as e:
                outcomes.append(SlotOutcome(slot_id, False, e))
            except DatabaseError as e:
                logger.error("Bulk %s: slot %s could not be stored: %s", action, slot_id, e)
                outcomes.append(SlotOutcome(
                    slot_id, False, SlotWriteError(f"Could not save slot {slot_id}.", slot_id=slot_id, action=action)
                ))
            else:
                outcomes.append(SlotOutcome(slot_id, True, result=result))

        bulk = BulkResult(event_id, action, outcomes)
        succeeded = bulk.succeeded_ids
        if succeeded:
            try:
                bulk.aggregate = aggregator.aggregate_event(event_id, role, [action], actor=actor)
            except AggregateWriteError as e:
                bulk.aggregate_error = e

        bulk.event = Event.objects.get(pk=event_id)

        logger.info(
            "Bulk %s on event %s by %s: %d ok, %d failed",
            action, event_id, role.value, len(succeeded), len(bulk.failed_ids),
        )
        bulk_action_settled.send(
            sender=Event,
            event=bulk.event,
            action=action,
            actor=actor,
            succeeded=succeeded,
            failed=bulk.failed_ids,
            reason=reason,
        )
        return bulk

    def approve_all_pending(self, event_id, actor, reason=''):
        """Approve every slot still waiting on the lab staff."""
        slot_ids = list(
            Slot.objects.filter(
                event_id=event_id,
                state__in=(state_machine.CREATED, state_machine.MODIFIED),
            ).values_list('pk', flat=True)
        )
        return self.apply(event_id, slot_ids, actor, state_machine.APPROVE, reason=reason)

    def reject_all(self, event_id, actor, reason=''):
        slot_ids = list(
            Slot.objects.filter(event_id=event_id, state__in=state_machine.PENDING_STATES)
            .values_list('pk', flat=True)
        )
        return self.apply(event_id, slot_ids, actor, state_machine.REJECT, reason=reason)

    def counter_propose_all(self, event_id, slot_ids, actor, payload, reason=''):
        return self.apply(event_id, slot_ids, actor, state_machine.COUNTER_PROPOSE, payload=payload, reason=reason)


validation_orchestrator = ValidationOrchestrator()


def apply_bulk_slot_action(event_id, slot_ids, actor, action, payload=None, reason=''):
    return validation_orchestrator.apply(event_id, slot_ids, actor, action, payload=payload, reason=reason)
