"""Test cases for event aggregation and event state changes."""
from unittest import mock

from django.core import mail
from django.db import DatabaseError
from django.test import TestCase

from scheduling import aggregator, state_machine
from scheduling.aggregator import (
    aggregate_event, apply_event_edit, change_event_state, collect_derived,
    is_eligible_for_validation, recompute_event_derived, settle_validation_state,
)
from scheduling.exceptions import AggregateWriteError, InvalidTransition, PermissionDenied
from scheduling.models import Event, EventStateChange
from scheduling.roles import Role
from scheduling.slot_actions import edit_slot
from scheduling.tests.factories import (
    CounterProposedSlotFactory, EventFactory, SlotFactory, UserFactory, local_dt,
)


class RecomputeDerivedTest(TestCase):
    """Test derived fields follow the slots."""

    def setUp(self):
        self.event = EventFactory()

    def test_union_of_active_slot_ids(self):
        SlotFactory(event=self.event, salle_ids=[1], class_ids=[10])
        SlotFactory(
            event=self.event, salle_ids=[1, 2], class_ids=[11],
            start_date=local_dt(2025, 3, 11, 9), end_date=local_dt(2025, 3, 11, 11),
        )

        result = recompute_event_derived(self.event.pk)
        self.assertTrue(result.changed)

        self.event.refresh_from_db()
        self.assertEqual(self.event.salle_ids, [1, 2])
        self.assertEqual(self.event.class_ids, [10, 11])

    def test_second_run_is_a_no_op(self):
        SlotFactory(event=self.event, salle_ids=[2, 1])
        self.assertTrue(recompute_event_derived(self.event.pk).changed)

        with mock.patch.object(Event, 'save') as save:
            result = recompute_event_derived(self.event.pk)
        self.assertFalse(result.changed)
        save.assert_not_called()

    def test_stored_order_does_not_count_as_change(self):
        SlotFactory(event=self.event, salle_ids=[1, 2])
        Event.objects.filter(pk=self.event.pk).update(
            salle_ids=[2, 1],
            start_bound=local_dt(2025, 3, 10, 9),
            end_bound=local_dt(2025, 3, 10, 10),
        )
        self.assertFalse(recompute_event_derived(self.event.pk).changed)

    def test_rejected_slots_do_not_contribute(self):
        SlotFactory(event=self.event, salle_ids=[1])
        SlotFactory(
            event=self.event, salle_ids=[5], state=state_machine.REJECTED,
            start_date=local_dt(2025, 3, 1, 8), end_date=local_dt(2025, 3, 1, 9),
        )
        recompute_event_derived(self.event.pk)
        self.event.refresh_from_db()
        self.assertEqual(self.event.salle_ids, [1])
        self.assertEqual(self.event.start_bound, local_dt(2025, 3, 10, 9))

    def test_bounds_prefer_approved_slots(self):
        SlotFactory(
            event=self.event, state=state_machine.APPROVED,
            start_date=local_dt(2025, 3, 12, 14), end_date=local_dt(2025, 3, 12, 16),
        )
        SlotFactory(
            event=self.event, state=state_machine.MODIFIED,
            start_date=local_dt(2025, 3, 10, 9), end_date=local_dt(2025, 3, 10, 10),
        )
        recompute_event_derived(self.event.pk)
        self.event.refresh_from_db()
        self.assertEqual(self.event.start_bound, local_dt(2025, 3, 12, 14))
        self.assertEqual(self.event.end_bound, local_dt(2025, 3, 12, 16))

    def test_bounds_fall_back_to_active_slots(self):
        SlotFactory(event=self.event, start_date=local_dt(2025, 3, 12, 14), end_date=local_dt(2025, 3, 12, 16))
        SlotFactory(event=self.event, start_date=local_dt(2025, 3, 10, 9), end_date=local_dt(2025, 3, 10, 10))
        recompute_event_derived(self.event.pk)
        self.event.refresh_from_db()
        self.assertEqual(self.event.start_bound, local_dt(2025, 3, 10, 9))
        self.assertEqual(self.event.end_bound, local_dt(2025, 3, 12, 16))

    def test_event_without_slots_clears_fields(self):
        Event.objects.filter(pk=self.event.pk).update(salle_ids=[4], start_bound=local_dt(2025, 3, 1, 8))
        result = recompute_event_derived(self.event.pk)
        self.assertTrue(result.changed)
        self.event.refresh_from_db()
        self.assertEqual(self.event.salle_ids, [])
        self.assertIsNone(self.event.start_bound)

    def test_write_failure_raises_aggregate_error(self):
        SlotFactory(event=self.event, salle_ids=[1])
        with mock.patch.object(Event, 'save', side_effect=DatabaseError("disk full")):
            with self.assertRaises(AggregateWriteError) as ctx:
                recompute_event_derived(self.event.pk)
        self.assertEqual(ctx.exception.event_id, self.event.pk)
        self.event.refresh_from_db()
        self.assertEqual(self.event.salle_ids, [])

    def test_to_dict(self):
        SlotFactory(event=self.event, salle_ids=[3])
        data = recompute_event_derived(self.event.pk).to_dict()
        self.assertEqual(data['salleIds'], [3])
        self.assertEqual(data['startBound'], local_dt(2025, 3, 10, 9).isoformat())


class CollectDerivedTest(TestCase):

    def test_ignores_bad_ids(self):
        slot = SlotFactory.build(salle_ids=[2, '3', 'x', None, 2])
        derived = collect_derived([slot])
        self.assertEqual(derived.salle_ids, [2, 3])


class SettleValidationStateTest(TestCase):
    """Test who an event is waiting on after slot actions."""

    def setUp(self):
        self.event = EventFactory()

    def settle(self, role, *actions):
        return settle_validation_state(self.event, role, actions)

    def test_operator_reject_waits_on_owner(self):
        SlotFactory(event=self.event, state=state_machine.REJECTED)
        self.assertEqual(self.settle(Role.OPERATOR, state_machine.REJECT), Event.OWNER_PENDING)
        self.event.refresh_from_db()
        self.assertEqual(self.event.validation_state, Event.OWNER_PENDING)

    def test_operator_approval_of_everything_clears_pending(self):
        SlotFactory(event=self.event, state=state_machine.APPROVED)
        self.assertEqual(self.settle(Role.OPERATOR, state_machine.APPROVE), Event.NO_PENDING)

    def test_operator_approval_with_open_counter_proposal(self):
        SlotFactory(event=self.event, state=state_machine.APPROVED)
        CounterProposedSlotFactory(event=self.event)
        self.assertEqual(self.settle(Role.OPERATOR, state_machine.APPROVE), Event.OWNER_PENDING)

    def test_owner_reply_goes_back_to_operator(self):
        SlotFactory(event=self.event, state=state_machine.MODIFIED)
        self.event.validation_state = Event.OWNER_PENDING
        self.event.save()
        self.assertEqual(self.settle(Role.OWNER, state_machine.REJECT_COUNTER), Event.OPERATOR_PENDING)

    def test_no_actions_leaves_state(self):
        self.assertEqual(self.settle(Role.OPERATOR), Event.OPERATOR_PENDING)

    def test_aggregate_event_settles_before_recompute(self):
        SlotFactory(event=self.event, state=state_machine.APPROVED, salle_ids=[6])
        result = aggregate_event(self.event.pk, Role.OPERATOR, [state_machine.APPROVE])
        self.assertTrue(result.changed)
        self.event.refresh_from_db()
        self.assertEqual(self.event.validation_state, Event.NO_PENDING)
        self.assertEqual(self.event.salle_ids, [6])

    def test_aggregate_event_reopens_event_after_owner_edit(self):
        owner = self.event.owner
        Event.objects.filter(pk=self.event.pk).update(state=Event.VALIDATED)
        SlotFactory(event=self.event, state=state_machine.MODIFIED)
        aggregate_event(self.event.pk, Role.OWNER, [state_machine.EDIT], actor=owner)
        self.event.refresh_from_db()
        self.assertEqual(self.event.state, Event.PENDING)
        self.assertEqual(EventStateChange.objects.get(event=self.event).user, owner)

    def test_aggregate_event_reopen_failure_is_aggregate_error(self):
        Event.objects.filter(pk=self.event.pk).update(state=Event.VALIDATED)
        SlotFactory(event=self.event, state=state_machine.MODIFIED)
        with mock.patch.object(Event, 'save', side_effect=DatabaseError("locked")):
            with self.assertRaises(AggregateWriteError):
                aggregate_event(self.event.pk, Role.OWNER, [state_machine.EDIT], actor=self.event.owner)
        self.assertFalse(EventStateChange.objects.filter(event=self.event).exists())


class RecomputeSequenceTest(TestCase):
    """Two slots edited one after the other end up in the event."""

    def test_sequential_slot_edits(self):
        owner = UserFactory()
        operator = UserFactory(role='technician')
        event = EventFactory(owner=owner)
        first = SlotFactory(event=event)
        second = SlotFactory(event=event, start_date=local_dt(2025, 3, 11, 9), end_date=local_dt(2025, 3, 11, 10))

        edit_slot(first.pk, operator, {
            'startDate': local_dt(2025, 3, 10, 9).isoformat(),
            'endDate': local_dt(2025, 3, 10, 10).isoformat(),
            'salleIds': [1],
        })
        edit_slot(second.pk, operator, {
            'startDate': local_dt(2025, 3, 11, 9).isoformat(),
            'endDate': local_dt(2025, 3, 11, 10).isoformat(),
            'salleIds': [1, 2],
        })

        event.refresh_from_db()
        self.assertEqual(event.salle_ids, [1, 2])
        self.assertFalse(recompute_event_derived(event.pk).changed)


class ApplyEventEditTest(TestCase):
    """Test the validation policy for event field edits."""

    def setUp(self):
        self.owner = UserFactory()
        self.operator = UserFactory(role='technician')
        self.event = EventFactory(owner=self.owner, state=Event.VALIDATED, validation_state=Event.NO_PENDING)

    def test_owner_edit_resets_state(self):
        apply_event_edit(self.event, self.owner, ['title'])
        self.event.refresh_from_db()
        self.assertEqual(self.event.state, Event.PENDING)
        self.assertEqual(self.event.validation_state, Event.OPERATOR_PENDING)
        self.assertEqual(self.event.last_state_change['from'], Event.VALIDATED)
        self.assertEqual(self.event.state_changes.count(), 1)

    def test_untracked_field_changes_nothing(self):
        apply_event_edit(self.event, self.owner, ['discipline'])
        self.event.refresh_from_db()
        self.assertEqual(self.event.state, Event.VALIDATED)
        self.assertEqual(self.event.validation_state, Event.NO_PENDING)

    def test_operator_edit_keeps_state(self):
        apply_event_edit(self.event, self.operator, ['materials'])
        self.event.refresh_from_db()
        self.assertEqual(self.event.state, Event.VALIDATED)
        self.assertEqual(self.event.validation_state, Event.NO_PENDING)

    def test_cancelled_event_stays_cancelled(self):
        self.event.state = Event.CANCELLED
        self.event.save()
        apply_event_edit(self.event, self.owner, ['description'])
        self.event.refresh_from_db()
        self.assertEqual(self.event.state, Event.CANCELLED)
        self.assertEqual(self.event.validation_state, Event.OPERATOR_PENDING)

    def test_stranger_cannot_edit(self):
        with self.assertRaises(PermissionDenied):
            apply_event_edit(self.event, UserFactory(), ['title'])


class ChangeEventStateTest(TestCase):
    """Test event state changes and their audit trail."""

    def setUp(self):
        self.owner = UserFactory()
        self.operator = UserFactory(role='technician')
        self.event = EventFactory(owner=self.owner)

    def test_validate_requires_every_active_slot_approved(self):
        SlotFactory(event=self.event, state=state_machine.APPROVED)
        SlotFactory(event=self.event, state=state_machine.MODIFIED)
        with self.assertRaises(InvalidTransition):
            change_event_state(self.event, self.operator, Event.VALIDATED)
        self.assertEqual(EventStateChange.objects.count(), 0)

    def test_validate_ignores_rejected_slots(self):
        SlotFactory(event=self.event, state=state_machine.APPROVED)
        SlotFactory(event=self.event, state=state_machine.REJECTED)
        self.assertTrue(is_eligible_for_validation(self.event))

        change_event_state(self.event, self.operator, Event.VALIDATED, reason='OK')
        self.event.refresh_from_db()
        self.assertEqual(self.event.state, Event.VALIDATED)
        change = self.event.state_changes.get()
        self.assertEqual(change.from_state, Event.PENDING)
        self.assertEqual(change.to_state, Event.VALIDATED)
        self.assertEqual(change.user, self.operator)
        self.assertEqual(self.event.last_state_change['reason'], 'OK')

    def test_event_without_slots_is_not_eligible(self):
        self.assertFalse(is_eligible_for_validation(self.event))

    def test_cancel_leaves_slot_states(self):
        slot = SlotFactory(event=self.event, state=state_machine.APPROVED)
        change_event_state(self.event, self.owner, Event.CANCELLED)
        slot.refresh_from_db()
        self.assertEqual(slot.state, state_machine.APPROVED)

    def test_owner_cannot_validate(self):
        SlotFactory(event=self.event, state=state_machine.APPROVED)
        with self.assertRaises(PermissionDenied):
            change_event_state(self.event, self.owner, Event.VALIDATED)

    def test_same_state_is_invalid(self):
        with self.assertRaises(InvalidTransition):
            change_event_state(self.event, self.operator, Event.PENDING)

    def test_unknown_state_is_invalid(self):
        with self.assertRaises(InvalidTransition):
            change_event_state(self.event, self.operator, 'ARCHIVED')

    def test_owner_is_emailed_on_operator_change(self):
        change_event_state(self.event, self.operator, Event.MOVED, reason='Salle fermée')
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn('Salle fermée', mail.outbox[0].body)


class AggregatePatchTargetTest(TestCase):

    def test_aggregate_event_uses_module_recompute(self):
        event = EventFactory()
        with mock.patch.object(aggregator, 'recompute_event_derived') as recompute:
            aggregate_event(event.pk, Role.OPERATOR, [])
        recompute.assert_called_once_with(event.pk)
