"""Test cases for the slot state machine."""
from datetime import timedelta

from django.test import SimpleTestCase

from scheduling import state_machine
from scheduling.exceptions import InvalidPayload, InvalidTimeRange, InvalidTransition, PermissionDenied
from scheduling.roles import Role
from scheduling.state_machine import (
    CounterProposedSlot, SimpleSlot, SlotTimes, decide,
)
from scheduling.tests.factories import local_dt


def times(hour, length=1, notes=None, salle_ids=None, class_ids=None):
    start = local_dt(2025, 3, 10, hour)
    return SlotTimes(start, start + timedelta(hours=length), notes=notes,
                     salle_ids=salle_ids, class_ids=class_ids)


def payload(hour, length=1, **extra):
    start = local_dt(2025, 3, 10, hour)
    data = {'startDate': start.isoformat(), 'endDate': (start + timedelta(hours=length)).isoformat()}
    data.update(extra)
    return data


class SlotValueTest(SimpleTestCase):
    """Test the tagged slot values."""

    def test_simple_slot_refuses_counter_proposed_state(self):
        with self.assertRaises(ValueError):
            SimpleSlot(1, state_machine.COUNTER_PROPOSED, times(9))

    def test_counter_proposed_slot_requires_proposal(self):
        with self.assertRaises(ValueError):
            CounterProposedSlot(1, times(9), None)

    def test_simple_slot_has_no_proposal(self):
        slot = SimpleSlot(1, state_machine.CREATED, times(9))
        self.assertIsNone(slot.proposed)
        self.assertEqual(slot.kind, 'simple')

    def test_timeslot_date_defaults_to_local_start_date(self):
        value = times(9)
        self.assertEqual(value.timeslot_date.isoformat(), '2025-03-10')

    def test_from_payload_parses_iso_strings(self):
        value = SlotTimes.from_payload(payload(11, salleIds=[2, 1, 2]))
        self.assertEqual(value.start, local_dt(2025, 3, 10, 11))
        self.assertEqual(value.salle_ids, [1, 2])

    def test_from_payload_rejects_garbage(self):
        with self.assertRaises(InvalidPayload):
            SlotTimes.from_payload({'startDate': 'not a date', 'endDate': 'later'})


class OperatorTransitionTest(SimpleTestCase):
    """Test operator-initiated transitions."""

    def test_approve_created_slot(self):
        slot = SimpleSlot(1, state_machine.CREATED, times(9))
        transition = decide(slot, Role.OPERATOR, state_machine.APPROVE)
        self.assertEqual(transition.prior_state, state_machine.CREATED)
        self.assertEqual(transition.new_state, state_machine.APPROVED)
        self.assertTrue(transition.clears_proposal)

    def test_approve_twice_is_invalid(self):
        slot = SimpleSlot(1, state_machine.CREATED, times(9))
        approved = decide(slot, Role.OPERATOR, state_machine.APPROVE).apply(slot)
        with self.assertRaises(InvalidTransition) as ctx:
            decide(approved, Role.OPERATOR, state_machine.APPROVE)
        self.assertEqual(ctx.exception.slot_id, 1)
        self.assertEqual(ctx.exception.action, state_machine.APPROVE)

    def test_reject_keeps_actual_fields(self):
        original = times(9, notes='TP titrage')
        slot = SimpleSlot(4, state_machine.MODIFIED, original)
        result = decide(slot, Role.OPERATOR, state_machine.REJECT, reason='Salle indisponible').apply(slot)
        self.assertEqual(result.state, state_machine.REJECTED)
        self.assertEqual(result.actual, original)

    def test_reject_counter_proposed_slot(self):
        slot = CounterProposedSlot(2, times(9), times(11), Role.OPERATOR)
        result = decide(slot, Role.OPERATOR, state_machine.REJECT).apply(slot)
        self.assertEqual(result.state, state_machine.REJECTED)
        self.assertIsNone(result.proposed)

    def test_counter_propose_sets_proposal_only(self):
        slot = SimpleSlot(2, state_machine.MODIFIED, times(9, notes='Prévoir blouses'))
        result = decide(slot, Role.OPERATOR, state_machine.COUNTER_PROPOSE, payload(11)).apply(slot)
        self.assertEqual(result.state, state_machine.COUNTER_PROPOSED)
        self.assertEqual(result.proposed.start, local_dt(2025, 3, 10, 11))
        self.assertEqual(result.actual.start, local_dt(2025, 3, 10, 9))
        self.assertEqual(result.proposed.notes, 'Prévoir blouses')
        self.assertEqual(result.proposed_by, Role.OPERATOR)

    def test_counter_propose_on_counter_proposed_is_invalid(self):
        slot = CounterProposedSlot(2, times(9), times(11))
        with self.assertRaises(InvalidTransition):
            decide(slot, Role.OPERATOR, state_machine.COUNTER_PROPOSE, payload(14))

    def test_counter_propose_on_approved_is_invalid(self):
        slot = SimpleSlot(2, state_machine.APPROVED, times(9))
        with self.assertRaises(InvalidTransition):
            decide(slot, Role.OPERATOR, state_machine.COUNTER_PROPOSE, payload(14))

    def test_approve_waits_for_owner_answer_to_proposal(self):
        slot = CounterProposedSlot(2, times(9), times(11), Role.OPERATOR)
        with self.assertRaises(InvalidTransition) as ctx:
            decide(slot, Role.OPERATOR, state_machine.APPROVE)
        self.assertEqual(ctx.exception.slot_id, 2)

    def test_owner_cannot_approve_open_proposal(self):
        slot = CounterProposedSlot(2, times(9), times(11), Role.OPERATOR)
        with self.assertRaises(PermissionDenied):
            decide(slot, Role.OWNER, state_machine.APPROVE)

    def test_owner_cannot_approve(self):
        slot = SimpleSlot(1, state_machine.CREATED, times(9))
        with self.assertRaises(PermissionDenied) as ctx:
            decide(slot, Role.OWNER, state_machine.APPROVE)
        self.assertEqual(ctx.exception.slot_id, 1)

    def test_other_cannot_reject(self):
        slot = SimpleSlot(1, state_machine.CREATED, times(9))
        with self.assertRaises(PermissionDenied):
            decide(slot, Role.OTHER, state_machine.REJECT)


class OwnerTransitionTest(SimpleTestCase):
    """Test owner replies to counter-proposals."""

    def setUp(self):
        self.slot = CounterProposedSlot(7, times(9, salle_ids=[1], class_ids=[5]), times(11, notes='Décalé'))

    def test_accept_copies_proposal(self):
        result = decide(self.slot, Role.OWNER, state_machine.ACCEPT_COUNTER).apply(self.slot)
        self.assertEqual(result.state, state_machine.APPROVED)
        self.assertEqual(result.actual.start, self.slot.proposed.start)
        self.assertEqual(result.actual.end, self.slot.proposed.end)
        self.assertEqual(result.actual.notes, 'Décalé')
        self.assertEqual(result.actual.salle_ids, [1])
        self.assertIsNone(result.proposed)

    def test_reject_counter_writes_new_offer(self):
        result = decide(
            self.slot, Role.OWNER, state_machine.REJECT_COUNTER, payload(14, salleIds=[2])
        ).apply(self.slot)
        self.assertEqual(result.state, state_machine.MODIFIED)
        self.assertEqual(result.actual.start, local_dt(2025, 3, 10, 14))
        self.assertEqual(result.actual.salle_ids, [2])
        self.assertEqual(result.actual.class_ids, [5])
        self.assertIsNone(result.proposed)

    def test_operator_cannot_accept(self):
        with self.assertRaises(PermissionDenied):
            decide(self.slot, Role.OPERATOR, state_machine.ACCEPT_COUNTER)

    def test_accept_without_proposal_is_invalid(self):
        slot = SimpleSlot(7, state_machine.MODIFIED, times(9))
        with self.assertRaises(InvalidTransition):
            decide(slot, Role.OWNER, state_machine.ACCEPT_COUNTER)


class PayloadValidationTest(SimpleTestCase):
    """Test payload checks that run before any transition."""

    def test_end_before_start_is_invalid_time_range(self):
        slot = SimpleSlot(3, state_machine.CREATED, times(9))
        bad = {'startDate': local_dt(2025, 3, 10, 12).isoformat(), 'endDate': local_dt(2025, 3, 10, 11).isoformat()}
        with self.assertRaises(InvalidTimeRange) as ctx:
            decide(slot, Role.OPERATOR, state_machine.COUNTER_PROPOSE, bad)
        self.assertEqual(ctx.exception.slot_id, 3)

    def test_time_range_checked_before_permission(self):
        slot = SimpleSlot(3, state_machine.CREATED, times(9))
        bad = {'startDate': local_dt(2025, 3, 10, 12).isoformat(), 'endDate': local_dt(2025, 3, 10, 12).isoformat()}
        with self.assertRaises(InvalidTimeRange):
            decide(slot, Role.OTHER, state_machine.COUNTER_PROPOSE, bad)

    def test_missing_payload(self):
        slot = SimpleSlot(3, state_machine.CREATED, times(9))
        with self.assertRaises(InvalidPayload):
            decide(slot, Role.OPERATOR, state_machine.COUNTER_PROPOSE)

    def test_unknown_action(self):
        slot = SimpleSlot(3, state_machine.CREATED, times(9))
        with self.assertRaises(InvalidPayload):
            decide(slot, Role.OPERATOR, 'teleport')


class EditPolicyTest(SimpleTestCase):
    """Any structural edit re-opens validation for the slot."""

    def test_operator_edit_of_approved_slot_reopens_it(self):
        slot = SimpleSlot(5, state_machine.APPROVED, times(9))
        result = decide(slot, Role.OPERATOR, state_machine.EDIT, payload(10)).apply(slot)
        self.assertEqual(result.state, state_machine.MODIFIED)
        self.assertEqual(result.actual.start, local_dt(2025, 3, 10, 10))

    def test_owner_edit_clears_open_proposal(self):
        slot = CounterProposedSlot(5, times(9), times(11))
        result = decide(slot, Role.OWNER, state_machine.EDIT, payload(15)).apply(slot)
        self.assertEqual(result.state, state_machine.MODIFIED)
        self.assertIsNone(result.proposed)

    def test_other_cannot_edit(self):
        slot = SimpleSlot(5, state_machine.CREATED, times(9))
        with self.assertRaises(PermissionDenied):
            decide(slot, Role.OTHER, state_machine.EDIT, payload(10))
