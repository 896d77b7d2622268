"""
Slot state machine for Labo Planning.

Pure decision logic: given a slot value, the acting role, an action and its
payload, compute the next state and the fields that change. Nothing in this
module reads or writes the database.

A slot value is either a SimpleSlot (no open negotiation) or a
CounterProposedSlot carrying the alternative on the table, so proposed fields
exist exactly when the state is counter_proposed.
"""

from datetime import date, datetime

from dateutil import parser as date_parser
from django.utils import timezone

from .exceptions import InvalidPayload, InvalidTimeRange, InvalidTransition, PermissionDenied
from .roles import Role

# Slot states
CREATED = 'created'
MODIFIED = 'modified'
APPROVED = 'approved'
REJECTED = 'rejected'
COUNTER_PROPOSED = 'counter_proposed'

STATE_CHOICES = [
    (CREATED, 'Created'),
    (MODIFIED, 'Modified'),
    (APPROVED, 'Approved'),
    (REJECTED, 'Rejected'),
    (COUNTER_PROPOSED, 'Counter-proposed'),
]
SLOT_STATES = tuple(state for state, _ in STATE_CHOICES)
PENDING_STATES = (CREATED, MODIFIED, COUNTER_PROPOSED)

# Actions
APPROVE = 'approve'
REJECT = 'reject'
COUNTER_PROPOSE = 'counter_propose'
ACCEPT_COUNTER = 'accept_counter'
REJECT_COUNTER = 'reject_counter'
EDIT = 'edit'

ACTION_CHOICES = [
    (APPROVE, 'Approve'),
    (REJECT, 'Reject'),
    (COUNTER_PROPOSE, 'Counter-propose'),
    (ACCEPT_COUNTER, 'Accept counter-proposal'),
    (REJECT_COUNTER, 'Reject counter-proposal with a new offer'),
    (EDIT, 'Edit'),
]

PAYLOAD_ACTIONS = (COUNTER_PROPOSE, REJECT_COUNTER, EDIT)


def parse_datetime_value(value):
    """Parse an ISO-8601 string (or pass a datetime through) as an aware datetime."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.isoparse(str(value))
        except ValueError as exc:
            raise InvalidPayload(f"Invalid datetime value: {value!r}") from exc
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def parse_date_value(value):
    """Parse a YYYY-MM-DD string (or a date/datetime) into a date."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date_parser.isoparse(str(value)).date()
    except ValueError as exc:
        raise InvalidPayload(f"Invalid date value: {value!r}") from exc


def local_date(value):
    if value is None:
        return None
    if timezone.is_aware(value):
        value = timezone.localtime(value)
    return value.date()


def normalize_ids(ids):
    """Sorted, de-duplicated integer ids; anything else is dropped."""
    if ids is None:
        return None
    cleaned = set()
    for value in ids:
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            cleaned.add(value)
        elif isinstance(value, str) and value.strip().isdigit():
            cleaned.add(int(value))
    return sorted(cleaned)


class SlotTimes:
    """A start/end/date/notes set, used both for actual and proposed fields.

    Room and class ids only matter for actual fields; None means "leave as is".
    """

    def __init__(self, start, end, timeslot_date=None, notes=None, salle_ids=None, class_ids=None):
        self.start = start
        self.end = end
        self.timeslot_date = timeslot_date or local_date(start)
        self.notes = notes
        self.salle_ids = normalize_ids(salle_ids)
        self.class_ids = normalize_ids(class_ids)

    @classmethod
    def from_payload(cls, data):
        """Build from a camelCase mapping (startDate, endDate, ...)."""
        if data is None or isinstance(data, cls):
            return data
        return cls(
            start=parse_datetime_value(data.get('startDate')),
            end=parse_datetime_value(data.get('endDate')),
            timeslot_date=parse_date_value(data.get('timeslotDate')),
            notes=data.get('notes'),
            salle_ids=data.get('salleIds'),
            class_ids=data.get('classIds'),
        )

    def validate(self, slot_id=None, action=None):
        if self.start is None or self.end is None:
            raise InvalidPayload("Both startDate and endDate are required.", slot_id=slot_id, action=action)
        if self.end <= self.start:
            raise InvalidTimeRange(self.start, self.end, slot_id=slot_id, action=action)

    def merged_into(self, base):
        """Overlay these fields on ``base``, keeping base values left unset."""
        return SlotTimes(
            start=self.start,
            end=self.end,
            timeslot_date=self.timeslot_date,
            notes=self.notes if self.notes is not None else base.notes,
            salle_ids=self.salle_ids if self.salle_ids is not None else base.salle_ids,
            class_ids=self.class_ids if self.class_ids is not None else base.class_ids,
        )

    def as_tuple(self):
        return (self.start, self.end, self.timeslot_date, self.notes)

    def __eq__(self, other):
        if not isinstance(other, SlotTimes):
            return NotImplemented
        return (self.as_tuple() == other.as_tuple()
                and self.salle_ids == other.salle_ids
                and self.class_ids == other.class_ids)

    def __repr__(self):
        return f"SlotTimes({self.start!r}, {self.end!r}, {self.timeslot_date!r})"


class SimpleSlot:
    """A slot value with no open counter-proposal."""
    kind = 'simple'
    proposed = None
    proposed_by = None

    def __init__(self, slot_id, state, actual):
        if state == COUNTER_PROPOSED:
            raise ValueError("A counter-proposed slot must carry its proposal.")
        if state not in SLOT_STATES:
            raise ValueError(f"Unknown slot state: {state!r}")
        self.slot_id = slot_id
        self.state = state
        self.actual = actual


class CounterProposedSlot(SimpleSlot):
    """A slot value with an alternative on the table."""
    kind = 'counter_proposed'

    def __init__(self, slot_id, actual, proposed, proposed_by=Role.OPERATOR):
        if proposed is None:
            raise ValueError("A counter-proposed slot needs proposed fields.")
        self.slot_id = slot_id
        self.state = COUNTER_PROPOSED
        self.actual = actual
        self.proposed = proposed
        self.proposed_by = proposed_by


class Transition:
    """Outcome of a decision: the next state and the fields to write.

    ``actual`` holds the new actual fields (None leaves them alone);
    ``proposed`` holds the new proposal, None clears it.
    """

    def __init__(self, slot_id, action, role, prior_state, new_state,
                 actual=None, proposed=None, proposed_by=None, reason=''):
        self.slot_id = slot_id
        self.action = action
        self.role = role
        self.prior_state = prior_state
        self.new_state = new_state
        self.actual = actual
        self.proposed = proposed
        self.proposed_by = proposed_by
        self.reason = reason or ''

    @property
    def clears_proposal(self):
        return self.proposed is None

    def apply(self, slot):
        """Return the slot value after this transition."""
        actual = self.actual.merged_into(slot.actual) if self.actual is not None else slot.actual
        if self.new_state == COUNTER_PROPOSED:
            return CounterProposedSlot(slot.slot_id, actual, self.proposed, self.proposed_by)
        return SimpleSlot(slot.slot_id, self.new_state, actual)

    def __repr__(self):
        return f"<Transition slot={self.slot_id} {self.action}: {self.prior_state} -> {self.new_state}>"


def _approve(slot, role, times, reason):
    return Transition(slot.slot_id, APPROVE, role, slot.state, APPROVED, reason=reason)


def _reject(slot, role, times, reason):
    return Transition(slot.slot_id, REJECT, role, slot.state, REJECTED, reason=reason)


def _counter_propose(slot, role, times, reason):
    proposed = SlotTimes(
        start=times.start,
        end=times.end,
        timeslot_date=times.timeslot_date,
        notes=times.notes if times.notes is not None else (slot.actual.notes or ''),
    )
    return Transition(slot.slot_id, COUNTER_PROPOSE, role, slot.state, COUNTER_PROPOSED,
                      proposed=proposed, proposed_by=role, reason=reason)


def _accept_counter(slot, role, times, reason):
    return Transition(slot.slot_id, ACCEPT_COUNTER, role, slot.state, APPROVED,
                      actual=slot.proposed, reason=reason)


def _reject_counter(slot, role, times, reason):
    return Transition(slot.slot_id, REJECT_COUNTER, role, slot.state, MODIFIED,
                      actual=times, reason=reason)


def _edit(slot, role, times, reason):
    return Transition(slot.slot_id, EDIT, role, slot.state, MODIFIED,
                      actual=times, reason=reason)


# action -> (roles allowed, states allowed, handler)
TRANSITIONS = {
    # An open counter-proposal waits for the owner's answer.
    APPROVE: ((Role.OPERATOR,), (CREATED, MODIFIED), _approve),
    REJECT: ((Role.OPERATOR,), (CREATED, MODIFIED, COUNTER_PROPOSED), _reject),
    COUNTER_PROPOSE: ((Role.OPERATOR,), (CREATED, MODIFIED), _counter_propose),
    ACCEPT_COUNTER: ((Role.OWNER,), (COUNTER_PROPOSED,), _accept_counter),
    REJECT_COUNTER: ((Role.OWNER,), (COUNTER_PROPOSED,), _reject_counter),
    # Any structural edit re-opens validation for the slot, whoever makes it.
    EDIT: ((Role.OWNER, Role.OPERATOR), SLOT_STATES, _edit),
}


def decide(slot, role, action, payload=None, reason=''):
    """Compute the transition for ``action`` on ``slot`` by ``role``.

    Raises InvalidTimeRange/InvalidPayload for bad payloads (checked first),
    PermissionDenied when the role lacks the capability and
    InvalidTransition when the current state does not allow the action.
    """
    if action not in TRANSITIONS:
        raise InvalidPayload(f"Unknown action {action!r}.", slot_id=slot.slot_id, action=action)

    times = None
    if action in PAYLOAD_ACTIONS:
        times = SlotTimes.from_payload(payload)
        if times is None:
            raise InvalidPayload(
                f"Action {action} requires a start and end time.",
                slot_id=slot.slot_id, action=action,
            )
        times.validate(slot_id=slot.slot_id, action=action)

    roles, allowed_states, handler = TRANSITIONS[action]
    if role not in roles:
        raise PermissionDenied(action, role, slot_id=slot.slot_id)
    if slot.state not in allowed_states:
        raise InvalidTransition(action, slot.state, slot_id=slot.slot_id)

    return handler(slot, role, times, reason)
