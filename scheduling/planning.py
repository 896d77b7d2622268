"""
Timeslot planning editor for Labo Planning.

An owner edits a whole event's slot set in a draft, then saves it in one go.
The draft keeps an immutable snapshot of every slot it was opened with; on
save the rows are diffed against those snapshots to get the minimal set of
creates, updates and deletes.

The draft is never stored. Saving is not atomic across slots: updates and
deletes are applied slot by slot, then new slots are created in one batch.
"""

import logging
from datetime import datetime, timedelta

from django.conf import settings
from django.db import DatabaseError
from django.dispatch import Signal
from django.utils import timezone

from . import aggregator, state_machine
from .exceptions import (
    AggregateWriteError, DraftClosed, DraftValidationError, InvalidPayload,
    PermissionDenied, SchedulingError, SlotNotFound, SlotWriteError,
)
from .models import Event
from .roles import Role, resolve_role
from .signals import slots_persisted
from .slot_actions import apply_slot_action
from .state_machine import SlotTimes, normalize_ids, parse_date_value
from .store import slot_store

logger = logging.getLogger(__name__)

DATE_FORMAT = '%Y-%m-%d'
TIME_FORMAT = '%H:%M'

DEFAULT_MAX_SLOTS = 50


def _parse_time(value):
    try:
        return datetime.strptime(value, TIME_FORMAT).time()
    except (TypeError, ValueError) as e:
        raise InvalidPayload(f"Invalid time {value!r}, expected HH:MM.") from e


class SlotSnapshot:
    """Normalized, immutable view of a stored slot as the editor shows it."""

    def __init__(self, slot_id, date, start, end, salle_ids=(), class_ids=(), end_offset=0):
        self.slot_id = slot_id
        self.date = date
        self.start = start
        self.end = end
        # Days between the start date and the end date, 1 for an overnight slot
        self.end_offset = end_offset
        self.salle_ids = tuple(normalize_ids(salle_ids))
        self.class_ids = tuple(normalize_ids(class_ids))

    @classmethod
    def from_slot(cls, slot):
        start = timezone.localtime(slot.start_date)
        end = timezone.localtime(slot.end_date)
        return cls(
            slot.pk,
            start.strftime(DATE_FORMAT),
            start.strftime(TIME_FORMAT),
            end.strftime(TIME_FORMAT),
            slot.salle_ids or [],
            slot.class_ids or [],
            (end.date() - start.date()).days,
        )

    def key(self):
        return (self.date, self.start, self.end, self.end_offset, self.salle_ids, self.class_ids)

    def __repr__(self):
        return f"<SlotSnapshot {self.slot_id} {self.date} {self.start}-{self.end}>"


class DraftRow:
    """An editable row of the planning draft.

    ``original`` is the snapshot of the stored slot the row was cloned from,
    None for a row added in the editor.
    """

    def __init__(self, date='', start_time='', end_time='', salle_ids=None, class_ids=None,
                 notes=None, original=None, deleted=False, end_offset=0):
        if hasattr(date, 'strftime'):
            date = date.strftime(DATE_FORMAT)
        self.date = date or ''
        self.start_time = start_time or ''
        self.end_time = end_time or ''
        self.salle_ids = normalize_ids(salle_ids or [])
        self.class_ids = normalize_ids(class_ids or [])
        self.notes = notes
        self.original = original
        self.deleted = deleted
        self.end_offset = end_offset or 0

    @classmethod
    def from_snapshot(cls, snapshot):
        return cls(
            date=snapshot.date,
            start_time=snapshot.start,
            end_time=snapshot.end,
            salle_ids=list(snapshot.salle_ids),
            class_ids=list(snapshot.class_ids),
            original=snapshot,
            end_offset=snapshot.end_offset,
        )

    @property
    def slot_id(self):
        return self.original.slot_id if self.original is not None else None

    @property
    def is_complete(self):
        return bool(self.date and self.start_time and self.end_time)

    def key(self):
        return (
            self.date, self.start_time, self.end_time, self.end_offset,
            tuple(normalize_ids(self.salle_ids)), tuple(normalize_ids(self.class_ids)),
        )

    def to_times(self):
        """Aware SlotTimes for this row in the current time zone."""
        day = parse_date_value(self.date)
        start = timezone.make_aware(datetime.combine(day, _parse_time(self.start_time)))
        end_day = day + timedelta(days=self.end_offset)
        end = timezone.make_aware(datetime.combine(end_day, _parse_time(self.end_time)))
        return SlotTimes(
            start=start,
            end=end,
            timeslot_date=day,
            notes=self.notes,
            salle_ids=self.salle_ids,
            class_ids=self.class_ids,
        )

    def to_dict(self):
        return {
            'slotId': self.slot_id,
            'date': self.date,
            'startTime': self.start_time,
            'endTime': self.end_time,
            'endDayOffset': self.end_offset,
            'salleIds': self.salle_ids,
            'classIds': self.class_ids,
            'deleted': self.deleted,
        }


class SlotDiff:
    """Operations needed to turn the stored slot set into the draft."""

    def __init__(self, to_create=None, to_update=None, to_delete=None):
        self.to_create = to_create or []
        self.to_update = to_update or []
        self.to_delete = to_delete or []

    @property
    def is_empty(self):
        return not (self.to_create or self.to_update or self.to_delete)

    def to_dict(self):
        return {
            'toCreate': [row.to_dict() for row in self.to_create],
            'toUpdate': [row.to_dict() for row in self.to_update],
            'toDelete': list(self.to_delete),
            'nothingToSave': self.is_empty,
        }


def diff_slot_draft(original_slots, draft_slots):
    """Classify draft rows against the snapshots they were opened from.

    Pure. A complete row without an original is a create; a complete row
    whose normalized values differ from its original is an update; an
    original no remaining row points at is a delete. Incomplete rows are
    never submitted, and one that still points at its original keeps that
    slot as it is.
    """
    to_create = []
    to_update = []
    kept_ids = set()

    for row in draft_slots:
        if row.deleted:
            continue
        if row.original is not None:
            kept_ids.add(row.original.slot_id)
        if not row.is_complete:
            continue
        if row.original is None:
            to_create.append(row)
        elif row.key() != row.original.key():
            to_update.append(row)

    to_delete = [
        snapshot.slot_id for snapshot in original_slots
        if snapshot.slot_id not in kept_ids
    ]
    return SlotDiff(to_create, to_update, to_delete)


def validate_rows(rows):
    """Return {row index: message} for rows that would block a save."""
    errors = {}
    for index, row in enumerate(rows):
        if row.deleted or not row.is_complete:
            continue
        try:
            times = row.to_times()
        except InvalidPayload as e:
            errors[index] = e.message
            continue
        if times.end <= times.start:
            errors[index] = "End time must be after start time."
    return errors


class PlanningSaveResult:
    """What a planning save did."""

    def __init__(self, event, diff, nothing_to_save=False):
        self.event = event
        self.diff = diff
        self.nothing_to_save = nothing_to_save
        self.created = []
        self.updated = []
        self.deleted = []
        self.failures = []
        self.aggregate = None
        self.aggregate_error = None

    @property
    def has_failures(self):
        return bool(self.failures)

    def to_dict(self):
        data = {
            'eventId': self.event.pk,
            'nothingToSave': self.nothing_to_save,
            'created': [slot.pk for slot in self.created],
            'updated': list(self.updated),
            'deleted': list(self.deleted),
            'failures': [error.to_dict() for error in self.failures],
        }
        if self.aggregate is not None:
            data['aggregate'] = self.aggregate.to_dict()
        if self.aggregate_error is not None:
            data['aggregateError'] = self.aggregate_error.to_dict()
        return data


class PlanningDraft:
    """An owner's editing session over an event's slots.

    Listeners connected to ``saved`` only hear about this draft's saves.
    """

    def __init__(self, event, slots):
        self.event = event
        self.originals = [SlotSnapshot.from_slot(slot) for slot in slots]
        self.rows = [DraftRow.from_snapshot(snapshot) for snapshot in self.originals]
        self.saved = Signal()
        self._open = True

    @classmethod
    def open(cls, event_id):
        event = Event.objects.get(pk=event_id)
        return cls(event, slot_store.for_event(event_id, 'all'))

    @property
    def is_open(self):
        return self._open

    def close(self):
        """Discard the draft; a save still running will not merge into it."""
        self._open = False
        self.rows = []

    def _check_open(self):
        if not self._open:
            raise DraftClosed(self.event.pk)

    def add_row(self, date='', start_time='', end_time='', salle_ids=None, class_ids=None, notes=None):
        self._check_open()
        row = DraftRow(date, start_time, end_time, salle_ids, class_ids, notes)
        self.rows.append(row)
        return row

    def update_row(self, index, **changes):
        self._check_open()
        row = self.rows[index]
        for field in ('date', 'start_time', 'end_time'):
            if field in changes:
                setattr(row, field, changes[field] or '')
        if 'end_offset' in changes:
            row.end_offset = changes['end_offset'] or 0
        if 'notes' in changes:
            row.notes = changes['notes']
        for field in ('salle_ids', 'class_ids'):
            if field in changes:
                setattr(row, field, normalize_ids(changes[field] or []))
        return row

    def remove_row(self, index):
        """Drop a row; rows backed by a stored slot are only marked deleted."""
        self._check_open()
        row = self.rows[index]
        if row.original is None:
            self.rows.pop(index)
        else:
            row.deleted = True
        return row

    def restore_row(self, index):
        self._check_open()
        self.rows[index].deleted = False
        return self.rows[index]

    def load_rows(self, rows_data):
        """Replace the rows with client-sent data (camelCase dicts).

        A row naming a ``slotId`` is matched to that slot's snapshot.
        """
        self._check_open()
        by_id = {snapshot.slot_id: snapshot for snapshot in self.originals}
        rows = []
        errors = {}
        for index, data in enumerate(rows_data):
            slot_id = data.get('slotId')
            original = None
            if slot_id is not None:
                original = by_id.get(slot_id)
                if original is None:
                    errors[index] = f"Slot {slot_id} does not belong to this event."
                    continue
            rows.append(DraftRow(
                date=data.get('date') or '',
                start_time=data.get('startTime') or '',
                end_time=data.get('endTime') or '',
                salle_ids=data.get('salleIds'),
                class_ids=data.get('classIds'),
                notes=data.get('notes'),
                original=original,
                deleted=bool(data.get('deleted', False)),
                end_offset=data.get('endDayOffset', original.end_offset if original else 0),
            ))
        if errors:
            raise DraftValidationError(errors)
        self.rows = rows
        return rows

    def diff(self):
        return diff_slot_draft(self.originals, self.rows)

    def validate(self):
        """Raise DraftValidationError when any row blocks the save."""
        errors = validate_rows(self.rows)
        max_slots = getattr(settings, 'SCHEDULING_MAX_SLOTS_PER_EVENT', DEFAULT_MAX_SLOTS)
        diff = self.diff()
        remaining = len(self.originals) - len(diff.to_delete) + len(diff.to_create)
        if remaining > max_slots:
            errors['all'] = f"An event cannot have more than {max_slots} slots."
        if errors:
            raise DraftValidationError(errors)

    def reload(self, slots):
        """Reset from stored slots, keeping unfinished rows the user is still typing."""
        pending = [row for row in self.rows if row.original is None and not row.is_complete and not row.deleted]
        self.originals = [SlotSnapshot.from_slot(slot) for slot in slots]
        self.rows = [DraftRow.from_snapshot(snapshot) for snapshot in self.originals] + pending

    def save(self, actor):
        return save_planning_draft(self, actor)


def save_planning_draft(draft, actor):
    """Persist a draft and return a PlanningSaveResult.

    Only the event owner may save. Invalid rows block the whole save; an
    empty diff is reported as nothing to save without touching the store.
    Per-slot failures are collected on the result, successes are kept.
    """
    if not draft.is_open:
        raise DraftClosed(draft.event.pk)

    event = draft.event
    role = resolve_role(actor, event)
    if role != Role.OWNER:
        raise PermissionDenied('plan', role, event_id=event.pk)

    draft.validate()
    diff = draft.diff()
    if diff.is_empty:
        logger.debug("Planning draft for event %s has nothing to save", event.pk)
        return PlanningSaveResult(event, diff, nothing_to_save=True)

    result = PlanningSaveResult(event, diff)

    for row in diff.to_update:
        try:
            apply_slot_action(
                row.slot_id, actor, state_machine.EDIT, payload=row.to_times(),
                role=Role.OWNER, aggregate=False,
            )
        except SchedulingError as e:
            result.failures.append(e)
        else:
            result.updated.append(row.slot_id)

    for slot_id in diff.to_delete:
        try:
            if slot_store.delete(slot_id, event.pk):
                result.deleted.append(slot_id)
            else:
                result.failures.append(SlotNotFound(slot_id, action='delete'))
        except DatabaseError as e:
            logger.error("Failed to delete slot %s of event %s: %s", slot_id, event.pk, e)
            result.failures.append(SlotWriteError(f"Could not delete slot {slot_id}.", slot_id=slot_id, action='delete'))

    if diff.to_create:
        try:
            result.created = slot_store.create_batch(event, [row.to_times() for row in diff.to_create], actor)
        except DatabaseError as e:
            logger.error("Failed to create slots for event %s: %s", event.pk, e)
            result.failures.append(SlotWriteError(
                f"Could not create {len(diff.to_create)} new slot(s).", action='create'
            ))

    event = Event.objects.get(pk=event.pk)
    slots = list(slot_store.for_event(event.pk, 'all'))
    if aggregator.derived_differs(event, slots):
        try:
            result.aggregate = aggregator.recompute_event_derived(event.pk)
            event.refresh_from_db()
        except AggregateWriteError as e:
            result.aggregate_error = e

    if result.created or result.updated or result.deleted:
        aggregator.apply_event_edit(event, actor, ['slots'], role=Role.OWNER)
    result.event = event

    logger.info(
        "Planning saved for event %s: %d created, %d updated, %d deleted, %d failed",
        event.pk, len(result.created), len(result.updated), len(result.deleted), len(result.failures),
    )

    if draft.is_open:
        draft.event = event
        draft.reload(slots)

    slots_persisted.send(
        sender=Event,
        event=event,
        actor=actor,
        created=result.created,
        updated=result.updated,
        deleted=result.deleted,
    )
    draft.saved.send(sender=PlanningDraft, draft=draft, result=result)
    return result
