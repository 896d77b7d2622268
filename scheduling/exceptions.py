"""
Error taxonomy for slot negotiation and planning.

Every error names the slot (and action) it concerns when there is one, so a
caller can point at the exact row that failed.
"""


class SchedulingError(Exception):
    """Base class for scheduling failures."""
    code = 'scheduling_error'

    def __init__(self, message, slot_id=None, action=None):
        super().__init__(message)
        self.message = message
        self.slot_id = slot_id
        self.action = action

    def to_dict(self):
        data = {'code': self.code, 'message': self.message}
        if self.slot_id is not None:
            data['slotId'] = self.slot_id
        if self.action:
            data['action'] = self.action
        return data


class PermissionDenied(SchedulingError):
    """The acting role lacks the capability for the attempted action."""
    code = 'permission_denied'

    def __init__(self, action, role, slot_id=None, event_id=None):
        role_name = getattr(role, 'value', role)
        if slot_id is not None:
            target = f"slot {slot_id}"
        elif event_id is not None:
            target = f"event {event_id}"
        else:
            target = "this record"
        super().__init__(
            f"Role '{role_name}' is not allowed to {action} {target}.",
            slot_id=slot_id,
            action=action,
        )
        self.role = role
        self.event_id = event_id


class InvalidTransition(SchedulingError):
    """The current state does not allow the attempted action.

    Usually means the caller works from stale data and should re-fetch.
    """
    code = 'invalid_transition'

    def __init__(self, action, state, slot_id=None, event_id=None, detail=None):
        target = f"slot {slot_id}" if slot_id is not None else f"event {event_id}"
        message = f"Cannot {action} {target} in state '{state}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message + '.', slot_id=slot_id, action=action)
        self.state = state
        self.event_id = event_id


class InvalidTimeRange(SchedulingError):
    """End time is not after start time."""
    code = 'invalid_time_range'

    def __init__(self, start, end, slot_id=None, action=None):
        super().__init__(
            f"End time ({end}) must be after start time ({start}).",
            slot_id=slot_id,
            action=action,
        )
        self.start = start
        self.end = end


class InvalidPayload(SchedulingError):
    """The action payload is missing or malformed."""
    code = 'invalid_payload'


class SlotNotFound(SchedulingError):
    code = 'slot_not_found'

    def __init__(self, slot_id, action=None):
        super().__init__(f"Slot {slot_id} does not exist.", slot_id=slot_id, action=action)


class SlotWriteError(SchedulingError):
    """Persisting a slot change failed at the database level."""
    code = 'slot_write_failed'


class AggregateWriteError(SchedulingError):
    """Persisting an event's derived fields failed.

    Slot-level changes that already succeeded stay in place; the recompute can
    be retried on its own.
    """
    code = 'aggregate_write_failed'

    def __init__(self, event_id):
        super().__init__(f"Could not update derived fields of event {event_id}.")
        self.event_id = event_id

    def to_dict(self):
        data = super().to_dict()
        data['eventId'] = self.event_id
        return data


class PartialBulkFailure(SchedulingError):
    """Some slots of a bulk action failed; the others were kept."""
    code = 'partial_bulk_failure'

    def __init__(self, failures, action=None):
        self.failures = dict(failures)
        failed_ids = ', '.join(str(slot_id) for slot_id in self.failures)
        super().__init__(f"Action failed for slots: {failed_ids}.", action=action)

    def to_dict(self):
        data = super().to_dict()
        data['failedSlotIds'] = list(self.failures)
        data['errors'] = [error.to_dict() for error in self.failures.values()]
        return data


class DraftValidationError(SchedulingError):
    """One or more planning rows are invalid; nothing was saved."""
    code = 'draft_invalid'

    def __init__(self, errors):
        self.errors = dict(errors)
        super().__init__(f"{len(self.errors)} planning row(s) are invalid.", action='plan')

    def to_dict(self):
        data = super().to_dict()
        data['rows'] = {str(index): message for index, message in self.errors.items()}
        return data


class DraftClosed(SchedulingError):
    """The editing draft was closed before the operation completed."""
    code = 'draft_closed'

    def __init__(self, event_id):
        super().__init__(f"The planning draft for event {event_id} is closed.", action='plan')
        self.event_id = event_id
