# scheduling/models.py
"""
Core models for Labo Planning.

This file is part of Labo Planning.
Copyright (C) 2025 Labo Planning Contributors

This software is dual-licensed:
1. GNU General Public License v3.0 (GPL-3.0) - for open source use
2. Commercial License - for proprietary and commercial use

For GPL-3.0 license terms, see LICENSE file.
For commercial licensing, see COMMERCIAL-LICENSE.txt.
"""

from django.contrib.auth.models import User
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from . import state_machine
from .roles import Role


class UserProfile(models.Model):
    """Extended user profile carrying the scheduling role."""
    ROLE_CHOICES = [
        ('teacher', 'Teacher'),
        ('technician', 'Lab Technician'),
        ('sysadmin', 'Lab Administrator'),
    ]

    DISCIPLINE_CHOICES = [
        ('chimie', 'Chimie'),
        ('physique', 'Physique'),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='teacher')
    discipline = models.CharField(max_length=20, choices=DISCIPLINE_CHOICES, blank=True)

    def __str__(self):
        return f"{self.user.get_full_name() or self.user.username} ({self.get_role_display()})"


class Salle(models.Model):
    """A lab room a session can take place in."""
    name = models.CharField(max_length=100, unique=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class SchoolClass(models.Model):
    """A class group attending sessions."""
    name = models.CharField(max_length=100, unique=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['name']
        verbose_name_plural = 'school classes'

    def __str__(self):
        return self.name


class Event(models.Model):
    """A lab session (TP) requested by a teacher, made of one or more slots.

    ``salle_ids``, ``class_ids``, ``start_bound`` and ``end_bound`` are derived
    from the slots and only written by the aggregator.
    """
    PENDING = 'PENDING'
    VALIDATED = 'VALIDATED'
    CANCELLED = 'CANCELLED'
    MOVED = 'MOVED'
    IN_PROGRESS = 'IN_PROGRESS'

    STATE_CHOICES = [
        (PENDING, 'Pending'),
        (VALIDATED, 'Validated'),
        (CANCELLED, 'Cancelled'),
        (MOVED, 'Moved'),
        (IN_PROGRESS, 'In progress'),
    ]

    NO_PENDING = 'noPending'
    OWNER_PENDING = 'ownerPending'
    OPERATOR_PENDING = 'operatorPending'

    VALIDATION_STATE_CHOICES = [
        (NO_PENDING, 'Nothing pending'),
        (OWNER_PENDING, 'Waiting for the owner'),
        (OPERATOR_PENDING, 'Waiting for the lab staff'),
    ]

    DISCIPLINE_CHOICES = UserProfile.DISCIPLINE_CHOICES

    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    discipline = models.CharField(max_length=20, choices=DISCIPLINE_CHOICES, default='chimie')
    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name='lab_events')
    state = models.CharField(max_length=20, choices=STATE_CHOICES, default=PENDING)
    validation_state = models.CharField(
        max_length=20,
        choices=VALIDATION_STATE_CHOICES,
        default=OPERATOR_PENDING,
    )

    # Derived from slots
    salle_ids = models.JSONField(default=list, blank=True)
    class_ids = models.JSONField(default=list, blank=True)
    start_bound = models.DateTimeField(null=True, blank=True)
    end_bound = models.DateTimeField(null=True, blank=True)

    last_state_change = models.JSONField(null=True, blank=True)
    materials = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['owner', 'state'], name='sched_event_owner_state_idx'),
            models.Index(fields=['validation_state'], name='sched_event_validation_idx'),
        ]

    def __str__(self):
        return f"{self.title} ({self.get_state_display()})"


class Slot(models.Model):
    """One concrete occurrence of an event, negotiated between owner and lab staff.

    Proposed fields are populated exactly when the state is counter_proposed.
    """
    PROPOSED_BY_CHOICES = [
        (Role.OWNER.value, 'Owner'),
        (Role.OPERATOR.value, 'Lab staff'),
    ]

    event = models.ForeignKey(Event, on_delete=models.CASCADE, related_name='slots')
    state = models.CharField(
        max_length=20,
        choices=state_machine.STATE_CHOICES,
        default=state_machine.CREATED,
    )

    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    timeslot_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)
    salle_ids = models.JSONField(default=list, blank=True)
    class_ids = models.JSONField(default=list, blank=True)

    proposed_start_date = models.DateTimeField(null=True, blank=True)
    proposed_end_date = models.DateTimeField(null=True, blank=True)
    proposed_timeslot_date = models.DateField(null=True, blank=True)
    proposed_notes = models.TextField(null=True, blank=True)
    proposed_by = models.CharField(max_length=20, choices=PROPOSED_BY_CHOICES, blank=True)

    modified_by = models.JSONField(default=list, blank=True)
    created_by = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name='created_slots'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['start_date', 'id']
        indexes = [
            models.Index(fields=['event', 'state'], name='sched_slot_event_state_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(end_date__gt=F('start_date')),
                name='slot_end_after_start',
            ),
        ]

    def __str__(self):
        return f"{self.event.title} - {self.start_date:%Y-%m-%d %H:%M} ({self.state})"

    @property
    def is_active(self):
        return self.state != state_machine.REJECTED

    @property
    def has_proposal(self):
        return self.proposed_start_date is not None or self.proposed_end_date is not None

    def clean(self):
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValidationError("End time must be after start time.")

        if self.state == state_machine.COUNTER_PROPOSED:
            if self.proposed_start_date is None or self.proposed_end_date is None:
                raise ValidationError("A counter-proposed slot needs proposed start and end times.")
            if self.proposed_end_date <= self.proposed_start_date:
                raise ValidationError("Proposed end time must be after proposed start time.")
        elif self.has_proposal or self.proposed_timeslot_date or self.proposed_notes is not None:
            raise ValidationError("Only counter-proposed slots may carry proposed fields.")

    def save(self, *args, **kwargs):
        if self.timeslot_date is None and self.start_date is not None:
            self.timeslot_date = state_machine.local_date(self.start_date)
        self.full_clean()
        super().save(*args, **kwargs)

    def append_modification(self, user, action, note=''):
        """Append an entry to the modification log, never replacing it."""
        entry = {
            'userId': user.pk if user is not None else None,
            'date': timezone.now().isoformat(),
            'action': action,
        }
        if note:
            entry['note'] = note
        self.modified_by = list(self.modified_by or []) + [entry]


class EventStateChange(models.Model):
    """Audit trail for event state changes."""
    event = models.ForeignKey(Event, on_delete=models.CASCADE, related_name='state_changes')
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True)
    from_state = models.CharField(max_length=20, choices=Event.STATE_CHOICES)
    to_state = models.CharField(max_length=20, choices=Event.STATE_CHOICES)
    reason = models.TextField(blank=True)
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-timestamp', '-id']

    def __str__(self):
        return f"{self.event_id}: {self.from_state} -> {self.to_state}"
