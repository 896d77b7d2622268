# scheduling/serializers.py
"""
DRF serializers for Labo Planning.

Field names are camelCase on the wire (startDate, salleIds, modifiedBy, ...).

This file is part of Labo Planning.
Copyright (C) 2025 Labo Planning Contributors

This software is dual-licensed:
1. GNU General Public License v3.0 (GPL-3.0) - for open source use
2. Commercial License - for proprietary and commercial use

For GPL-3.0 license terms, see LICENSE file.
For commercial licensing, see COMMERCIAL-LICENSE.txt.
"""

from django.conf import settings
from rest_framework import serializers

from . import state_machine
from .models import Event, Slot


class SlotSerializer(serializers.ModelSerializer):
    eventId = serializers.IntegerField(source='event_id', read_only=True)
    startDate = serializers.DateTimeField(source='start_date', read_only=True)
    endDate = serializers.DateTimeField(source='end_date', read_only=True)
    timeslotDate = serializers.DateField(source='timeslot_date', read_only=True)
    salleIds = serializers.JSONField(source='salle_ids', read_only=True)
    classIds = serializers.JSONField(source='class_ids', read_only=True)
    proposedStartDate = serializers.DateTimeField(source='proposed_start_date', read_only=True)
    proposedEndDate = serializers.DateTimeField(source='proposed_end_date', read_only=True)
    proposedTimeslotDate = serializers.DateField(source='proposed_timeslot_date', read_only=True)
    proposedNotes = serializers.CharField(source='proposed_notes', read_only=True)
    proposedBy = serializers.CharField(source='proposed_by', read_only=True)
    modifiedBy = serializers.JSONField(source='modified_by', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Slot
        fields = [
            'id', 'eventId', 'state', 'startDate', 'endDate', 'timeslotDate', 'notes',
            'salleIds', 'classIds', 'proposedStartDate', 'proposedEndDate',
            'proposedTimeslotDate', 'proposedNotes', 'proposedBy', 'modifiedBy',
            'createdAt', 'updatedAt',
        ]
        read_only_fields = fields


class SlotTimesSerializer(serializers.Serializer):
    """Times and resources sent with counter-proposals, new offers and edits.

    End-after-start is checked by the state machine, not here, so the error
    names the slot and action.
    """
    startDate = serializers.DateTimeField()
    endDate = serializers.DateTimeField()
    timeslotDate = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    salleIds = serializers.ListField(child=serializers.IntegerField(), required=False)
    classIds = serializers.ListField(child=serializers.IntegerField(), required=False)


class EventSerializer(serializers.ModelSerializer):
    ownerId = serializers.IntegerField(source='owner_id', read_only=True)
    ownerName = serializers.CharField(source='owner.get_full_name', read_only=True)
    validationState = serializers.CharField(source='validation_state', read_only=True)
    salleIds = serializers.JSONField(source='salle_ids', read_only=True)
    classIds = serializers.JSONField(source='class_ids', read_only=True)
    startBound = serializers.DateTimeField(source='start_bound', read_only=True)
    endBound = serializers.DateTimeField(source='end_bound', read_only=True)
    lastStateChange = serializers.JSONField(source='last_state_change', read_only=True)
    slots = SlotSerializer(many=True, read_only=True)
    initialSlots = SlotTimesSerializer(many=True, write_only=True, required=False)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Event
        fields = [
            'id', 'title', 'description', 'discipline', 'ownerId', 'ownerName', 'state',
            'validationState', 'salleIds', 'classIds', 'startBound', 'endBound',
            'lastStateChange', 'materials', 'slots', 'initialSlots', 'createdAt', 'updatedAt',
        ]
        read_only_fields = ['id', 'state']

    def validate_initialSlots(self, value):
        if len(value) > getattr(settings, 'SCHEDULING_MAX_SLOTS_PER_EVENT', 50):
            raise serializers.ValidationError("Too many slots for one event.")
        return value


class SlotActionSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=state_machine.ACTION_CHOICES)
    payload = SlotTimesSerializer(required=False, allow_null=True)
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class BulkSlotActionSerializer(SlotActionSerializer):
    """Without ``slotIds``, approve and reject target every slot still pending."""
    slotIds = serializers.ListField(child=serializers.IntegerField(), required=False)

    def validate(self, attrs):
        if not attrs.get('slotIds') and attrs['action'] not in (state_machine.APPROVE, state_machine.REJECT):
            raise serializers.ValidationError({'slotIds': "This field is required for this action."})
        return attrs


class DraftRowSerializer(serializers.Serializer):
    slotId = serializers.IntegerField(required=False, allow_null=True)
    date = serializers.CharField(required=False, allow_blank=True, default='')
    startTime = serializers.CharField(required=False, allow_blank=True, default='')
    endTime = serializers.CharField(required=False, allow_blank=True, default='')
    endDayOffset = serializers.IntegerField(required=False, min_value=0)
    salleIds = serializers.ListField(child=serializers.IntegerField(), required=False, default=list)
    classIds = serializers.ListField(child=serializers.IntegerField(), required=False, default=list)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    deleted = serializers.BooleanField(required=False, default=False)


class PlanningSerializer(serializers.Serializer):
    rows = DraftRowSerializer(many=True)


class EventStateSerializer(serializers.Serializer):
    state = serializers.ChoiceField(choices=Event.STATE_CHOICES)
    reason = serializers.CharField(required=False, allow_blank=True, default='')

