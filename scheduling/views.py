# scheduling/views.py
"""
REST API views for Labo Planning.

This file is part of Labo Planning.
Copyright (C) 2025 Labo Planning Contributors

This software is dual-licensed:
1. GNU General Public License v3.0 (GPL-3.0) - for open source use
2. Commercial License - for proprietary and commercial use

For GPL-3.0 license terms, see LICENSE file.
For commercial licensing, see COMMERCIAL-LICENSE.txt.
"""

import logging

from django.db import transaction
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from . import aggregator, state_machine
from .exceptions import (
    AggregateWriteError, DraftClosed, DraftValidationError, InvalidPayload, InvalidTimeRange,
    InvalidTransition, PartialBulkFailure, PermissionDenied, SchedulingError, SlotNotFound,
    SlotWriteError,
)
from .models import Event, Slot
from .orchestrator import validation_orchestrator
from .planning import PlanningDraft, validate_rows
from .roles import Role, has_operator_capability, resolve_role
from .serializers import (
    BulkSlotActionSerializer, EventSerializer, EventStateSerializer, PlanningSerializer,
    SlotActionSerializer, SlotSerializer, SlotTimesSerializer,
)
from .slot_actions import apply_slot_action, edit_slot
from .state_machine import SlotTimes
from .store import SLOT_KINDS, list_event_slots, slot_store

logger = logging.getLogger(__name__)

ERROR_STATUS = [
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (DraftClosed, status.HTTP_409_CONFLICT),
    (SlotNotFound, status.HTTP_404_NOT_FOUND),
    (InvalidTimeRange, status.HTTP_400_BAD_REQUEST),
    (InvalidPayload, status.HTTP_400_BAD_REQUEST),
    (DraftValidationError, status.HTTP_400_BAD_REQUEST),
    (PartialBulkFailure, status.HTTP_207_MULTI_STATUS),
    (SlotWriteError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (AggregateWriteError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def error_response(error):
    """Map a SchedulingError to a Response."""
    for error_class, http_status in ERROR_STATUS:
        if isinstance(error, error_class):
            break
    else:
        http_status = status.HTTP_400_BAD_REQUEST
    return Response({'error': error.to_dict()}, status=http_status)


class EventViewSet(viewsets.ModelViewSet):
    """Lab sessions with their slots.

    Operators see every event, everyone else only their own.
    """
    serializer_class = EventSerializer
    permission_classes = [permissions.IsAuthenticated]
    http_method_names = ['get', 'post', 'patch', 'head', 'options']

    def get_queryset(self):
        user = self.request.user
        queryset = Event.objects.select_related('owner').prefetch_related('slots')

        if not has_operator_capability(user):
            queryset = queryset.filter(owner=user)

        state_filter = self.request.query_params.get('state')
        if state_filter:
            queryset = queryset.filter(state=state_filter)

        validation_filter = self.request.query_params.get('validationState')
        if validation_filter:
            queryset = queryset.filter(validation_state=validation_filter)

        return queryset

    def create(self, request, *args, **kwargs):
        """Create an event owned by the requesting user, with its first slots."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        initial = serializer.validated_data.pop('initialSlots', [])

        times_list = []
        try:
            for data in initial:
                times = SlotTimes.from_payload(data)
                times.validate(action='create')
                times_list.append(times)
        except SchedulingError as e:
            return error_response(e)

        with transaction.atomic():
            event = serializer.save(owner=request.user)
            slot_store.create_batch(event, times_list, request.user)

        aggregate_error = None
        try:
            aggregator.recompute_event_derived(event.pk)
        except AggregateWriteError as e:
            aggregate_error = e

        event = self.get_queryset().get(pk=event.pk)
        logger.info("Event %s created by user %s with %d slot(s)", event.pk, request.user.pk, len(times_list))
        data = self.get_serializer(event).data
        if aggregate_error is not None:
            data['aggregateError'] = aggregate_error.to_dict()
        return Response(data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, *args, **kwargs):
        """Edit event fields; owner edits send the event back for validation."""
        event = self.get_object()
        serializer = self.get_serializer(event, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.validated_data.pop('initialSlots', None)

        changed = [
            field for field, value in serializer.validated_data.items()
            if getattr(event, field) != value
        ]
        role = resolve_role(request.user, event)
        if role == Role.OTHER:
            return error_response(PermissionDenied('edit', role, event_id=event.pk))

        event = serializer.save()
        aggregator.apply_event_edit(event, request.user, changed, role=role)
        return Response(self.get_serializer(event).data)

    @action(detail=True, methods=['post'])
    def state(self, request, pk=None):
        """Move the event to another state."""
        event = self.get_object()
        serializer = EventStateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            aggregator.change_event_state(
                event, request.user, serializer.validated_data['state'], serializer.validated_data['reason']
            )
        except SchedulingError as e:
            return error_response(e)
        return Response(self.get_serializer(event).data)

    @action(detail=True, methods=['post'], url_path='bulk-slot-action')
    def bulk_slot_action(self, request, pk=None):
        """Apply one action to several slots; 207 when some of them failed."""
        event = self.get_object()
        serializer = BulkSlotActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        slot_ids = data.get('slotIds')
        if not slot_ids and data['action'] == state_machine.APPROVE:
            result = validation_orchestrator.approve_all_pending(event.pk, request.user, data['reason'])
        elif not slot_ids and data['action'] == state_machine.REJECT:
            result = validation_orchestrator.reject_all(event.pk, request.user, data['reason'])
        else:
            result = validation_orchestrator.apply(
                event.pk, slot_ids, request.user, data['action'], data.get('payload'), data['reason']
            )

        body = result.to_dict()
        body['event'] = self.get_serializer(result.event).data
        if result.has_failures:
            try:
                result.raise_for_failures()
            except PartialBulkFailure as e:
                body['error'] = e.to_dict()
            return Response(body, status=status.HTTP_207_MULTI_STATUS)
        return Response(body)

    @action(detail=True, methods=['post'])
    def recompute(self, request, pk=None):
        event = self.get_object()
        try:
            result = aggregator.recompute_event_derived(event.pk)
        except AggregateWriteError as e:
            return error_response(e)
        return Response(result.to_dict())

    def _planning_draft(self, request):
        event = self.get_object()
        role = resolve_role(request.user, event)
        if role != Role.OWNER:
            raise PermissionDenied('plan', role, event_id=event.pk)
        serializer = PlanningSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        draft = PlanningDraft.open(event.pk)
        draft.load_rows(serializer.validated_data['rows'])
        return draft

    @action(detail=True, methods=['post'], url_path='planning/diff')
    def planning_diff(self, request, pk=None):
        """Preview the operations a planning save would issue."""
        try:
            draft = self._planning_draft(request)
        except SchedulingError as e:
            return error_response(e)
        body = draft.diff().to_dict()
        body['errors'] = {str(index): message for index, message in validate_rows(draft.rows).items()}
        draft.close()
        return Response(body)

    @action(detail=True, methods=['post'], url_path='planning/save')
    def planning_save(self, request, pk=None):
        try:
            draft = self._planning_draft(request)
        except SchedulingError as e:
            return error_response(e)
        try:
            result = draft.save(request.user)
        except SchedulingError as e:
            return error_response(e)
        finally:
            draft.close()

        body = result.to_dict()
        body['event'] = self.get_serializer(self.get_queryset().get(pk=result.event.pk)).data
        if result.has_failures:
            return Response(body, status=status.HTTP_207_MULTI_STATUS)
        return Response(body)


class SlotViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    """Slots of the events visible to the user.

    Slot state only changes through the action endpoint or a PATCH edit.
    """
    serializer_class = SlotSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        user = self.request.user
        queryset = Slot.objects.select_related('event')
        if not has_operator_capability(user):
            queryset = queryset.filter(event__owner=user)
        return queryset.order_by('start_date', 'id')

    def list(self, request, *args, **kwargs):
        event_id = request.query_params.get('event')
        kind = request.query_params.get('type', 'all')
        if kind not in SLOT_KINDS:
            return Response(
                {'error': f"Unknown slot type '{kind}'. Use one of: {', '.join(SLOT_KINDS)}."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        if event_id is None:
            if kind != 'all':
                return Response(
                    {'error': "The event parameter is required to filter by type."},
                    status=status.HTTP_400_BAD_REQUEST,
                )
            return super().list(request, *args, **kwargs)

        visible = Event.objects.filter(pk=event_id)
        if not has_operator_capability(request.user):
            visible = visible.filter(owner=request.user)
        if not visible.exists():
            return Response({'error': "Event not found."}, status=status.HTTP_404_NOT_FOUND)

        slots = list_event_slots(event_id, kind)
        if kind == 'summary':
            return Response(slots)
        return Response(self.get_serializer(slots, many=True).data)

    def partial_update(self, request, pk=None):
        """Edit a slot's times, notes, rooms or classes; reopens its validation."""
        slot = self.get_object()
        serializer = SlotTimesSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        payload = {
            'startDate': slot.start_date,
            'endDate': slot.end_date,
            'timeslotDate': slot.timeslot_date,
        }
        payload.update(serializer.validated_data)
        if 'startDate' in serializer.validated_data and 'timeslotDate' not in serializer.validated_data:
            payload['timeslotDate'] = None

        try:
            result = edit_slot(slot.pk, request.user, payload, reason=request.data.get('reason', ''))
        except SchedulingError as e:
            return error_response(e)
        return Response(self._result_body(result))

    @action(detail=True, methods=['post'], url_path='action')
    def apply_action(self, request, pk=None):
        """Apply a negotiation action to one slot."""
        slot = self.get_object()
        serializer = SlotActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = apply_slot_action(slot.pk, request.user, data['action'], data.get('payload'), data['reason'])
        except SchedulingError as e:
            return error_response(e)
        return Response(self._result_body(result))

    def _result_body(self, result):
        body = result.to_dict()
        body['slot'] = self.get_serializer(result.slot).data
        return body
