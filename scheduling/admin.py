# scheduling/admin.py
"""
Django admin configuration for Labo Planning.

This file is part of Labo Planning.
Copyright (C) 2025 Labo Planning Contributors

This software is dual-licensed:
1. GNU General Public License v3.0 (GPL-3.0) - for open source use
2. Commercial License - for proprietary and commercial use

For GPL-3.0 license terms, see LICENSE file.
For commercial licensing, see COMMERCIAL-LICENSE.txt.
"""

from django.contrib import admin
from .models import Event, EventStateChange, Salle, SchoolClass, Slot, UserProfile
from .aggregator import recompute_event_derived


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'role', 'discipline')
    list_filter = ('role', 'discipline')
    search_fields = ('user__username', 'user__first_name', 'user__last_name', 'user__email')


@admin.register(Salle)
class SalleAdmin(admin.ModelAdmin):
    list_display = ('name', 'is_active')
    list_filter = ('is_active',)
    search_fields = ('name',)


@admin.register(SchoolClass)
class SchoolClassAdmin(admin.ModelAdmin):
    list_display = ('name', 'is_active')
    list_filter = ('is_active',)
    search_fields = ('name',)


class SlotInline(admin.TabularInline):
    model = Slot
    extra = 0
    fields = ('state', 'start_date', 'end_date', 'salle_ids', 'class_ids', 'proposed_start_date', 'proposed_end_date')
    readonly_fields = fields
    can_delete = False
    show_change_link = True


class EventStateChangeInline(admin.TabularInline):
    model = EventStateChange
    extra = 0
    fields = ('timestamp', 'user', 'from_state', 'to_state', 'reason')
    readonly_fields = fields
    can_delete = False


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = ('title', 'owner', 'discipline', 'state', 'validation_state', 'start_bound', 'end_bound')
    list_filter = ('state', 'validation_state', 'discipline')
    search_fields = ('title', 'description', 'owner__username')
    # Derived fields are only written by the aggregator
    readonly_fields = ('salle_ids', 'class_ids', 'start_bound', 'end_bound', 'last_state_change',
                       'created_at', 'updated_at')
    date_hierarchy = 'created_at'
    inlines = [SlotInline, EventStateChangeInline]

    fieldsets = (
        ('Basic Information', {
            'fields': ('title', 'description', 'discipline', 'owner', 'materials')
        }),
        ('Validation', {
            'fields': ('state', 'validation_state', 'last_state_change')
        }),
        ('Derived from slots', {
            'fields': ('salle_ids', 'class_ids', 'start_bound', 'end_bound'),
            'classes': ('collapse',)
        }),
        ('System Fields', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        })
    )

    actions = ['recompute_derived_fields']

    def recompute_derived_fields(self, request, queryset):
        changed = sum(1 for event in queryset if recompute_event_derived(event.pk).changed)
        self.message_user(request, f'{changed} event(s) had stale derived fields and were updated.')
    recompute_derived_fields.short_description = 'Recompute rooms, classes and time bounds'


@admin.register(Slot)
class SlotAdmin(admin.ModelAdmin):
    list_display = ('event', 'state', 'start_date', 'end_date', 'proposed_by')
    list_filter = ('state',)
    search_fields = ('event__title', 'notes')
    readonly_fields = ('modified_by', 'created_by', 'created_at', 'updated_at')
    date_hierarchy = 'start_date'
