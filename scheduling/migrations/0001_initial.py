# scheduling/migrations/0001_initial.py
"""
Initial migration for Labo Planning models.

This file is part of Labo Planning.
Copyright (C) 2025 Labo Planning Contributors

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.
"""

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


SLOT_STATE_CHOICES = [
    ('created', 'Created'),
    ('modified', 'Modified'),
    ('approved', 'Approved'),
    ('rejected', 'Rejected'),
    ('counter_proposed', 'Counter-proposed'),
]

EVENT_STATE_CHOICES = [
    ('PENDING', 'Pending'),
    ('VALIDATED', 'Validated'),
    ('CANCELLED', 'Cancelled'),
    ('MOVED', 'Moved'),
    ('IN_PROGRESS', 'In progress'),
]

DISCIPLINE_CHOICES = [('chimie', 'Chimie'), ('physique', 'Physique')]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Salle',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, unique=True)),
                ('is_active', models.BooleanField(default=True)),
            ],
            options={
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='SchoolClass',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, unique=True)),
                ('is_active', models.BooleanField(default=True)),
            ],
            options={
                'ordering': ['name'],
                'verbose_name_plural': 'school classes',
            },
        ),
        migrations.CreateModel(
            name='UserProfile',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('role', models.CharField(choices=[('teacher', 'Teacher'), ('technician', 'Lab Technician'), ('sysadmin', 'Lab Administrator')], default='teacher', max_length=20)),
                ('discipline', models.CharField(blank=True, choices=DISCIPLINE_CHOICES, max_length=20)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='Event',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(max_length=200)),
                ('description', models.TextField(blank=True)),
                ('discipline', models.CharField(choices=DISCIPLINE_CHOICES, default='chimie', max_length=20)),
                ('state', models.CharField(choices=EVENT_STATE_CHOICES, default='PENDING', max_length=20)),
                ('validation_state', models.CharField(choices=[('noPending', 'Nothing pending'), ('ownerPending', 'Waiting for the owner'), ('operatorPending', 'Waiting for the lab staff')], default='operatorPending', max_length=20)),
                ('salle_ids', models.JSONField(blank=True, default=list)),
                ('class_ids', models.JSONField(blank=True, default=list)),
                ('start_bound', models.DateTimeField(blank=True, null=True)),
                ('end_bound', models.DateTimeField(blank=True, null=True)),
                ('last_state_change', models.JSONField(blank=True, null=True)),
                ('materials', models.JSONField(blank=True, default=list)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='lab_events', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['owner', 'state'], name='sched_event_owner_state_idx'),
                    models.Index(fields=['validation_state'], name='sched_event_validation_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Slot',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('state', models.CharField(choices=SLOT_STATE_CHOICES, default='created', max_length=20)),
                ('start_date', models.DateTimeField()),
                ('end_date', models.DateTimeField()),
                ('timeslot_date', models.DateField(blank=True, null=True)),
                ('notes', models.TextField(blank=True)),
                ('salle_ids', models.JSONField(blank=True, default=list)),
                ('class_ids', models.JSONField(blank=True, default=list)),
                ('proposed_start_date', models.DateTimeField(blank=True, null=True)),
                ('proposed_end_date', models.DateTimeField(blank=True, null=True)),
                ('proposed_timeslot_date', models.DateField(blank=True, null=True)),
                ('proposed_notes', models.TextField(blank=True, null=True)),
                ('proposed_by', models.CharField(blank=True, choices=[('owner', 'Owner'), ('operator', 'Lab staff')], max_length=20)),
                ('modified_by', models.JSONField(blank=True, default=list)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='created_slots', to=settings.AUTH_USER_MODEL)),
                ('event', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='slots', to='scheduling.event')),
            ],
            options={
                'ordering': ['start_date', 'id'],
                'indexes': [
                    models.Index(fields=['event', 'state'], name='sched_slot_event_state_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(end_date__gt=models.F('start_date')), name='slot_end_after_start'),
                ],
            },
        ),
        migrations.CreateModel(
            name='EventStateChange',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('from_state', models.CharField(choices=EVENT_STATE_CHOICES, max_length=20)),
                ('to_state', models.CharField(choices=EVENT_STATE_CHOICES, max_length=20)),
                ('reason', models.TextField(blank=True)),
                ('timestamp', models.DateTimeField(auto_now_add=True)),
                ('event', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='state_changes', to='scheduling.event')),
                ('user', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-timestamp', '-id'],
            },
        ),
    ]
