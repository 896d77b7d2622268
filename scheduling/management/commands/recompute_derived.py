# scheduling/management/commands/recompute_derived.py
"""
Management command to recompute derived event fields from slots.

This file is part of Labo Planning.
Copyright (C) 2025 Labo Planning Contributors

This software is dual-licensed:
1. GNU General Public License v3.0 (GPL-3.0) - for open source use
2. Commercial License - for proprietary and commercial use

For GPL-3.0 license terms, see LICENSE file.
For commercial licensing, see COMMERCIAL-LICENSE.txt.
"""

from django.core.management.base import BaseCommand, CommandError
from scheduling.aggregator import derived_differs, recompute_event_derived
from scheduling.exceptions import AggregateWriteError
from scheduling.models import Event


class Command(BaseCommand):
    help = 'Recompute room ids, class ids and time bounds of events from their slots'

    def add_arguments(self, parser):
        parser.add_argument(
            '--event',
            type=int,
            help='Only recompute this event ID'
        )

        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report stale events without writing anything'
        )

    def handle(self, *args, **options):
        events = Event.objects.all().order_by('pk')
        if options['event']:
            events = events.filter(pk=options['event'])
            if not events.exists():
                raise CommandError(f"Event {options['event']} does not exist")

        changed = 0
        failed = 0
        for event in events:
            if options['dry_run']:
                if derived_differs(event, list(event.slots.all())):
                    changed += 1
                    self.stdout.write(f'Event {event.pk} "{event.title}" has stale derived fields')
                continue

            try:
                result = recompute_event_derived(event.pk)
            except AggregateWriteError as e:
                failed += 1
                self.stderr.write(self.style.ERROR(e.message))
                continue
            if result.changed:
                changed += 1
                self.stdout.write(
                    f'Updated event {event.pk} "{event.title}": '
                    f'salles={result.salle_ids} classes={result.class_ids}'
                )

        verb = 'would be updated' if options['dry_run'] else 'updated'
        self.stdout.write(self.style.SUCCESS(f'{changed} event(s) {verb}, {failed} failed'))
