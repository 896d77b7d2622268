"""Test cases for management commands."""
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from scheduling.models import Event
from scheduling.tests.factories import EventFactory, SlotFactory


class RecomputeDerivedCommandTest(TestCase):

    def setUp(self):
        self.stale = EventFactory()
        SlotFactory(event=self.stale, salle_ids=[4])
        self.fresh = EventFactory()

    def test_updates_stale_events(self):
        out = StringIO()
        call_command('recompute_derived', stdout=out)
        self.assertIn(f'Updated event {self.stale.pk}', out.getvalue())
        self.assertIn('1 event(s) updated, 0 failed', out.getvalue())
        self.stale.refresh_from_db()
        self.assertEqual(self.stale.salle_ids, [4])

    def test_dry_run_writes_nothing(self):
        out = StringIO()
        call_command('recompute_derived', '--dry-run', stdout=out)
        self.assertIn('1 event(s) would be updated', out.getvalue())
        self.assertEqual(Event.objects.get(pk=self.stale.pk).salle_ids, [])

    def test_single_event(self):
        out = StringIO()
        call_command('recompute_derived', '--event', str(self.fresh.pk), stdout=out)
        self.assertIn('0 event(s) updated', out.getvalue())
        self.assertEqual(Event.objects.get(pk=self.stale.pk).salle_ids, [])

    def test_unknown_event(self):
        with self.assertRaises(CommandError):
            call_command('recompute_derived', '--event', '999999')
