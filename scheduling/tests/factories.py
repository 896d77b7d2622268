"""Test factories for creating test data."""
import factory
from django.contrib.auth.models import User
from django.utils import timezone
from datetime import datetime, timedelta

from scheduling.models import Event, Salle, SchoolClass, Slot


def local_dt(year, month, day, hour, minute=0):
    """Aware datetime in the current time zone."""
    return timezone.make_aware(datetime(year, month, day, hour, minute))


class UserFactory(factory.django.DjangoModelFactory):
    """User whose profile (created by signal) gets ``role``."""
    class Meta:
        model = User
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.LazyAttribute(lambda obj: f"{obj.username}@test.com")
    first_name = factory.Faker('first_name')
    last_name = factory.Faker('last_name')
    is_active = True

    @factory.post_generation
    def role(obj, create, extracted, **kwargs):
        if not create:
            return
        profile = obj.userprofile
        profile.role = extracted or 'teacher'
        profile.save()


class SalleFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Salle

    name = factory.Sequence(lambda n: f"Salle {n}")
    is_active = True


class SchoolClassFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = SchoolClass

    name = factory.Sequence(lambda n: f"Classe {n}")
    is_active = True


class EventFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Event

    title = factory.Sequence(lambda n: f"TP {n}")
    description = factory.Faker('text', max_nb_chars=100)
    discipline = 'chimie'
    owner = factory.SubFactory(UserFactory)
    state = Event.PENDING
    validation_state = Event.OPERATOR_PENDING


class SlotFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Slot

    event = factory.SubFactory(EventFactory)
    state = 'created'
    start_date = factory.LazyFunction(lambda: local_dt(2025, 3, 10, 9))
    end_date = factory.LazyAttribute(lambda obj: obj.start_date + timedelta(hours=1))
    notes = ''
    salle_ids = factory.LazyFunction(list)
    class_ids = factory.LazyFunction(list)


class CounterProposedSlotFactory(SlotFactory):
    """Slot with an open lab-staff counter-proposal two hours later."""
    state = 'counter_proposed'
    proposed_start_date = factory.LazyAttribute(lambda obj: obj.start_date + timedelta(hours=2))
    proposed_end_date = factory.LazyAttribute(lambda obj: obj.end_date + timedelta(hours=2))
    proposed_notes = ''
    proposed_by = 'operator'
