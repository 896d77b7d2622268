"""
Role resolution for lab events.

A user's relation to an event is resolved once into a closed set of roles
and the rest of the code dispatches on that value.
"""

from enum import Enum

from django.conf import settings

DEFAULT_OPERATOR_ROLES = ['technician', 'sysadmin']


class Role(Enum):
    OWNER = 'owner'
    OPERATOR = 'operator'
    OTHER = 'other'


def operator_roles():
    """Profile roles holding validation authority."""
    return getattr(settings, 'SCHEDULING_OPERATOR_ROLES', DEFAULT_OPERATOR_ROLES)


def has_operator_capability(user):
    """Check whether a user may validate sessions they do not own."""
    if user is None or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    profile = getattr(user, 'userprofile', None)
    return profile is not None and profile.role in operator_roles()


def resolve_role(user, event):
    """Resolve how a user relates to an event.

    Ownership wins over operator capability: an operator looking at their
    own session acts as its owner.
    """
    if user is None or not user.is_authenticated:
        return Role.OTHER
    if event.owner_id == user.pk:
        return Role.OWNER
    if has_operator_capability(user):
        return Role.OPERATOR
    return Role.OTHER
