# permissions.py
from enum import Enum

from .errors import PermissionDeniedError
from .schemas import Actor, Appointment, Role


class Capability(str, Enum):
    BOOK = "book"
    SETTLE = "settle"
    CANCEL = "cancel"
    ACCEPT = "accept"
    RESCHEDULE = "reschedule"
    MANUAL_BOOKING = "manual-booking"
    MANAGE_PROFILE = "manage-profile"
    REVIEW_PROVIDERS = "review-providers"
    VIEW_PAYOUTS = "view-payouts"


ROLE_CAPABILITIES = {
    Role.PATIENT: frozenset({Capability.BOOK, Capability.SETTLE, Capability.CANCEL}),
    Role.PROVIDER: frozenset({
        Capability.CANCEL,
        Capability.ACCEPT,
        Capability.RESCHEDULE,
        Capability.MANUAL_BOOKING,
        Capability.MANAGE_PROFILE,
    }),
    Role.ADMIN: frozenset(Capability),
}


def has_capability(actor: Actor, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(actor.role, frozenset())


def ensure_capability(actor: Actor, capability: Capability):
    if not has_capability(actor, capability):
        raise PermissionDeniedError(actor.role, capability, actor.subject_id)


def owns_appointment(actor: Actor, appointment: Appointment) -> bool:
    if actor.role == Role.ADMIN:
        return True
    if actor.role == Role.PATIENT:
        return appointment.patient_id == actor.subject_id
    if actor.role == Role.PROVIDER:
        return appointment.provider_id == actor.subject_id
    return False


def ensure_can_act_on(actor: Actor, appointment: Appointment, capability: Capability):
    ensure_capability(actor, capability)
    if not owns_appointment(actor, appointment):
        raise PermissionDeniedError(actor.role, capability, actor.subject_id)


def ensure_self(actor: Actor, provider_id: str, capability: Capability):
    """Providers may only act on their own record; admins on any."""
    ensure_capability(actor, capability)
    if actor.role != Role.ADMIN and actor.subject_id != provider_id:
        raise PermissionDeniedError(actor.role, capability, actor.subject_id)
