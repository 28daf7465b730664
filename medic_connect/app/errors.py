# errors.py
from typing import Iterable, Optional


class BookingError(Exception):
    """Base class for every failure raised by the booking core."""

    code = "booking_error"

    def __init__(self, *args, **details):
        super().__init__(*args)
        self.details = details

    def to_dict(self):
        return {"error": self.code, "details": {k: _plain(v) for k, v in self.details.items()}}


class ValidationError(BookingError):
    code = "validation_error"

    def __init__(self, fields: Iterable[str] = (), **details):
        self.fields = list(fields)
        super().__init__(*self.fields, fields=self.fields, **details)


class NotFoundError(BookingError):
    code = "not_found"

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(kind, identifier, kind=kind, id=identifier)


class SlotUnavailableError(BookingError):
    code = "slot_unavailable"

    def __init__(self, provider_id: str, date, slot, reason: str = "taken"):
        self.provider_id = provider_id
        self.date = date
        self.slot = slot
        self.reason = reason
        super().__init__(provider_id, date, slot, reason,
                         provider_id=provider_id, date=date, slot=slot, reason=reason)


class InvalidTransitionError(BookingError):
    code = "invalid_transition"

    def __init__(self, entity_id: str, current, requested: str):
        self.entity_id = entity_id
        self.current = current
        self.requested = requested
        super().__init__(entity_id, current, requested,
                         id=entity_id, current=current, requested=requested)


class NoActiveAppointmentError(BookingError):
    code = "no_active_appointment"

    def __init__(self, appointment_id: str, status: Optional[str] = None):
        self.appointment_id = appointment_id
        self.status = status
        super().__init__(appointment_id, status, id=appointment_id, status=status)


class PermissionDeniedError(BookingError):
    code = "permission_denied"

    def __init__(self, role, capability, subject_id: Optional[str] = None):
        self.role = role
        self.capability = capability
        super().__init__(role, capability, role=role, capability=capability, subject_id=subject_id)


def _plain(value):
    # Enums and dates go out as their JSON-friendly form
    if hasattr(value, "value"):
        return value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value
