# ledger.py
import logging
import threading
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

from prometheus_client import Counter

from .availability import AvailabilityEngine
from .errors import InvalidTransitionError, NotFoundError, SlotUnavailableError, ValidationError
from .permissions import Capability, ensure_can_act_on, ensure_self
from .schemas import ACTIVE_STATUSES, Actor, Appointment, AppointmentStatus, ServiceMode
from .storage import APPOINTMENTS_KEY
from .utils import parse_time_string

BOOKINGS_TOTAL = Counter("medic_bookings_total", "Appointments booked", ["service_mode"])
BOOKING_CONFLICTS_TOTAL = Counter("medic_booking_conflicts_total", "Bookings rejected because the slot was not free", ["reason"])
CANCELLATIONS_TOTAL = Counter("medic_cancellations_total", "Appointments cancelled", ["role"])

# Fixed pool of locks shared by hashing (provider, date) onto it
SLOT_LOCK_STRIPES = 64


def _coerce_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(["date"])


class AppointmentLedger:
    """
    Owns every appointment record and is the only writer of appointment status.

    Bookings for the same provider and date are serialized by a striped lock keyed
    on (provider, date) around the availability check and the insert.
    """

    def __init__(self, registry, store=None, clock=None):
        self.registry = registry
        self.store = store
        self.availability = AvailabilityEngine(registry, self)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._slot_locks = [threading.Lock() for _ in range(SLOT_LOCK_STRIPES)]
        self._appointments: Dict[str, Appointment] = {}
        self._sequence = 0
        self._restore()

    def _restore(self):
        stored = self.store.get(APPOINTMENTS_KEY) if self.store is not None else None
        for raw in stored or []:
            appointment = Appointment.model_validate(raw)
            self._appointments[appointment.id] = appointment
            self._sequence = max(self._sequence, appointment.sequence)
        if stored is not None:
            logging.info(f"Appointment ledger restored with {len(self._appointments)} appointments")

    def _checkpoint(self):
        if self.store is not None:
            self.store.set(APPOINTMENTS_KEY, self.snapshot())

    def snapshot(self) -> List[dict]:
        with self._lock:
            return [appointment.model_dump(mode="json") for appointment in self._ordered(self._appointments.values())]

    def _slot_lock(self, provider_id: str, day: date) -> threading.Lock:
        return self._slot_locks[hash((provider_id, day)) % SLOT_LOCK_STRIPES]

    @staticmethod
    def _ordered(appointments: Iterable[Appointment]) -> List[Appointment]:
        return sorted(appointments, key=lambda appointment: appointment.sequence)

    def get(self, appointment_id: str) -> Appointment:
        with self._lock:
            appointment = self._appointments.get(appointment_id)
        if appointment is None:
            raise NotFoundError("appointment", appointment_id)
        return appointment

    def held_slots(self, provider_id: str, day: date) -> Set:
        with self._lock:
            return {
                appointment.slot for appointment in self._appointments.values()
                if appointment.provider_id == provider_id and appointment.date == day and appointment.is_active
            }

    def book(self, provider_id: str, patient_id: str, day, slot, service_mode,
             initial_status: AppointmentStatus = AppointmentStatus.PENDING_PAYMENT) -> Appointment:
        day = _coerce_date(day)
        if not patient_id or not str(patient_id).strip():
            raise ValidationError(["patient_id"])
        try:
            slot = parse_time_string(slot)
        except ValueError:
            raise ValidationError(["slot"])
        try:
            service_mode = ServiceMode(service_mode)
        except ValueError:
            raise ValidationError(["service_mode"])

        provider = self.registry.get_provider(provider_id)
        if service_mode not in provider.service_modes:
            raise ValidationError(["service_mode"], reason="not-offered")

        with self._slot_lock(provider_id, day):
            # Re-read under the lock so a schedule or verification change is seen
            provider = self.registry.get_provider(provider_id)
            if not provider.is_verified:
                BOOKING_CONFLICTS_TOTAL.labels(reason="provider-unverified").inc()
                raise SlotUnavailableError(provider_id, day, slot, reason="provider-unverified")
            if slot not in self.availability.bookable_slots(provider_id, day):
                reason = "taken" if slot in provider.slots_for(day) else "not-offered"
                BOOKING_CONFLICTS_TOTAL.labels(reason=reason).inc()
                logging.info(f"Booking rejected for provider {provider_id} on {day} at {slot}: {reason}")
                raise SlotUnavailableError(provider_id, day, slot, reason=reason)

            with self._lock:
                self._sequence += 1
                appointment = Appointment(
                    id=f"appt-{self._sequence:06d}",
                    sequence=self._sequence,
                    provider_id=provider_id,
                    patient_id=str(patient_id),
                    date=day,
                    slot=slot,
                    service_mode=service_mode,
                    price=provider.price,
                    status=initial_status,
                    created_at=self._clock(),
                )
                self._appointments[appointment.id] = appointment
                self._checkpoint()

        BOOKINGS_TOTAL.labels(service_mode=service_mode.value).inc()
        logging.info(f"Appointment {appointment.id} booked with provider {provider_id} on {day} at {slot}")
        return appointment

    def _transition(self, appointment_id: str, allowed_from, target: AppointmentStatus, requested: str,
                    actor: Optional[Actor] = None, capability: Optional[Capability] = None,
                    **changes) -> Appointment:
        with self._lock:
            current = self.get(appointment_id)
            if actor is not None:
                ensure_can_act_on(actor, current, capability)
            if current.status not in allowed_from:
                raise InvalidTransitionError(appointment_id, current.status.value, requested)
            updated = current.model_copy(update={"status": target, "updated_at": self._clock(), **changes})
            self._appointments[appointment_id] = updated
            self._checkpoint()
        logging.info(f"Appointment {appointment_id} {current.status.value} -> {target.value}")
        return updated

    def mark_pending_acceptance(self, appointment_id: str, actor: Optional[Actor] = None) -> Appointment:
        return self._transition(
            appointment_id, {AppointmentStatus.PENDING_PAYMENT}, AppointmentStatus.PENDING_ACCEPTANCE,
            "mark-pending-acceptance", actor, Capability.MANUAL_BOOKING,
        )

    def mark_paid(self, appointment_id: str) -> Appointment:
        return self._transition(
            appointment_id, {AppointmentStatus.PENDING_PAYMENT}, AppointmentStatus.CONFIRMED, "mark-paid",
        )

    def accept(self, appointment_id: str, actor: Optional[Actor] = None) -> Appointment:
        return self._transition(
            appointment_id, {AppointmentStatus.PENDING_ACCEPTANCE}, AppointmentStatus.CONFIRMED, "accept",
            actor, Capability.ACCEPT,
        )

    def cancel(self, appointment_id: str, actor: Actor) -> Appointment:
        with self._lock:
            current = self.get(appointment_id)
            ensure_can_act_on(actor, current, Capability.CANCEL)
            if current.status == AppointmentStatus.CANCELLED:
                return current
            updated = self._transition(
                appointment_id, ACTIVE_STATUSES, AppointmentStatus.CANCELLED, "cancel",
                cancelled_by=actor.role,
            )
        CANCELLATIONS_TOTAL.labels(role=actor.role.value).inc()
        return updated

    def request_reschedule(self, appointment_id: str, note: str, actor: Optional[Actor] = None) -> Appointment:
        if not note or not note.strip():
            raise ValidationError(["note"])
        with self._lock:
            current = self.get(appointment_id)
            notes = f"{current.notes} - {note.strip()}" if current.notes else note.strip()
            return self._transition(
                appointment_id,
                {AppointmentStatus.CONFIRMED, AppointmentStatus.PENDING_ACCEPTANCE},
                AppointmentStatus.PENDING_ACCEPTANCE,
                "request-reschedule",
                actor, Capability.RESCHEDULE,
                notes=notes,
            )

    def book_manual(self, provider_id: str, patient_id: str, day, slot, service_mode,
                    actor: Optional[Actor] = None) -> Appointment:
        """Provider-originated booking: skips payment and waits for acceptance."""
        if actor is not None:
            ensure_self(actor, provider_id, Capability.MANUAL_BOOKING)
        return self.book(provider_id, patient_id, day, slot, service_mode,
                         initial_status=AppointmentStatus.PENDING_ACCEPTANCE)

    def list_all(self) -> List[Appointment]:
        with self._lock:
            return self._ordered(self._appointments.values())

    def list_for_patient(self, patient_id: str) -> List[Appointment]:
        return [appointment for appointment in self.list_all() if appointment.patient_id == patient_id]

    def list_for_provider(self, provider_id: str) -> List[Appointment]:
        return [appointment for appointment in self.list_all() if appointment.provider_id == provider_id]

    def list_by_status(self, status) -> List[Appointment]:
        try:
            status = AppointmentStatus(status)
        except ValueError:
            raise ValidationError(["status"])
        return [appointment for appointment in self.list_all() if appointment.status == status]
