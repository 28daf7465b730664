from datetime import date, time
from typing import Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import logging

from .auth import get_current_actor, issue_token, role_required
from .dependencies import Services, get_services
from .errors import (
    BookingError,
    InvalidTransitionError,
    NoActiveAppointmentError,
    NotFoundError,
    PermissionDeniedError,
    SlotUnavailableError,
    ValidationError,
)
from .permissions import Capability, ensure_can_act_on, ensure_capability, ensure_self
from .schemas import Actor, DocumentKind, ProviderProfile, Role, ServiceMode, Uploaded

router = APIRouter()

ERROR_STATUS_CODES = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    SlotUnavailableError: status.HTTP_409_CONFLICT,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    NoActiveAppointmentError: status.HTTP_409_CONFLICT,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
}


async def booking_error_handler(request: Request, exc: BookingError):
    status_code = ERROR_STATUS_CODES.get(type(exc), status.HTTP_400_BAD_REQUEST)
    logging.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def format_slot(slot: time) -> str:
    return slot.strftime("%H:%M")


class TokenRequest(BaseModel):
    role: Role
    subject_id: str


class RegisterProviderRequest(ProviderProfile):
    documents: Dict[DocumentKind, Uploaded] = Field(default_factory=dict)


class ScheduleRequest(BaseModel):
    weekly_schedule: Dict[str, List[str]]


class VerificationDecisionRequest(BaseModel):
    decision: str


class ScanRequest(BaseModel):
    provider_ids: List[str]


class BookAppointmentRequest(BaseModel):
    provider_id: str
    date: date
    slot: str
    service_mode: ServiceMode
    patient_id: Optional[str] = None


class ManualBookingRequest(BaseModel):
    patient_id: str
    date: date
    slot: str
    service_mode: ServiceMode
    provider_id: Optional[str] = None


class RescheduleRequest(BaseModel):
    note: str


@router.post("/token")
async def login_for_access_token(request: TokenRequest):
    if not request.subject_id.strip():
        raise HTTPException(status_code=400, detail="subject_id is required")
    access_token = issue_token(request.role, request.subject_id)
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/providers")
def list_providers(specialty: Optional[str] = Query(None), services: Services = Depends(get_services)):
    return services.registry.list_providers(specialty)


@router.post("/providers", status_code=status.HTTP_201_CREATED)
def register_provider(request: RegisterProviderRequest, services: Services = Depends(get_services)):
    profile = ProviderProfile.model_validate(request.model_dump(exclude={"documents"}))
    provider = services.verification.submit(profile, request.documents)
    return {"message": "Provider registered", "id": provider.id,
            "verification_status": provider.verification_status}


@router.get("/providers/{provider_id}")
def get_provider(provider_id: str, services: Services = Depends(get_services)):
    return services.registry.get_provider(provider_id)


@router.put("/providers/{provider_id}/schedule")
@role_required([Role.PROVIDER])
def update_schedule(
        provider_id: str,
        request: ScheduleRequest,
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    ensure_self(actor, provider_id, Capability.MANAGE_PROFILE)
    logging.info(f"Setting weekly schedule for provider {provider_id}")
    return services.registry.update_schedule(provider_id, request.weekly_schedule)


@router.patch("/providers/{provider_id}/profile")
@role_required([Role.PROVIDER])
def update_profile(
        provider_id: str,
        changes: dict = Body(...),
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    ensure_self(actor, provider_id, Capability.MANAGE_PROFILE)
    return services.registry.update_profile(provider_id, **changes)


@router.put("/providers/{provider_id}/documents/{kind}")
@role_required([Role.PROVIDER])
def attach_document(
        provider_id: str,
        kind: DocumentKind,
        document: Uploaded,
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    ensure_self(actor, provider_id, Capability.MANAGE_PROFILE)
    return services.registry.attach_document(provider_id, kind, document)


@router.post("/providers/{provider_id}/verification")
@role_required([Role.ADMIN])
def decide_verification(
        provider_id: str,
        request: VerificationDecisionRequest,
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    logging.info(f"Verification decision {request.decision} for {provider_id} by {actor.subject_id}")
    return services.verification.decide(provider_id, request.decision)


@router.post("/verification/scan")
@role_required([Role.ADMIN])
def scan_pending(
        request: ScanRequest,
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    return services.verification.scan_pending_batch(request.provider_ids)


@router.get("/providers/{provider_id}/slots")
def get_bookable_slots(
        provider_id: str,
        day: date = Query(..., alias="date"),
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    slots = services.availability.bookable_slots(provider_id, day)
    return {"provider_id": provider_id, "date": day.isoformat(), "slots": [format_slot(slot) for slot in slots]}


@router.get("/providers/{provider_id}/upcoming-slots")
def get_upcoming_slots(
        provider_id: str,
        start: Optional[date] = Query(None),
        days: int = Query(5, ge=1, le=31),
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    start = start or date.today()
    upcoming = services.availability.upcoming_slots(provider_id, start, days)
    return {
        "provider_id": provider_id,
        "days": [
            {"date": day.isoformat(), "slots": [format_slot(slot) for slot in slots]}
            for day, slots in upcoming.items()
        ],
    }


@router.post("/appointments", status_code=status.HTTP_201_CREATED)
@role_required([Role.PATIENT])
def book_appointment(
        request: BookAppointmentRequest,
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    ensure_capability(actor, Capability.BOOK)
    patient_id = request.patient_id if actor.role == Role.ADMIN and request.patient_id else actor.subject_id
    return services.ledger.book(request.provider_id, patient_id, request.date, request.slot, request.service_mode)


@router.post("/appointments/manual", status_code=status.HTTP_201_CREATED)
@role_required([Role.PROVIDER])
def book_manual_appointment(
        request: ManualBookingRequest,
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    provider_id = request.provider_id if actor.role == Role.ADMIN and request.provider_id else actor.subject_id
    return services.ledger.book_manual(
        provider_id, request.patient_id, request.date, request.slot, request.service_mode, actor=actor
    )


@router.post("/appointments/{appointment_id}/accept")
@role_required([Role.PROVIDER])
def accept_appointment(
        appointment_id: str,
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    return services.ledger.accept(appointment_id, actor)


@router.post("/appointments/{appointment_id}/cancel")
@role_required([Role.PATIENT, Role.PROVIDER])
def cancel_appointment(
        appointment_id: str,
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    return services.ledger.cancel(appointment_id, actor)


@router.post("/appointments/{appointment_id}/reschedule")
@role_required([Role.PROVIDER])
def request_reschedule(
        appointment_id: str,
        request: RescheduleRequest,
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    return services.ledger.request_reschedule(appointment_id, request.note, actor)


@router.post("/appointments/{appointment_id}/settlement")
@role_required([Role.PATIENT])
async def run_settlement(
        appointment_id: str,
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    try:
        appointment = services.ledger.get(appointment_id)
    except NotFoundError:
        appointment = None
    if appointment is not None:
        ensure_can_act_on(actor, appointment, Capability.SETTLE)
    return await services.payments.run_settlement(appointment_id)


@router.get("/appointments")
@role_required([Role.ADMIN])
def list_appointments(
        appointment_status: Optional[str] = Query(None, alias="status"),
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    if appointment_status:
        return services.ledger.list_by_status(appointment_status)
    return services.ledger.list_all()


@router.get("/patients/{patient_id}/appointments")
@role_required([Role.PATIENT])
def list_patient_appointments(
        patient_id: str,
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    if actor.role != Role.ADMIN and actor.subject_id != patient_id:
        raise HTTPException(status_code=403, detail="Not authorized to view appointments for this patient")
    return services.ledger.list_for_patient(patient_id)


@router.get("/providers/{provider_id}/appointments")
@role_required([Role.PROVIDER])
def list_provider_appointments(
        provider_id: str,
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    if actor.role != Role.ADMIN and actor.subject_id != provider_id:
        raise HTTPException(status_code=403, detail="Not authorized to view appointments for this provider")
    return services.ledger.list_for_provider(provider_id)


@router.get("/payouts")
@role_required([Role.ADMIN])
def get_payout_summary(services: Services = Depends(get_services), actor: Actor = Depends(get_current_actor)):
    ensure_capability(actor, Capability.VIEW_PAYOUTS)
    return services.payments.payout_summary()


@router.get("/providers/{provider_id}/subscription")
@role_required([Role.PROVIDER])
def get_subscription(
        provider_id: str,
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    ensure_self(actor, provider_id, Capability.MANAGE_PROFILE)
    return services.subscriptions.get(provider_id)


@router.post("/providers/{provider_id}/subscription/renew")
@role_required([Role.PROVIDER])
def renew_subscription(
        provider_id: str,
        services: Services = Depends(get_services),
        actor: Actor = Depends(get_current_actor)
):
    ensure_self(actor, provider_id, Capability.MANAGE_PROFILE)
    return services.subscriptions.renew(provider_id)
