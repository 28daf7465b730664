# schemas.py
import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import CENT, normalize_schedule, parse_time_string, weekday_of


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


class Role(str, Enum):
    ADMIN = "admin"
    PROVIDER = "provider"
    PATIENT = "patient"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class AppointmentStatus(str, Enum):
    PENDING_PAYMENT = "pending-payment"
    PENDING_ACCEPTANCE = "pending-acceptance"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


# Statuses that hold a (provider, date, slot) tuple
ACTIVE_STATUSES = frozenset({
    AppointmentStatus.PENDING_PAYMENT,
    AppointmentStatus.PENDING_ACCEPTANCE,
    AppointmentStatus.CONFIRMED,
})


class ServiceMode(str, Enum):
    IN_PERSON = "in-person"
    HOME_VISIT = "home-visit"
    VIRTUAL = "virtual"


class DocumentKind(str, Enum):
    TITLE = "title"
    IDENTITY = "identity"
    HEALTH_CERTIFICATE = "health-certificate"
    SPECIALIZATION = "specialization"


MANDATORY_DOCUMENTS = (DocumentKind.TITLE, DocumentKind.IDENTITY, DocumentKind.HEALTH_CERTIFICATE)


class Actor(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    subject_id: str


class NotUploaded(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: Literal["not-uploaded"] = "not-uploaded"


class Uploaded(BaseModel):
    """Opaque reference to a document held by the document storage collaborator."""
    model_config = ConfigDict(frozen=True)

    state: Literal["uploaded"] = "uploaded"
    uri: str
    name: str
    mime_type: str
    size: int = Field(ge=0)


Document = Annotated[Union[NotUploaded, Uploaded], Field(discriminator="state")]


def empty_documents():
    return {kind: NotUploaded() for kind in DocumentKind}


def _whole_cents(value):
    if value is not None and value != value.quantize(CENT):
        raise ValueError("price must be a whole number of cents")
    return value


def _dedupe(values):
    seen = []
    for value in values or ():
        if value not in seen:
            seen.append(value)
    return tuple(seen)


class Provider(BaseModel):
    """
    A health-service provider as held by the registry.

    Records are immutable; the registry swaps in a new record on every change so
    readers always hold a complete snapshot of the schedule.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    specialty: str
    price: Decimal
    rating: float = Field(default=0.0, ge=0.0, le=5.0)
    tags: Tuple[str, ...] = ()
    service_modes: Tuple[ServiceMode, ...] = (ServiceMode.IN_PERSON,)
    weekly_schedule: Dict[Weekday, Tuple[dt.time, ...]] = Field(default_factory=dict)
    verification_status: VerificationStatus = VerificationStatus.PENDING
    documents: Dict[DocumentKind, Document] = Field(default_factory=empty_documents)
    academic_title: Optional[str] = None
    workplace: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    experience: Optional[str] = None
    bio: Optional[str] = None

    @field_validator("weekly_schedule", mode="before")
    @classmethod
    def _normalize_schedule(cls, value):
        return normalize_schedule(value)

    @field_validator("documents", mode="before")
    @classmethod
    def _fill_documents(cls, value):
        documents = empty_documents()
        for kind, document in (value or {}).items():
            documents[DocumentKind(kind)] = document
        return documents

    @field_validator("tags", "service_modes", mode="before")
    @classmethod
    def _unique(cls, value):
        return _dedupe(value)

    @field_validator("price")
    @classmethod
    def _price_in_cents(cls, value):
        return _whole_cents(value)

    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED

    def slots_for(self, day: dt.date) -> Tuple[dt.time, ...]:
        return self.weekly_schedule.get(Weekday(weekday_of(day)), ())

    def missing_documents(self) -> List[DocumentKind]:
        return [kind for kind in MANDATORY_DOCUMENTS
                if not isinstance(self.documents.get(kind), Uploaded)]


class ProviderProfile(BaseModel):
    """Registration form payload; required fields are checked by the registry."""
    name: Optional[str] = None
    specialty: Optional[str] = None
    academic_title: Optional[str] = None
    workplace: Optional[str] = None
    price: Optional[Decimal] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    experience: Optional[str] = None
    bio: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    service_modes: List[ServiceMode] = Field(
        default_factory=lambda: [ServiceMode.IN_PERSON, ServiceMode.HOME_VISIT])
    weekly_schedule: Dict[str, List[str]] = Field(default_factory=dict)

    @field_validator("price")
    @classmethod
    def _price_in_cents(cls, value):
        return _whole_cents(value)


class Appointment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    sequence: int
    provider_id: str
    patient_id: str
    date: dt.date
    slot: dt.time
    service_mode: ServiceMode
    price: Decimal
    status: AppointmentStatus = AppointmentStatus.PENDING_PAYMENT
    notes: str = ""
    cancelled_by: Optional[Role] = None
    created_at: dt.datetime
    updated_at: Optional[dt.datetime] = None

    @field_validator("slot", mode="before")
    @classmethod
    def _parse_slot(cls, value):
        return parse_time_string(value)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class SettlementStage(str, Enum):
    TOKENIZATION = "tokenization"
    AUTHORIZATION = "authorization"
    COMMISSION_DISTRIBUTION = "commission-distribution"


SETTLEMENT_PIPELINE = (
    SettlementStage.TOKENIZATION,
    SettlementStage.AUTHORIZATION,
    SettlementStage.COMMISSION_DISTRIBUTION,
)


class StageState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    ERROR = "error"


class SettlementOutcome(str, Enum):
    SETTLED = "settled"
    ALREADY_SETTLED = "already-settled"
    IN_PROGRESS = "in-progress"
    ABORTED = "aborted"
    STALLED = "stalled"
    FAILED = "failed"


class SettlementStep(BaseModel):
    stage: SettlementStage
    state: StageState = StageState.PENDING
    started_at: Optional[dt.datetime] = None
    finished_at: Optional[dt.datetime] = None


class CommissionSplit(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: Decimal
    provider_share: Decimal
    platform_share: Decimal


class SettlementReport(BaseModel):
    appointment_id: str
    outcome: SettlementOutcome
    status: AppointmentStatus
    steps: List[SettlementStep]
    split: Optional[CommissionSplit] = None


class PayoutSummary(BaseModel):
    appointments: int
    total: Decimal
    provider_share: Decimal
    platform_share: Decimal


class SubscriptionState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    RENEWED = "renewed"


class Subscription(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider_id: str
    plan: str
    renews_at: dt.date
    status: SubscriptionState = SubscriptionState.PENDING


class ScanReport(BaseModel):
    scanned: int
    pending: List[str] = Field(default_factory=list)
    missing_documents: Dict[str, List[DocumentKind]] = Field(default_factory=dict)
    not_pending: List[str] = Field(default_factory=list)
    unknown: List[str] = Field(default_factory=list)
