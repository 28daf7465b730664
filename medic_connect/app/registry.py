# registry.py
import logging
import threading
import uuid
from decimal import Decimal
from typing import Dict, List, Optional

import pydantic

from .errors import InvalidTransitionError, NotFoundError, ValidationError
from .schemas import DocumentKind, Provider, ProviderProfile, VerificationStatus
from .storage import PROVIDERS_KEY
from .utils import normalize_schedule

REQUIRED_PROFILE_FIELDS = ("name", "specialty", "academic_title", "workplace", "price")

EDITABLE_PROFILE_FIELDS = frozenset({
    "name", "specialty", "price", "rating", "tags", "service_modes",
    "academic_title", "workplace", "email", "phone", "experience", "bio",
})

# rejected is terminal
VERIFICATION_TRANSITIONS = {
    VerificationStatus.PENDING: {VerificationStatus.VERIFIED, VerificationStatus.REJECTED},
    VerificationStatus.VERIFIED: {VerificationStatus.REJECTED},
    VerificationStatus.REJECTED: set(),
}

SEED_PROVIDERS = [
    {
        "id": "md-cortes",
        "name": "Dra. Aitana Cortés",
        "specialty": "Cardióloga intervencionista",
        "price": "65",
        "rating": 4.9,
        "tags": ["Cardiología", "Alta complejidad", "Telemedicina"],
        "service_modes": ["home-visit", "in-person"],
        "weekly_schedule": {"M-F": ["09:00", "09:45", "11:30", "16:15"]},
        "workplace": "Clínica Horizonte",
        "bio": "11 años optimizando respuestas cardiovasculares con soporte remoto asistido.",
        "verification_status": "verified",
    },
    {
        "id": "md-jurado",
        "name": "Dr. Thiago Jurado",
        "specialty": "Dermatólogo clínico y estético",
        "price": "42",
        "rating": 4.7,
        "tags": ["Dermatología", "Láser", "Niños"],
        "service_modes": ["in-person"],
        "weekly_schedule": {"M-F": ["10:00", "12:30", "15:00", "18:40"]},
        "workplace": "DermHub Eclipse",
        "bio": "Protocolos de regeneración avanzada para piel sensible y fototipos altos.",
        "verification_status": "verified",
    },
    {
        "id": "md-salvatierra",
        "name": "Lic. Zoe Salvatierra",
        "specialty": "Enfermera intensivista",
        "price": "30",
        "rating": 4.8,
        "tags": ["Cuidados críticos", "Pediatría", "Seguimiento 24/7"],
        "service_modes": ["home-visit"],
        "weekly_schedule": {"M-Su": ["08:15", "13:30", "20:15"]},
        "workplace": "Red NeonCare",
        "bio": "Estabiliza pacientes pediátricos post-UCI con monitoreo híbrido.",
        "verification_status": "verified",
    },
]


def generate_provider_id() -> str:
    return f"prov-{uuid.uuid4().hex[:8]}"


def _error_fields(exc: pydantic.ValidationError) -> List[str]:
    return [".".join(str(part) for part in err["loc"]) for err in exc.errors()]


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class ProviderRegistry:
    """Holds every provider record. Records are replaced wholesale under the lock."""

    def __init__(self, store=None, seed: bool = True):
        self.store = store
        self._lock = threading.RLock()
        self._providers: Dict[str, Provider] = {}
        self._restore(seed)

    def _restore(self, seed):
        stored = self.store.get(PROVIDERS_KEY) if self.store is not None else None
        records = stored if stored is not None else (SEED_PROVIDERS if seed else [])
        for raw in records:
            provider = Provider.model_validate(raw)
            self._providers[provider.id] = provider
        if stored is None:
            logging.info(f"Provider registry cold start with {len(self._providers)} seed providers")
            self._checkpoint()

    def _checkpoint(self):
        if self.store is not None:
            self.store.set(PROVIDERS_KEY, self.snapshot())

    def snapshot(self) -> List[dict]:
        with self._lock:
            return [provider.model_dump(mode="json") for provider in self._providers.values()]

    def _replace(self, provider: Provider) -> Provider:
        with self._lock:
            self._providers[provider.id] = provider
            self._checkpoint()
        return provider

    def _rebuild(self, current: Provider, **changes) -> Provider:
        data = current.model_dump()
        data.update(changes)
        try:
            return Provider.model_validate(data)
        except pydantic.ValidationError as e:
            raise ValidationError(_error_fields(e))

    def get_provider(self, provider_id: str) -> Provider:
        with self._lock:
            provider = self._providers.get(provider_id)
        if provider is None:
            raise NotFoundError("provider", provider_id)
        return provider

    def list_providers(self, specialty: Optional[str] = None) -> List[Provider]:
        with self._lock:
            providers = list(self._providers.values())
        if not specialty:
            return providers
        wanted = specialty.strip().lower()
        return [
            provider for provider in providers
            if provider.specialty.lower() == wanted or wanted in (tag.lower() for tag in provider.tags)
        ]

    def register_provider(self, profile, documents=None) -> Provider:
        if not isinstance(profile, ProviderProfile):
            try:
                profile = ProviderProfile.model_validate(profile or {})
            except pydantic.ValidationError as e:
                raise ValidationError(_error_fields(e))

        missing = [field for field in REQUIRED_PROFILE_FIELDS if _is_blank(getattr(profile, field))]
        if missing:
            raise ValidationError(missing)
        if profile.price <= Decimal("0"):
            raise ValidationError(["price"], reason="non-positive")

        try:
            provider = Provider(
                id=generate_provider_id(),
                name=profile.name.strip(),
                specialty=profile.specialty.strip(),
                price=profile.price,
                tags=profile.tags or [profile.specialty.strip()],
                service_modes=profile.service_modes,
                weekly_schedule=profile.weekly_schedule,
                verification_status=VerificationStatus.PENDING,
                documents=documents or {},
                academic_title=profile.academic_title,
                workplace=profile.workplace,
                email=profile.email,
                phone=profile.phone,
                experience=profile.experience,
                bio=profile.bio,
            )
        except pydantic.ValidationError as e:
            raise ValidationError(_error_fields(e))
        except ValueError:
            raise ValidationError(["weekly_schedule"])

        self._replace(provider)
        logging.info(f"Provider {provider.id} registered, verification pending")
        return provider

    def update_verification(self, provider_id: str, decision) -> Provider:
        try:
            decision = VerificationStatus(decision)
        except ValueError:
            raise ValidationError(["decision"])
        if decision == VerificationStatus.PENDING:
            raise ValidationError(["decision"])

        with self._lock:
            current = self.get_provider(provider_id)
            if current.verification_status == decision:
                return current
            if decision not in VERIFICATION_TRANSITIONS[current.verification_status]:
                raise InvalidTransitionError(provider_id, current.verification_status, decision.value)
            updated = self._replace(current.model_copy(update={"verification_status": decision}))
        logging.info(f"Provider {provider_id} verification {current.verification_status.value} -> {decision.value}")
        return updated

    def update_schedule(self, provider_id: str, weekly_schedule) -> Provider:
        try:
            schedule = normalize_schedule(weekly_schedule)
        except (ValueError, AttributeError, TypeError):
            raise ValidationError(["weekly_schedule"])

        with self._lock:
            current = self.get_provider(provider_id)
            updated = self._replace(self._rebuild(current, weekly_schedule=schedule))
        logging.info(f"Weekly schedule replaced for provider {provider_id}")
        return updated

    def update_profile(self, provider_id: str, **changes) -> Provider:
        unknown = sorted(set(changes) - EDITABLE_PROFILE_FIELDS)
        if unknown:
            raise ValidationError(unknown, reason="not-editable")
        blanked = [field for field in REQUIRED_PROFILE_FIELDS if field in changes and _is_blank(changes[field])]
        if blanked:
            raise ValidationError(blanked)
        if "price" in changes:
            try:
                changes["price"] = Decimal(str(changes["price"]))
            except ArithmeticError:
                raise ValidationError(["price"])
            if changes["price"] <= 0:
                raise ValidationError(["price"], reason="non-positive")

        with self._lock:
            current = self.get_provider(provider_id)
            updated = self._replace(self._rebuild(current, **changes))
        logging.info(f"Profile updated for provider {provider_id}: {sorted(changes)}")
        return updated

    def attach_document(self, provider_id: str, kind, document) -> Provider:
        try:
            kind = DocumentKind(kind)
        except ValueError:
            raise ValidationError(["kind"])

        with self._lock:
            current = self.get_provider(provider_id)
            documents = dict(current.model_dump()["documents"])
            documents[kind] = document
            updated = self._replace(self._rebuild(current, documents=documents))
        logging.info(f"Document {kind.value} attached for provider {provider_id}")
        return updated
