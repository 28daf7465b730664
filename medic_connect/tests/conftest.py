from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from medic_connect.app import create_app
from medic_connect.app.dependencies import build_services
from medic_connect.app.schemas import Actor, Role, Uploaded
from medic_connect.app.storage import InMemoryStore

PROFILE = {
    "name": "Dr. X",
    "specialty": "Cardiología",
    "academic_title": "Médico cirujano",
    "workplace": "Clínica Horizonte",
    "price": "65",
}

DOCUMENTS = {
    kind: Uploaded(uri=f"file:///docs/{kind}.pdf", name=f"{kind}.pdf", mime_type="application/pdf", size=2048)
    for kind in ("title", "identity", "health-certificate")
}


def next_weekday(weekday, start=None):
    start = start or date.today()
    days_ahead = (weekday - start.weekday()) % 7 or 7
    return start + timedelta(days=days_ahead)


def patient(subject_id="patient-1"):
    return Actor(role=Role.PATIENT, subject_id=subject_id)


def provider_actor(subject_id):
    return Actor(role=Role.PROVIDER, subject_id=subject_id)


ADMIN = Actor(role=Role.ADMIN, subject_id="admin-1")

DOCUMENTS_PAYLOAD = {kind: document.model_dump(exclude={"state"}) for kind, document in DOCUMENTS.items()}


def login(client, role, subject_id):
    response = client.post("/token", json={"role": role, "subject_id": subject_id})
    assert response.status_code == 200, f"Login failed: {response.text}"
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def submit_provider(client, **overrides):
    payload = {
        **PROFILE,
        "weekly_schedule": {"monday": ["09:00", "10:00"]},
        "documents": DOCUMENTS_PAYLOAD,
        **overrides,
    }
    response = client.post("/providers", json=payload)
    assert response.status_code == 201, f"Provider registration failed: {response.text}"
    return response.json()["id"]


@pytest.fixture
def next_monday():
    return next_weekday(0)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def services(store):
    return build_services(store, stage_delay=0, stage_timeout=1)


@pytest.fixture
def register_provider(services):
    def _register(schedule=None, verified=True, documents=DOCUMENTS, **overrides):
        profile = {**PROFILE, "weekly_schedule": schedule or {"monday": ["09:00", "10:00"]}, **overrides}
        provider = services.verification.submit(profile, documents)
        if verified:
            provider = services.verification.approve(provider.id)
        return provider
    return _register


@pytest.fixture
def dr_x(register_provider):
    return register_provider()


@pytest.fixture
def client(services):
    return TestClient(create_app(services))
