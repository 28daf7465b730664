import pytest

from medic_connect.app.auth import issue_token

from conftest import DOCUMENTS_PAYLOAD, login, submit_provider


@pytest.fixture
def admin_headers(client):
    return login(client, "admin", "admin-1")


@pytest.fixture
def patient_headers(client):
    return login(client, "patient", "patient-1")


def test_login_issues_bearer_token(client):
    response = client.post("/token", json={"role": "patient", "subject_id": "patient-1"})
    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"

    response = client.post("/token", json={"role": "superuser", "subject_id": "x"})
    assert response.status_code == 422


def test_protected_routes_need_a_token(client, next_monday):
    response = client.get("/providers/md-cortes/slots", params={"date": next_monday.isoformat()})
    assert response.status_code == 401

    response = client.get("/payouts", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_list_and_get_providers(client):
    response = client.get("/providers")
    assert response.status_code == 200
    assert [p["id"] for p in response.json()] == ["md-cortes", "md-jurado", "md-salvatierra"]

    response = client.get("/providers", params={"specialty": "Pediatría"})
    assert [p["id"] for p in response.json()] == ["md-salvatierra"]

    response = client.get("/providers/md-jurado")
    assert response.status_code == 200
    assert response.json()["verification_status"] == "verified"

    response = client.get("/providers/nobody")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_registration_reports_missing_fields(client):
    response = client.post("/providers", json={"name": "Dr. Y"})
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "validation_error"
    assert set(body["details"]["fields"]) == {"specialty", "academic_title", "workplace", "price"}


def test_admin_review_flow(client, admin_headers, patient_headers, next_monday):
    provider_id = submit_provider(client)
    response = client.get(f"/providers/{provider_id}/slots", params={"date": next_monday.isoformat()},
                          headers=patient_headers)
    assert response.json()["slots"] == []

    response = client.post("/verification/scan", json={"provider_ids": [provider_id]}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["pending"] == [provider_id]

    response = client.post(f"/providers/{provider_id}/verification", json={"decision": "verified"},
                           headers=patient_headers)
    assert response.status_code == 403

    response = client.post(f"/providers/{provider_id}/verification", json={"decision": "verified"},
                           headers=admin_headers)
    assert response.status_code == 200, response.text
    assert response.json()["verification_status"] == "verified"

    response = client.get(f"/providers/{provider_id}/slots", params={"date": next_monday.isoformat()},
                          headers=patient_headers)
    assert response.json() == {"provider_id": provider_id, "date": next_monday.isoformat(),
                               "slots": ["09:00", "10:00"]}


def test_approval_without_documents_is_refused(client, admin_headers):
    provider_id = submit_provider(client, documents={})
    response = client.post(f"/providers/{provider_id}/verification", json={"decision": "verified"},
                           headers=admin_headers)
    assert response.status_code == 422
    assert response.json()["details"]["reason"] == "missing-documents"

    provider_headers = login(client, "provider", provider_id)
    for kind, document in DOCUMENTS_PAYLOAD.items():
        response = client.put(f"/providers/{provider_id}/documents/{kind}", json=document, headers=provider_headers)
        assert response.status_code == 200, response.text

    response = client.post(f"/providers/{provider_id}/verification", json={"decision": "verified"},
                           headers=admin_headers)
    assert response.status_code == 200


def test_provider_manages_only_own_profile(client, next_monday):
    headers = login(client, "provider", "md-jurado")

    response = client.put("/providers/md-jurado/schedule", json={"weekly_schedule": {"M-F": ["08:00", "9am"]}},
                          headers=headers)
    assert response.status_code == 200, response.text

    response = client.patch("/providers/md-jurado/profile", json={"bio": "Consulta renovada"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["bio"] == "Consulta renovada"

    response = client.put("/providers/md-cortes/schedule", json={"weekly_schedule": {"monday": ["08:00"]}},
                          headers=headers)
    assert response.status_code == 403

    response = client.get("/providers/md-jurado/slots", params={"date": next_monday.isoformat()}, headers=headers)
    assert response.json()["slots"] == ["08:00", "09:00"]


def test_upcoming_slots(client, patient_headers, next_monday):
    response = client.get("/providers/md-cortes/upcoming-slots", params={"start": next_monday.isoformat()},
                          headers=patient_headers)
    assert response.status_code == 200
    days = response.json()["days"]
    assert len(days) == 5
    assert days[0] == {"date": next_monday.isoformat(), "slots": ["09:00", "09:45", "11:30", "16:15"]}


def test_patient_cannot_use_provider_routes(client, patient_headers):
    response = client.post("/appointments/appt-000001/accept", headers=patient_headers)
    assert response.status_code == 403

    response = client.get("/payouts", headers=patient_headers)
    assert response.status_code == 403


def test_subscription_routes(client):
    provider_id = submit_provider(client)
    headers = login(client, "provider", provider_id)

    response = client.get(f"/providers/{provider_id}/subscription", headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "pending"

    response = client.post(f"/providers/{provider_id}/subscription/renew", headers=headers)
    assert response.json()["status"] == "renewed"

    response = client.get("/providers/md-cortes/subscription", headers=headers)
    assert response.status_code == 403


def test_issue_token_round_trip(client):
    headers = {"Authorization": f"Bearer {issue_token('admin', 'ops')}"}
    response = client.get("/appointments", headers=headers)
    assert response.status_code == 200
    assert response.json() == []
