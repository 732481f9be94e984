import logging
from uuid import uuid4

import jwt
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from telequeue.api.deps import CurrentIdentity, get_current_identity
from telequeue.core.config import settings
from telequeue.core.redis import redis_client
from telequeue.main import app


@pytest_asyncio.fixture
async def client(coordinator, doctor):
    app.state.coordinator = coordinator
    app.dependency_overrides[get_current_identity] = lambda: CurrentIdentity(user_id=doctor.id, role="doctor")
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def join(client, doctor_id, patient_id):
    return await client.post(
        "/api/v1/patientQueue/join",
        json={"doctorId": str(doctor_id), "patientId": str(patient_id)}
    )


@pytest.mark.asyncio
async def test_root():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/")
    assert response.status_code == 200
    assert "TeleQueue" in response.json()["message"]


@pytest.mark.asyncio
async def test_join_queue(client, doctor, patients):
    response = await join(client, doctor.id, patients[0].id)

    assert response.status_code == 200
    data = response.json()
    assert data["position"] == 1
    assert data["estimatedWait"] == "0 mins"
    assert data["roomName"]
    assert data["action"] == "joined"

    repeat = await join(client, doctor.id, patients[0].id)
    assert repeat.status_code == 200
    assert repeat.json()["roomName"] == data["roomName"]
    assert repeat.json()["action"] == "wait"


@pytest.mark.asyncio
async def test_join_missing_patient_id_is_bad_request(client, doctor):
    response = await client.post("/api/v1/patientQueue/join", json={"doctorId": str(doctor.id)})
    assert response.status_code == 400
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_join_unknown_patient_is_not_found(client, doctor):
    response = await join(client, doctor.id, uuid4())
    assert response.status_code == 404
    assert "Patient" in response.json()["message"]


@pytest.mark.asyncio
async def test_read_and_leave_queue(client, doctor, patients):
    for patient in patients[:3]:
        await join(client, doctor.id, patient.id)

    response = await client.get(f"/api/v1/patientQueue/doctor/{doctor.id}")
    assert response.status_code == 200
    queue = response.json()["queue"]
    assert [item["position"] for item in queue] == [1, 2, 3]
    assert queue[0]["patientName"] == "Asha Rao"

    response = await client.post(
        "/api/v1/patientQueue/leave",
        json={"patientId": str(patients[1].id), "doctorId": str(doctor.id)}
    )
    assert response.status_code == 200
    queue = response.json()["queue"]
    assert [(item["patientId"], item["position"]) for item in queue] == [
        (str(patients[0].id), 1),
        (str(patients[2].id), 2),
    ]

    again = await client.post(
        "/api/v1/patientQueue/leave",
        json={"patientId": str(patients[1].id), "doctorId": str(doctor.id)}
    )
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_unknown_doctor_queue(client):
    response = await client.get(f"/api/v1/patientQueue/doctor/{uuid4()}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_queue_status(client, doctor, patients):
    await join(client, doctor.id, patients[0].id)
    response = await client.get(
        "/api/v1/patientQueue/status",
        params={"doctorId": str(doctor.id), "patientId": str(patients[0].id)}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "waiting"
    assert response.json()["doctorOnline"] is True


@pytest.mark.asyncio
async def test_consultation_flow(client, doctor, patients):
    empty = await client.post("/api/v1/consultations/invite-next", json={"doctorId": str(doctor.id)})
    assert empty.status_code == 200
    assert empty.json()["message"] == "No waiting patients"

    await join(client, doctor.id, patients[0].id)
    await join(client, doctor.id, patients[1].id)

    started = await client.post("/api/v1/consultations/invite-next", json={"doctorId": str(doctor.id)})
    assert started.status_code == 200
    consultation_id = started.json()["consultationId"]
    assert started.json()["patientId"] == str(patients[0].id)

    busy = await client.post("/api/v1/consultations/invite-next", json={"doctorId": str(doctor.id)})
    assert busy.status_code == 409

    ongoing = await client.get(f"/api/v1/consultations/doctor/{doctor.id}/ongoing")
    assert ongoing.status_code == 200
    assert ongoing.json()["id"] == consultation_id

    ended = await client.post(f"/api/v1/consultations/{consultation_id}/end", json={"notes": "Resolved"})
    assert ended.status_code == 200
    assert ended.json()["status"] == "completed"
    assert ended.json()["notes"] == "Resolved"

    none_ongoing = await client.get(f"/api/v1/consultations/doctor/{doctor.id}/ongoing")
    assert none_ongoing.status_code == 404


@pytest.mark.asyncio
async def test_end_unknown_consultation(client):
    response = await client.post(f"/api/v1/consultations/{uuid4()}/end", json={})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_cancel_with_invalid_canceller(client, doctor, patients):
    await join(client, doctor.id, patients[0].id)
    started = await client.post(
        "/api/v1/consultations/start",
        json={"doctorId": str(doctor.id), "patientId": str(patients[0].id)}
    )
    consultation_id = started.json()["consultationId"]

    response = await client.post(
        f"/api/v1/consultations/{consultation_id}/cancel",
        json={"cancelReason": "n/a", "cancelledBy": "nurse"}
    )
    assert response.status_code == 400

    response = await client.post(
        f"/api/v1/consultations/{consultation_id}/cancel",
        json={"cancelReason": "Patient asked to reschedule", "cancelledBy": "patient"}
    )
    assert response.status_code == 200
    assert response.json()["cancelledBy"] == "patient"


@pytest.mark.asyncio
async def test_availability_toggle(client, doctor, patients):
    await join(client, doctor.id, patients[0].id)

    response = await client.patch(f"/api/v1/doctors/{doctor.id}/availability", json={"isAvailable": False})
    assert response.status_code == 200
    assert response.json()["isOnline"] is False

    queue = await client.get(f"/api/v1/patientQueue/doctor/{doctor.id}")
    assert len(queue.json()["queue"]) == 1


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(coordinator, doctor):
    app.state.coordinator = coordinator
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get(f"/api/v1/patientQueue/doctor/{doctor.id}")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_revoked_token_is_rejected(coordinator, doctor, monkeypatch):
    app.state.coordinator = coordinator
    token = jwt.encode({"sub": str(doctor.id), "role": "doctor"}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    headers = {"Authorization": f"Bearer {token}"}
    issued = {}

    async def get_token(value):
        return issued.get(value)

    monkeypatch.setattr(redis_client, "get_token", get_token)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        revoked = await ac.get(f"/api/v1/patientQueue/doctor/{doctor.id}", headers=headers)
        issued[token] = '{"role": "doctor"}'
        accepted = await ac.get(f"/api/v1/patientQueue/doctor/{doctor.id}", headers=headers)

    assert revoked.status_code == 401
    assert accepted.status_code == 200


@pytest.mark.asyncio
async def test_access_log_names_the_caller(coordinator, doctor, monkeypatch, caplog):
    app.state.coordinator = coordinator
    token = jwt.encode({"sub": str(doctor.id), "role": "doctor"}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    async def get_token(value):
        return '{"role": "doctor"}'

    monkeypatch.setattr(redis_client, "get_token", get_token)

    with caplog.at_level(logging.INFO, logger="telequeue"):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            await ac.get(f"/api/v1/patientQueue/doctor/{doctor.id}", headers={"Authorization": f"Bearer {token}"})
            await ac.get("/")

    lines = [r.getMessage() for r in caplog.records if "->" in r.getMessage()]
    assert f"GET /api/v1/patientQueue/doctor/{doctor.id} -> 200 [doctor:{doctor.id}]" in lines[0]
    assert "GET / -> 200 [anonymous]" in lines[1]
