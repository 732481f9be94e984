from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from telequeue.core.exceptions import ConflictError, NotFoundError, ValidationError
from telequeue.db.models import Consultation, ConsultationStatus
from telequeue.services.consultation_service import ConsultationManager


@pytest.mark.asyncio
async def test_try_start_creates_ongoing_consultation(session, doctor, patients):
    consultation = await ConsultationManager(session).try_start(doctor.id, patients[0].id, "room-a")

    assert consultation.status == ConsultationStatus.ONGOING
    assert consultation.room_name == "room-a"
    assert consultation.actual_start_time is not None


@pytest.mark.asyncio
async def test_second_start_for_same_doctor_conflicts(session, doctor, other_doctor, patients):
    manager = ConsultationManager(session)
    await manager.try_start(doctor.id, patients[0].id, "room-a")

    with pytest.raises(ConflictError):
        await manager.try_start(doctor.id, patients[1].id, "room-b")

    # Other doctors are unaffected
    await manager.try_start(other_doctor.id, patients[1].id, "room-c")


@pytest.mark.asyncio
async def test_store_rejects_two_ongoing_for_one_doctor(session, doctor, patients):
    session.add(Consultation(doctor_id=doctor.id, patient_id=patients[0].id, status=ConsultationStatus.ONGOING))
    session.add(Consultation(doctor_id=doctor.id, patient_id=patients[1].id, status=ConsultationStatus.ONGOING))

    with pytest.raises(IntegrityError):
        await session.flush()


@pytest.mark.asyncio
async def test_end_completes_and_records_notes(session, doctor, patients):
    manager = ConsultationManager(session)
    consultation = await manager.try_start(doctor.id, patients[0].id, "room-a")

    ended = await manager.end(consultation.id, notes="Follow up in two weeks")

    assert ended.status == ConsultationStatus.COMPLETED
    assert ended.actual_end_time is not None
    assert ended.notes == "Follow up in two weeks"

    with pytest.raises(ConflictError):
        await manager.end(consultation.id)

    # A completed consultation frees the doctor
    await manager.try_start(doctor.id, patients[1].id, "room-b")


@pytest.mark.asyncio
async def test_end_unknown_consultation(session):
    with pytest.raises(NotFoundError):
        await ConsultationManager(session).end(uuid4())


@pytest.mark.asyncio
async def test_cancel(session, doctor, patients):
    manager = ConsultationManager(session)
    consultation = await manager.try_start(doctor.id, patients[0].id, "room-a")

    with pytest.raises(ValidationError):
        await manager.cancel(consultation.id, "no show", "receptionist")

    cancelled = await manager.cancel(consultation.id, "Patient unreachable", "doctor")
    assert cancelled.status == ConsultationStatus.CANCELLED
    assert cancelled.cancelled_by == "doctor"
    assert cancelled.cancel_reason == "Patient unreachable"
    assert cancelled.actual_end_time is not None

    with pytest.raises(ConflictError):
        await manager.cancel(consultation.id, "again", "admin")


@pytest.mark.asyncio
async def test_cancel_scheduled_consultation(session, doctor, patients):
    scheduled = Consultation(doctor_id=doctor.id, patient_id=patients[0].id, status=ConsultationStatus.SCHEDULED)
    session.add(scheduled)
    await session.flush()

    cancelled = await ConsultationManager(session).cancel(scheduled.id, "Travelling", "patient")
    assert cancelled.status == ConsultationStatus.CANCELLED
    assert cancelled.actual_end_time is None
