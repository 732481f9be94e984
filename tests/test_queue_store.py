from uuid import uuid4

import pytest

from telequeue.core.exceptions import ConflictError, NotFoundError
from telequeue.db.models import QueueStatus
from telequeue.services.consultation_service import ConsultationManager
from telequeue.services.queue_store import QueueStore


@pytest.mark.asyncio
async def test_append_waiting_assigns_next_position(session, doctor, patients):
    store = QueueStore(session)
    first = await store.append_waiting(doctor.id, patients[0].id, "room-a")
    second = await store.append_waiting(doctor.id, patients[1].id, "room-b")

    assert (first.position, second.position) == (1, 2)
    assert first.status == QueueStatus.WAITING
    assert second.estimated_wait_minutes == 15
    assert await store.count_active(doctor.id) == 2


@pytest.mark.asyncio
async def test_append_waiting_rejects_duplicate_active_pair(session, doctor, patients):
    store = QueueStore(session)
    await store.append_waiting(doctor.id, patients[0].id, "room-a")

    with pytest.raises(ConflictError):
        await store.append_waiting(doctor.id, patients[0].id, "room-b")


@pytest.mark.asyncio
async def test_leave_then_recalculate_closes_gap(session, doctor, patients):
    store = QueueStore(session)
    entries = [await store.append_waiting(doctor.id, p.id, f"room-{i}") for i, p in enumerate(patients[:3])]

    await store.mark_left(entries[1].id)
    waiting = await store.recalculate_positions(doctor.id)

    assert [e.patient_id for e in waiting] == [patients[0].id, patients[2].id]
    assert [e.position for e in waiting] == [1, 2]
    assert entries[1].status == QueueStatus.LEFT


@pytest.mark.asyncio
async def test_in_consultation_entry_sits_ahead_of_waiting_line(session, doctor, patients):
    store = QueueStore(session)
    first = await store.append_waiting(doctor.id, patients[0].id, "room-a")
    await store.append_waiting(doctor.id, patients[1].id, "room-b")

    consultation = await ConsultationManager(session).try_start(doctor.id, patients[0].id, "room-a")
    await store.mark_in_consultation(first.id, consultation.id)
    await store.recalculate_positions(doctor.id)

    active = await store.list_active(doctor.id)
    assert [(e.status, e.position) for e in active] == [
        (QueueStatus.IN_CONSULTATION, 0),
        (QueueStatus.WAITING, 1),
    ]

    # New arrivals extend the waiting line, not the active count
    third = await store.append_waiting(doctor.id, patients[2].id, "room-c")
    assert third.position == 2


@pytest.mark.asyncio
async def test_transitions_are_monotonic(session, doctor, patients):
    store = QueueStore(session)
    entry = await store.append_waiting(doctor.id, patients[0].id, "room-a")

    with pytest.raises(ConflictError):
        await store.mark_done(entry.id)

    await store.mark_left(entry.id)
    with pytest.raises(ConflictError):
        await store.mark_in_consultation(entry.id, uuid4())
    with pytest.raises(ConflictError):
        await store.mark_left(entry.id)


@pytest.mark.asyncio
async def test_unknown_entry(session):
    with pytest.raises(NotFoundError):
        await QueueStore(session).mark_left(uuid4())


@pytest.mark.asyncio
async def test_pair_can_rejoin_after_leaving(session, doctor, patients):
    store = QueueStore(session)
    entry = await store.append_waiting(doctor.id, patients[0].id, "room-a")
    await store.mark_left(entry.id)

    again = await store.append_waiting(doctor.id, patients[0].id, "room-b")
    assert again.id != entry.id
    assert again.position == 1
