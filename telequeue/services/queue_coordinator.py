"""
Queue coordinator: the state machine behind the live waiting room.

Queue entries move ``waiting -> in_consultation -> done`` or
``waiting -> left``. Every operation that changes a doctor's line runs under
that doctor's in-process lock and, inside one transaction, takes a row lock
on the doctor (``SELECT ... FOR UPDATE``) so several worker processes
sharing a Postgres database serialize as well. Notifications go out after
the transaction commits.

Both the REST routes and the websocket handler call into this class; it is
the only place queue rules live.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from telequeue.core.config import Settings, settings as default_settings
from telequeue.core.exceptions import ConflictError, NotFoundError, NoWaitingPatients
from telequeue.core.logger import logger
from telequeue.core.utils import estimate_wait_minutes, format_wait, generate_room_name
from telequeue.db.models import (
    Consultation,
    ConsultationStatus,
    Doctor,
    Patient,
    QueueEntry,
    QueueStatus,
)
from telequeue.schemas.consultation import ConsultationResponse, ConsultationStarted
from telequeue.schemas.doctor import DoctorStatusResponse
from telequeue.schemas.queue import (
    JoinQueueResponse,
    PatientQueueStatus,
    PositionUpdate,
    QueueEntryResponse,
    QueueResponse,
)
from telequeue.services import notifier as events
from telequeue.services.connection_registry import DOCTOR, PATIENT, ConnectionRegistry, Identity
from telequeue.services.consultation_service import ConsultationManager
from telequeue.services.notifier import Notifier
from telequeue.services.queue_store import QueueStore


class QueueCoordinator:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        registry: ConnectionRegistry,
        notifier: Notifier,
        config: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.notifier = notifier
        self.avg_minutes = config.AVG_CONSULTATION_MINUTES
        self.slot_minutes = config.CONSULTATION_SLOT_MINUTES
        self.grace_seconds = config.DISCONNECT_GRACE_SECONDS
        self._locks: Dict[UUID, asyncio.Lock] = {}
        self._lock_users: Dict[UUID, int] = {}
        self._pending_disconnects: Dict[Identity, Tuple[str, asyncio.Task]] = {}

    # -- scopes -----------------------------------------------------------

    @asynccontextmanager
    async def _doctor_lock(self, doctor_id: UUID) -> AsyncIterator[None]:
        # A lock lives only while someone holds or waits on it
        lock = self._locks.setdefault(doctor_id, asyncio.Lock())
        self._lock_users[doctor_id] = self._lock_users.get(doctor_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[doctor_id] -= 1
            if not self._lock_users[doctor_id]:
                del self._lock_users[doctor_id]
                del self._locks[doctor_id]

    @asynccontextmanager
    async def _doctor_transaction(self, doctor_id: UUID) -> AsyncIterator[Tuple[AsyncSession, Doctor]]:
        """Serialize all queue mutations for one doctor and commit them together."""
        async with self._doctor_lock(doctor_id):
            async with self.session_factory() as session:
                stmt = select(Doctor).where(Doctor.id == doctor_id).with_for_update()
                result = await session.execute(stmt)
                doctor = result.scalars().first()
                if not doctor:
                    raise NotFoundError("Doctor not found")
                yield session, doctor
                await session.commit()

    async def _require_patient(self, session: AsyncSession, patient_id: UUID) -> Patient:
        patient = await session.get(Patient, patient_id)
        if not patient or not patient.is_active:
            raise NotFoundError("Patient not found or not active")
        return patient

    # -- views ------------------------------------------------------------

    def _entry_view(self, entry: QueueEntry, patient: Optional[Patient] = None) -> QueueEntryResponse:
        minutes = estimate_wait_minutes(
            entry.position, self.avg_minutes, entry.status == QueueStatus.IN_CONSULTATION
        )
        return QueueEntryResponse(
            id=entry.id,
            doctor_id=entry.doctor_id,
            patient_id=entry.patient_id,
            position=entry.position,
            status=entry.status,
            room_name=entry.room_name,
            consultation_id=entry.consultation_id,
            priority=entry.priority,
            joined_at=entry.joined_at,
            estimated_wait=format_wait(minutes),
            estimated_wait_minutes=minutes,
            patient_name=patient.name if patient else None,
            patient_phone=patient.phone if patient else None,
            patient_email=patient.email if patient else None
        )

    async def _snapshot(self, session: AsyncSession, doctor_id: UUID) -> QueueResponse:
        rows = await QueueStore(session).list_active_with_patients(doctor_id)
        queue = [self._entry_view(entry, patient) for entry, patient in rows]
        waiting = sum(1 for item in queue if item.status == QueueStatus.WAITING)
        return QueueResponse(
            doctor_id=doctor_id,
            queue=queue,
            queue_length=waiting,
            total_in_queue=len(queue)
        )

    def _position_update(self, item: QueueEntryResponse, snapshot: QueueResponse) -> PositionUpdate:
        return PositionUpdate(
            position=item.position,
            estimated_wait=item.estimated_wait,
            estimated_wait_minutes=item.estimated_wait_minutes,
            status=item.status,
            queue_length=snapshot.queue_length,
            total_in_queue=snapshot.total_in_queue
        )

    async def _broadcast(self, snapshot: QueueResponse, patients: bool = True) -> None:
        await self.notifier.send_to_user(DOCTOR, snapshot.doctor_id, events.QUEUE_CHANGED, snapshot.to_wire())
        if not patients:
            return
        payloads = {
            item.patient_id: self._position_update(item, snapshot).to_wire()
            for item in snapshot.queue
        }
        await self.notifier.send_many(PATIENT, payloads, events.QUEUE_POSITION_UPDATE)

    # -- operations -------------------------------------------------------

    async def join(
        self,
        doctor_id: UUID,
        patient_id: UUID,
        connection_id: Optional[str] = None,
        priority: int = 0,
    ) -> JoinQueueResponse:
        # REST joins carry no connection id, bind the entry to the live one if any
        connection_id = connection_id or self.registry.lookup_connection(PATIENT, patient_id)
        created = False
        async with self._doctor_transaction(doctor_id) as (session, doctor):
            await self._require_patient(session, patient_id)
            store = QueueStore(session)

            entry = await store.find_active_entry(doctor_id, patient_id)
            if entry is not None:
                if connection_id and entry.socket_id != connection_id:
                    entry.socket_id = connection_id
                    session.add(entry)
            else:
                if await store.find_active_elsewhere(doctor_id, patient_id):
                    raise ConflictError("Patient is already in queue or consultation with another doctor")
                entry = await store.append_waiting(
                    doctor_id,
                    patient_id,
                    room_name=generate_room_name(doctor_id, patient_id),
                    socket_id=connection_id,
                    priority=priority,
                    avg_minutes=self.avg_minutes
                )
                created = True

            queue_length = await store.count_waiting(doctor_id)
            snapshot = await self._snapshot(session, doctor_id) if created else None

        if created:
            logger.info(f"Patient {patient_id} joined queue at position {entry.position} for doctor {doctor_id}")
            action = "joined"
        elif entry.status == QueueStatus.IN_CONSULTATION:
            action = "in_consultation"
        else:
            logger.info(f"Patient {patient_id} already queued for doctor {doctor_id} at position {entry.position}")
            action = "wait"

        item = self._entry_view(entry)
        response = JoinQueueResponse(
            entry_id=entry.id,
            action=action,
            position=entry.position,
            room_name=entry.room_name,
            estimated_wait=item.estimated_wait,
            estimated_wait_minutes=item.estimated_wait_minutes,
            status=entry.status,
            queue_length=queue_length,
            consultation_id=entry.consultation_id
        )

        update = PositionUpdate(
            position=entry.position,
            estimated_wait=item.estimated_wait,
            estimated_wait_minutes=item.estimated_wait_minutes,
            status=entry.status,
            queue_length=queue_length,
            total_in_queue=snapshot.total_in_queue if snapshot else queue_length
        ).to_wire()
        if connection_id:
            await self.notifier.send_to_connection(connection_id, events.QUEUE_POSITION_UPDATE, update)
        else:
            await self.notifier.send_to_user(PATIENT, patient_id, events.QUEUE_POSITION_UPDATE, update)

        if snapshot is not None:
            await self.notifier.send_to_user(DOCTOR, doctor_id, events.QUEUE_CHANGED, snapshot.to_wire())
        return response

    async def leave(self, doctor_id: UUID, patient_id: UUID) -> QueueResponse:
        async with self._doctor_transaction(doctor_id) as (session, doctor):
            store = QueueStore(session)
            entry = await store.find_waiting_entry(doctor_id, patient_id)
            if not entry:
                raise NotFoundError("Patient is not waiting in this doctor's queue")

            was_at = entry.position
            await store.mark_left(entry.id)
            await store.recalculate_positions(doctor_id, self.avg_minutes)
            snapshot = await self._snapshot(session, doctor_id)

        logger.info(f"Patient {patient_id} left queue for doctor {doctor_id} from position {was_at}")
        await self._broadcast(snapshot)
        return snapshot

    async def _start_with(
        self,
        session: AsyncSession,
        doctor: Doctor,
        entry: QueueEntry,
        doctor_connection_id: Optional[str],
    ) -> Consultation:
        manager = ConsultationManager(session)
        store = QueueStore(session)

        consultation = await manager.try_start(
            doctor.id,
            entry.patient_id,
            room_name=entry.room_name,
            patient_socket_id=self.registry.lookup_connection(PATIENT, entry.patient_id) or entry.socket_id,
            doctor_socket_id=doctor_connection_id or self.registry.lookup_connection(DOCTOR, doctor.id),
            estimated_duration=self.slot_minutes
        )
        await store.mark_in_consultation(entry.id, consultation.id)
        await store.recalculate_positions(doctor.id, self.avg_minutes)
        return consultation

    async def _announce_start(self, consultation: Consultation, snapshot: QueueResponse) -> ConsultationStarted:
        started = ConsultationStarted(
            action="started",
            consultation_id=consultation.id,
            room_name=consultation.room_name,
            patient_id=consultation.patient_id,
            doctor_id=consultation.doctor_id
        )
        logger.info(
            f"Consultation {consultation.id} started for patient {consultation.patient_id} "
            f"with doctor {consultation.doctor_id}"
        )
        await self.notifier.send_to_user(
            PATIENT,
            consultation.patient_id,
            events.INVITE_PATIENT,
            {"roomName": consultation.room_name, "consultationId": str(consultation.id)}
        )
        await self.notifier.send_to_user(DOCTOR, consultation.doctor_id, events.CONSULTATION_STARTED, started.to_wire())
        await self._broadcast(snapshot)
        return started

    async def invite_next(self, doctor_id: UUID, connection_id: Optional[str] = None) -> ConsultationStarted:
        async with self._doctor_transaction(doctor_id) as (session, doctor):
            if await ConsultationManager(session).get_ongoing_for_doctor(doctor_id):
                raise ConflictError("Another consultation is already in progress, end it first")

            entry = await QueueStore(session).next_waiting(doctor_id)
            if entry is None:
                raise NoWaitingPatients()

            consultation = await self._start_with(session, doctor, entry, connection_id)
            snapshot = await self._snapshot(session, doctor_id)

        return await self._announce_start(consultation, snapshot)

    async def start_consultation(
        self,
        doctor_id: UUID,
        patient_id: UUID,
        connection_id: Optional[str] = None,
    ) -> ConsultationStarted:
        """Start with a specific waiting patient rather than the head of the line."""
        async with self._doctor_transaction(doctor_id) as (session, doctor):
            await self._require_patient(session, patient_id)

            existing = await ConsultationManager(session).get_ongoing_for_pair(doctor_id, patient_id)
            if existing:
                return ConsultationStarted(
                    action="rejoin",
                    consultation_id=existing.id,
                    room_name=existing.room_name,
                    patient_id=patient_id,
                    doctor_id=doctor_id
                )

            entry = await QueueStore(session).find_waiting_entry(doctor_id, patient_id)
            if not entry:
                raise NotFoundError("No waiting queue entry for this patient with this doctor")

            consultation = await self._start_with(session, doctor, entry, connection_id)
            snapshot = await self._snapshot(session, doctor_id)

        return await self._announce_start(consultation, snapshot)

    async def _doctor_for_consultation(self, consultation_id: UUID) -> UUID:
        async with self.session_factory() as session:
            consultation = await session.get(Consultation, consultation_id)
            if not consultation:
                raise NotFoundError("Consultation not found")
            return consultation.doctor_id

    async def end_consultation(self, consultation_id: UUID, notes: Optional[str] = None) -> ConsultationResponse:
        doctor_id = await self._doctor_for_consultation(consultation_id)

        async with self._doctor_transaction(doctor_id) as (session, doctor):
            consultation = await ConsultationManager(session).end(consultation_id, notes)
            store = QueueStore(session)
            entry = await store.find_by_consultation(consultation_id)
            if entry and entry.status == QueueStatus.IN_CONSULTATION:
                await store.mark_done(entry.id)
            snapshot = await self._snapshot(session, doctor_id)

        logger.info(f"Consultation {consultation_id} ended for doctor {doctor_id}")
        await self.notifier.send_to_user(
            PATIENT,
            consultation.patient_id,
            events.CONSULTATION_ENDED,
            {"consultationId": str(consultation_id), "message": "Consultation has ended successfully"}
        )
        await self._broadcast(snapshot)
        return ConsultationResponse.model_validate(consultation)

    async def cancel_consultation(
        self,
        consultation_id: UUID,
        reason: Optional[str],
        cancelled_by: str,
    ) -> ConsultationResponse:
        doctor_id = await self._doctor_for_consultation(consultation_id)

        async with self._doctor_transaction(doctor_id) as (session, doctor):
            consultation = await ConsultationManager(session).cancel(consultation_id, reason, cancelled_by)
            store = QueueStore(session)
            entry = await store.find_by_consultation(consultation_id)
            if entry and entry.status == QueueStatus.IN_CONSULTATION:
                await store.mark_done(entry.id)
            snapshot = await self._snapshot(session, doctor_id)

        logger.info(f"Consultation {consultation_id} cancelled by {cancelled_by}")
        payload = {
            "consultationId": str(consultation_id),
            "cancelReason": reason,
            "cancelledBy": cancelled_by
        }
        await self.notifier.send_to_user(PATIENT, consultation.patient_id, events.CONSULTATION_CANCELLED, payload)
        await self.notifier.send_to_user(DOCTOR, doctor_id, events.CONSULTATION_CANCELLED, payload)
        await self._broadcast(snapshot)
        return ConsultationResponse.model_validate(consultation)

    async def set_doctor_availability(self, doctor_id: UUID, available: bool) -> DoctorStatusResponse:
        async with self._doctor_transaction(doctor_id) as (session, doctor):
            doctor.is_online = available
            session.add(doctor)
            entries = await QueueStore(session).list_active(doctor_id)
            patient_ids = [entry.patient_id for entry in entries]

        # Informational only, nobody is removed from the queue
        payload = {"doctorId": str(doctor_id), "isOnline": available}
        notified = await self.notifier.send_many(
            PATIENT, {patient_id: payload for patient_id in patient_ids}, events.DOCTOR_STATUS_CHANGED
        )
        logger.info(f"Doctor {doctor_id} availability set to {available}, {notified} patients notified")
        return DoctorStatusResponse(doctor_id=doctor_id, is_online=available, notified_patients=notified)

    # -- reads ------------------------------------------------------------

    async def get_active_queue(self, doctor_id: UUID) -> QueueResponse:
        async with self.session_factory() as session:
            if not await session.get(Doctor, doctor_id):
                raise NotFoundError("Doctor not found")
            return await self._snapshot(session, doctor_id)

    async def get_patient_status(self, doctor_id: UUID, patient_id: UUID) -> PatientQueueStatus:
        async with self.session_factory() as session:
            doctor = await session.get(Doctor, doctor_id)
            if not doctor:
                raise NotFoundError("Doctor not found")
            await self._require_patient(session, patient_id)

            store = QueueStore(session)
            entry = await store.find_active_entry(doctor_id, patient_id)
            queue_length = await store.count_waiting(doctor_id)

        status = PatientQueueStatus(
            doctor_id=doctor_id,
            patient_id=patient_id,
            status="none",
            action="join",
            queue_length=queue_length,
            doctor_online=doctor.is_online
        )
        if entry is None:
            return status

        item = self._entry_view(entry)
        status.status = entry.status
        status.action = "wait" if entry.status == QueueStatus.WAITING else "rejoin"
        status.position = entry.position
        status.room_name = entry.room_name
        status.consultation_id = entry.consultation_id
        status.estimated_wait = item.estimated_wait
        return status

    # -- connections ------------------------------------------------------

    async def connect(self, role: str, user_id: UUID, connection_id: str, websocket=None) -> None:
        """Register a live connection and point stored socket ids at it."""
        self.registry.register_connection(role, user_id, connection_id)
        if websocket is not None:
            self.registry.attach(connection_id, websocket)

        pending = self._pending_disconnects.pop((role, user_id), None)
        if pending is not None:
            logger.info(f"{role.capitalize()} {user_id} reconnected within grace window")
            pending[1].cancel()

        async with self.session_factory() as session:
            if role == PATIENT:
                await QueueStore(session).rebind_socket(user_id, connection_id)
            await ConsultationManager(session).rebind_socket(role, user_id, connection_id)
            await session.commit()

    async def disconnect(self, connection_id: str) -> None:
        """
        Drop a live connection. Ongoing consultations on it are completed and
        queue entries it held are retired, either immediately or after
        ``DISCONNECT_GRACE_SECONDS`` if the party does not come back.
        Never raises.
        """
        identity = self.registry.unregister_connection(connection_id)
        if identity is not None and self.grace_seconds > 0:
            task = asyncio.create_task(self._cleanup_after_grace(identity, connection_id))
            self._pending_disconnects[identity] = (connection_id, task)
            return
        await self._cleanup_connection(connection_id)

    async def _cleanup_after_grace(self, identity: Identity, connection_id: str) -> None:
        await asyncio.sleep(self.grace_seconds)
        pending = self._pending_disconnects.get(identity)
        if pending is not None and pending[0] == connection_id:
            del self._pending_disconnects[identity]
        await self._cleanup_connection(connection_id)

    async def _cleanup_connection(self, connection_id: str) -> None:
        try:
            doctor_ids = await self._doctors_touched_by(connection_id)
            for doctor_id in doctor_ids:
                await self._cleanup_for_doctor(doctor_id, connection_id)
        except Exception:
            logger.exception(f"Error handling disconnect of {connection_id}")

    async def _doctors_touched_by(self, connection_id: str) -> List[UUID]:
        async with self.session_factory() as session:
            consultations = await ConsultationManager(session).list_ongoing_by_socket(connection_id)
            entries = await QueueStore(session).find_active_by_socket(connection_id)

        doctor_ids: List[UUID] = []
        for doctor_id in [c.doctor_id for c in consultations] + [e.doctor_id for e in entries]:
            if doctor_id not in doctor_ids:
                doctor_ids.append(doctor_id)
        return doctor_ids

    async def _cleanup_for_doctor(self, doctor_id: UUID, connection_id: str) -> None:
        ended: List[Consultation] = []
        async with self._doctor_transaction(doctor_id) as (session, doctor):
            manager = ConsultationManager(session)
            store = QueueStore(session)

            for consultation in await manager.list_ongoing_by_socket(connection_id):
                if consultation.doctor_id != doctor_id:
                    continue
                await manager.complete_for_disconnect(consultation)
                entry = await store.find_by_consultation(consultation.id)
                if entry and entry.status == QueueStatus.IN_CONSULTATION:
                    await store.mark_done(entry.id)
                ended.append(consultation)

            left = 0
            for entry in await store.find_active_by_socket(connection_id):
                if entry.doctor_id != doctor_id:
                    continue
                if entry.status == QueueStatus.WAITING:
                    await store.mark_left(entry.id)
                    left += 1
                    continue
                if entry.consultation_id:
                    consultation = await session.get(Consultation, entry.consultation_id)
                    if consultation and consultation.status == ConsultationStatus.ONGOING:
                        await manager.complete_for_disconnect(consultation)
                        ended.append(consultation)
                await store.mark_done(entry.id)

            await store.recalculate_positions(doctor_id, self.avg_minutes)
            snapshot = await self._snapshot(session, doctor_id)

        logger.info(
            f"Connection {connection_id} dropped: {len(ended)} consultations ended, "
            f"{left} waiting entries left for doctor {doctor_id}"
        )
        for consultation in ended:
            payload = {"consultationId": str(consultation.id), "message": "Connection lost, consultation ended"}
            await self.notifier.send_to_user(PATIENT, consultation.patient_id, events.CONSULTATION_ENDED, payload)
            await self.notifier.send_to_user(DOCTOR, consultation.doctor_id, events.CONSULTATION_ENDED, payload)
        await self._broadcast(snapshot)

    async def close(self) -> None:
        for _, task in self._pending_disconnects.values():
            task.cancel()
        self._pending_disconnects.clear()
