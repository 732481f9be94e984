from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import or_, select

from telequeue.core.exceptions import ConflictError, NotFoundError, ValidationError
from telequeue.db.models import CancelledBy, Consultation, ConsultationStatus


class ConsultationManager:
    """
    Owns consultation state transitions:
    pending/scheduled -> ongoing -> completed, or -> cancelled.

    A doctor may have at most one ongoing consultation. ``try_start`` checks
    this before inserting, and the partial unique index on
    ``consultations(doctor_id) WHERE status = 'ongoing'`` rejects whatever
    slips past the check, so the rule holds even across processes.
    Like ``QueueStore`` it flushes but never commits.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, consultation_id: UUID) -> Consultation:
        consultation = await self.session.get(Consultation, consultation_id)
        if not consultation:
            raise NotFoundError("Consultation not found")
        return consultation

    async def get_ongoing_for_doctor(self, doctor_id: UUID) -> Consultation | None:
        stmt = select(Consultation).where(
            Consultation.doctor_id == doctor_id,
            Consultation.status == ConsultationStatus.ONGOING
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_ongoing_for_pair(self, doctor_id: UUID, patient_id: UUID) -> Consultation | None:
        stmt = select(Consultation).where(
            Consultation.doctor_id == doctor_id,
            Consultation.patient_id == patient_id,
            Consultation.status == ConsultationStatus.ONGOING
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_ongoing_by_socket(self, connection_id: str) -> List[Consultation]:
        stmt = select(Consultation).where(
            or_(
                Consultation.patient_socket_id == connection_id,
                Consultation.doctor_socket_id == connection_id
            ),
            Consultation.status == ConsultationStatus.ONGOING
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def try_start(
        self,
        doctor_id: UUID,
        patient_id: UUID,
        room_name: Optional[str] = None,
        patient_socket_id: Optional[str] = None,
        doctor_socket_id: Optional[str] = None,
        estimated_duration: int = 15,
    ) -> Consultation:
        if await self.get_ongoing_for_doctor(doctor_id):
            raise ConflictError("Another consultation is already in progress, end it first")

        now = datetime.utcnow()
        consultation = Consultation(
            patient_id=patient_id,
            doctor_id=doctor_id,
            status=ConsultationStatus.ONGOING,
            consultation_type="video",
            room_name=room_name,
            patient_socket_id=patient_socket_id,
            doctor_socket_id=doctor_socket_id,
            estimated_duration=estimated_duration,
            actual_start_time=now,
            created_at=now,
            updated_at=now
        )
        self.session.add(consultation)
        try:
            await self.session.flush()
        except IntegrityError:
            raise ConflictError("Another consultation is already in progress, end it first")
        return consultation

    async def end(self, consultation_id: UUID, notes: Optional[str] = None) -> Consultation:
        consultation = await self.get(consultation_id)
        if consultation.status != ConsultationStatus.ONGOING:
            raise ConflictError(f"Consultation is {consultation.status}, only ongoing consultations can be ended")

        now = datetime.utcnow()
        consultation.status = ConsultationStatus.COMPLETED
        consultation.actual_end_time = now
        consultation.updated_at = now
        if notes is not None:
            consultation.notes = notes
        self.session.add(consultation)
        await self.session.flush()
        return consultation

    async def cancel(self, consultation_id: UUID, reason: Optional[str], cancelled_by: str) -> Consultation:
        if cancelled_by not in CancelledBy.ALL:
            raise ValidationError(f"cancelledBy must be one of {', '.join(CancelledBy.ALL)}")

        consultation = await self.get(consultation_id)
        if consultation.status not in ConsultationStatus.CANCELLABLE:
            raise ConflictError(f"Consultation is {consultation.status} and cannot be cancelled")

        now = datetime.utcnow()
        if consultation.status == ConsultationStatus.ONGOING:
            consultation.actual_end_time = now
        consultation.status = ConsultationStatus.CANCELLED
        consultation.cancel_reason = reason
        consultation.cancelled_by = cancelled_by
        consultation.updated_at = now
        self.session.add(consultation)
        await self.session.flush()
        return consultation

    async def complete_for_disconnect(self, consultation: Consultation) -> Consultation:
        now = datetime.utcnow()
        consultation.status = ConsultationStatus.COMPLETED
        consultation.actual_end_time = now
        consultation.updated_at = now
        self.session.add(consultation)
        await self.session.flush()
        return consultation

    async def rebind_socket(self, role: str, user_id: UUID, connection_id: str) -> List[Consultation]:
        column = Consultation.doctor_id if role == "doctor" else Consultation.patient_id
        stmt = select(Consultation).where(
            column == user_id,
            Consultation.status == ConsultationStatus.ONGOING
        )
        result = await self.session.execute(stmt)
        consultations = result.scalars().all()
        for consultation in consultations:
            if role == "doctor":
                consultation.doctor_socket_id = connection_id
            else:
                consultation.patient_socket_id = connection_id
            self.session.add(consultation)
        return consultations
