from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import func, select

from telequeue.core.exceptions import ConflictError, NotFoundError
from telequeue.db.models import Patient, QueueEntry, QueueStatus


class QueueStore:
    """
    Repository over ``queue_entries``.

    Nothing here commits: callers run every mutation together with the
    position recalculation it triggers inside one transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_entry(self, entry_id: UUID) -> QueueEntry:
        entry = await self.session.get(QueueEntry, entry_id)
        if not entry:
            raise NotFoundError("Queue entry not found")
        return entry

    async def find_active_entry(self, doctor_id: UUID, patient_id: UUID) -> QueueEntry | None:
        stmt = select(QueueEntry).where(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.patient_id == patient_id,
            QueueEntry.status.in_(QueueStatus.ACTIVE)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def find_waiting_entry(self, doctor_id: UUID, patient_id: UUID) -> QueueEntry | None:
        stmt = select(QueueEntry).where(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.patient_id == patient_id,
            QueueEntry.status == QueueStatus.WAITING
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def find_active_elsewhere(self, doctor_id: UUID, patient_id: UUID) -> QueueEntry | None:
        stmt = select(QueueEntry).where(
            QueueEntry.doctor_id != doctor_id,
            QueueEntry.patient_id == patient_id,
            QueueEntry.status.in_(QueueStatus.ACTIVE)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def find_by_consultation(self, consultation_id: UUID) -> QueueEntry | None:
        stmt = select(QueueEntry).where(QueueEntry.consultation_id == consultation_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def find_active_by_socket(self, socket_id: str) -> List[QueueEntry]:
        stmt = select(QueueEntry).where(
            QueueEntry.socket_id == socket_id,
            QueueEntry.status.in_(QueueStatus.ACTIVE)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_active_for_patient(self, patient_id: UUID) -> List[QueueEntry]:
        stmt = select(QueueEntry).where(
            QueueEntry.patient_id == patient_id,
            QueueEntry.status.in_(QueueStatus.ACTIVE)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_active(self, doctor_id: UUID) -> int:
        stmt = select(func.count(QueueEntry.id)).where(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.status.in_(QueueStatus.ACTIVE)
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def count_waiting(self, doctor_id: UUID) -> int:
        stmt = select(func.count(QueueEntry.id)).where(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.status == QueueStatus.WAITING
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def append_waiting(
        self,
        doctor_id: UUID,
        patient_id: UUID,
        room_name: str,
        socket_id: Optional[str] = None,
        priority: int = 0,
        avg_minutes: int = 15,
    ) -> QueueEntry:
        if await self.find_active_entry(doctor_id, patient_id):
            raise ConflictError("Patient already has an active queue entry for this doctor")

        # Entries in consultation sit at position 0, so only waiting ones count
        position = await self.count_waiting(doctor_id) + 1
        now = datetime.utcnow()
        entry = QueueEntry(
            doctor_id=doctor_id,
            patient_id=patient_id,
            position=position,
            status=QueueStatus.WAITING,
            room_name=room_name,
            socket_id=socket_id,
            priority=priority,
            estimated_wait_minutes=(position - 1) * avg_minutes,
            joined_at=now,
            created_at=now,
            updated_at=now
        )
        self.session.add(entry)
        try:
            await self.session.flush()
        except IntegrityError:
            raise ConflictError("Patient already has an active queue entry for this doctor")
        return entry

    async def list_active(self, doctor_id: UUID) -> List[QueueEntry]:
        # In-consultation entries (position 0) come first, then the waiting line
        stmt = select(QueueEntry).where(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.status.in_(QueueStatus.ACTIVE)
        ).order_by(QueueEntry.position, QueueEntry.joined_at)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_active_with_patients(self, doctor_id: UUID) -> List[Tuple[QueueEntry, Patient]]:
        stmt = select(QueueEntry, Patient).join(
            Patient, Patient.id == QueueEntry.patient_id
        ).where(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.status.in_(QueueStatus.ACTIVE)
        ).order_by(QueueEntry.position, QueueEntry.joined_at)
        result = await self.session.execute(stmt)
        return result.all()

    async def list_waiting(self, doctor_id: UUID) -> List[QueueEntry]:
        stmt = select(QueueEntry).where(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.status == QueueStatus.WAITING
        ).order_by(QueueEntry.position, QueueEntry.joined_at)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def next_waiting(self, doctor_id: UUID) -> QueueEntry | None:
        stmt = select(QueueEntry).where(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.status == QueueStatus.WAITING
        ).order_by(QueueEntry.position, QueueEntry.joined_at).limit(1)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def _transition(self, entry_id: UUID, allowed_from: tuple, new_status: str) -> QueueEntry:
        entry = await self.get_entry(entry_id)
        if entry.status not in allowed_from:
            raise ConflictError(f"Queue entry is {entry.status}, cannot move to {new_status}")
        entry.status = new_status
        entry.updated_at = datetime.utcnow()
        self.session.add(entry)
        return entry

    async def mark_left(self, entry_id: UUID) -> QueueEntry:
        entry = await self._transition(entry_id, (QueueStatus.WAITING,), QueueStatus.LEFT)
        entry.position = 0
        return entry

    async def mark_in_consultation(self, entry_id: UUID, consultation_id: UUID) -> QueueEntry:
        entry = await self._transition(entry_id, (QueueStatus.WAITING,), QueueStatus.IN_CONSULTATION)
        entry.consultation_id = consultation_id
        entry.position = 0
        entry.estimated_wait_minutes = 0
        return entry

    async def mark_done(self, entry_id: UUID) -> QueueEntry:
        entry = await self._transition(entry_id, (QueueStatus.IN_CONSULTATION,), QueueStatus.DONE)
        entry.position = 0
        return entry

    async def recalculate_positions(self, doctor_id: UUID, avg_minutes: int = 15) -> List[QueueEntry]:
        """
        Renumber the waiting line 1..N in arrival order and refresh each
        entry's wait estimate. Returns the waiting entries in their new order.
        """
        stmt = select(QueueEntry).where(
            QueueEntry.doctor_id == doctor_id,
            QueueEntry.status == QueueStatus.WAITING
        ).order_by(QueueEntry.joined_at, QueueEntry.position)
        result = await self.session.execute(stmt)
        waiting = result.scalars().all()

        now = datetime.utcnow()
        for index, entry in enumerate(waiting, start=1):
            if entry.position != index:
                entry.position = index
                entry.updated_at = now
            entry.estimated_wait_minutes = (index - 1) * avg_minutes
            self.session.add(entry)

        await self.session.flush()
        return waiting

    async def rebind_socket(self, patient_id: UUID, socket_id: str) -> List[QueueEntry]:
        entries = await self.find_active_for_patient(patient_id)
        for entry in entries:
            entry.socket_id = socket_id
            self.session.add(entry)
        return entries
