from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, TYPE_CHECKING
from datetime import datetime
from uuid import UUID, uuid4
from sqlalchemy import Index, text

if TYPE_CHECKING:
    from .doctor import Doctor
    from .patient import Patient


class QueueStatus:
    WAITING = "waiting"
    IN_CONSULTATION = "in_consultation"
    DONE = "done"
    LEFT = "left"

    ACTIVE = (WAITING, IN_CONSULTATION)
    TERMINAL = (DONE, LEFT)


_ACTIVE_CLAUSE = text("status IN ('waiting', 'in_consultation')")


class QueueEntry(SQLModel, table=True):
    __tablename__ = "queue_entries"
    __table_args__ = (
        # one active membership per (doctor, patient)
        Index(
            "uq_queue_entries_active_pair",
            "doctor_id",
            "patient_id",
            unique=True,
            postgresql_where=_ACTIVE_CLAUSE,
            sqlite_where=_ACTIVE_CLAUSE,
        ),
        Index("ix_queue_entries_doctor_status", "doctor_id", "status"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    doctor_id: UUID = Field(foreign_key="doctors.id")
    patient_id: UUID = Field(foreign_key="patients.id")
    position: int = Field(default=0)  # 0 while in consultation
    status: str = Field(default=QueueStatus.WAITING)
    room_name: str
    consultation_id: Optional[UUID] = Field(default=None, foreign_key="consultations.id")
    socket_id: Optional[str] = Field(default=None, index=True)
    priority: int = Field(default=0)
    estimated_wait_minutes: Optional[int] = None
    joined_at: datetime = Field(default_factory=datetime.utcnow)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    doctor: "Doctor" = Relationship(back_populates="queue_entries")
    patient: "Patient" = Relationship(back_populates="queue_entries")

    @property
    def is_active(self) -> bool:
        return self.status in QueueStatus.ACTIVE
