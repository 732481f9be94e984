from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4
from sqlalchemy import Column, Index, Text, text


class ConsultationStatus:
    PENDING = "pending"
    SCHEDULED = "scheduled"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    CANCELLABLE = (PENDING, SCHEDULED, ONGOING)


class CancelledBy:
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"

    ALL = (PATIENT, DOCTOR, ADMIN)


_ONGOING_CLAUSE = text("status = 'ongoing'")


class Consultation(SQLModel, table=True):
    __tablename__ = "consultations"
    __table_args__ = (
        # at most one ongoing consultation per doctor
        Index(
            "uq_consultations_doctor_ongoing",
            "doctor_id",
            unique=True,
            postgresql_where=_ONGOING_CLAUSE,
            sqlite_where=_ONGOING_CLAUSE,
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    patient_id: UUID = Field(foreign_key="patients.id", index=True)
    doctor_id: UUID = Field(foreign_key="doctors.id", index=True)
    status: str = Field(default=ConsultationStatus.PENDING)
    consultation_type: str = Field(default="video")  # video, in-person
    room_name: Optional[str] = None
    notes: Optional[str] = Field(default=None, sa_column=Column(Text))
    cancel_reason: Optional[str] = None
    cancelled_by: Optional[str] = None  # patient, doctor, admin
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    patient_socket_id: Optional[str] = Field(default=None, index=True)
    doctor_socket_id: Optional[str] = Field(default=None, index=True)
    estimated_duration: int = Field(default=15)  # minutes
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
