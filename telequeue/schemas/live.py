"""Payloads of inbound websocket events."""
from uuid import UUID
from typing import Optional

from telequeue.schemas.base import CamelModel

class LiveMessage(CamelModel):
    type: str
    data: dict = {}

class PatientJoinQueuePayload(CamelModel):
    doctor_id: UUID
    patient_id: UUID
    room_name: Optional[str] = None
    priority: int = 0

class InviteNextPayload(CamelModel):
    doctor_id: UUID

class StartConsultationPayload(CamelModel):
    doctor_id: UUID
    patient_id: UUID

class EndConsultationPayload(CamelModel):
    consultation_id: UUID
    notes: Optional[str] = None

class LeaveQueuePayload(CamelModel):
    doctor_id: UUID
    patient_id: UUID

class SwitchAvailabilityPayload(CamelModel):
    doctor_id: UUID
    is_available: bool

class JoinDoctorRoomPayload(CamelModel):
    doctor_id: UUID
