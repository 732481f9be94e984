from uuid import UUID
from datetime import datetime
from typing import Optional

from telequeue.schemas.base import CamelModel

class InviteNextRequest(CamelModel):
    doctor_id: UUID

class StartConsultationRequest(CamelModel):
    doctor_id: UUID
    patient_id: UUID

class EndConsultationRequest(CamelModel):
    notes: Optional[str] = None

class CancelConsultationRequest(CamelModel):
    cancel_reason: Optional[str] = None
    cancelled_by: str

class ConsultationResponse(CamelModel):
    id: UUID
    doctor_id: UUID
    patient_id: UUID
    status: str
    consultation_type: str
    room_name: Optional[str] = None
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None

class ConsultationStarted(CamelModel):
    action: str # started, rejoin
    consultation_id: UUID
    room_name: Optional[str] = None
    patient_id: UUID
    doctor_id: UUID
