from uuid import UUID
from datetime import datetime
from typing import Optional, List

from telequeue.schemas.base import CamelModel

class JoinQueueRequest(CamelModel):
    doctor_id: UUID
    patient_id: UUID
    priority: int = 0

class LeaveQueueRequest(CamelModel):
    doctor_id: UUID
    patient_id: UUID

class QueueEntryResponse(CamelModel):
    id: UUID
    doctor_id: UUID
    patient_id: UUID
    position: int
    status: str
    room_name: str
    consultation_id: Optional[UUID] = None
    priority: int = 0
    joined_at: datetime
    estimated_wait: str
    estimated_wait_minutes: int
    patient_name: Optional[str] = None
    patient_phone: Optional[str] = None
    patient_email: Optional[str] = None

class QueueResponse(CamelModel):
    doctor_id: UUID
    queue: List[QueueEntryResponse]
    queue_length: int = 0
    total_in_queue: int = 0

class JoinQueueResponse(CamelModel):
    entry_id: UUID
    action: str # joined, wait, in_consultation
    position: int
    room_name: str
    estimated_wait: str
    estimated_wait_minutes: int
    status: str
    queue_length: int
    consultation_id: Optional[UUID] = None

class PositionUpdate(CamelModel):
    position: int
    estimated_wait: str
    estimated_wait_minutes: int
    status: str
    queue_length: int
    total_in_queue: int

class PatientQueueStatus(CamelModel):
    doctor_id: UUID
    patient_id: UUID
    status: str # waiting, in_consultation, none
    action: str # wait, rejoin, join
    position: Optional[int] = None
    room_name: Optional[str] = None
    consultation_id: Optional[UUID] = None
    estimated_wait: Optional[str] = None
    queue_length: int = 0
    doctor_online: bool = False
