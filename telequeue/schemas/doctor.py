from uuid import UUID

from telequeue.schemas.base import CamelModel

class AvailabilityUpdate(CamelModel):
    is_available: bool

class DoctorStatusResponse(CamelModel):
    doctor_id: UUID
    is_online: bool
    notified_patients: int = 0
