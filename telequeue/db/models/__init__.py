from sqlmodel import SQLModel
from .doctor import Doctor
from .patient import Patient
from .consultation import Consultation, ConsultationStatus, CancelledBy
from .queue_entry import QueueEntry, QueueStatus

__all__ = [
    "SQLModel",
    "Doctor",
    "Patient",
    "Consultation",
    "ConsultationStatus",
    "CancelledBy",
    "QueueEntry",
    "QueueStatus",
]
