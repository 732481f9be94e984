from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List, TYPE_CHECKING
from datetime import datetime
from uuid import UUID, uuid4

if TYPE_CHECKING:
    from .queue_entry import QueueEntry

class Patient(SQLModel, table=True):
    __tablename__ = "patients"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    queue_entries: List["QueueEntry"] = Relationship(back_populates="patient")
