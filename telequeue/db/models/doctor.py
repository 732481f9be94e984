from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List, TYPE_CHECKING
from datetime import datetime
from uuid import UUID, uuid4

if TYPE_CHECKING:
    from .queue_entry import QueueEntry

class Doctor(SQLModel, table=True):
    """Externally owned doctor profile; only the fields the queue reads."""
    __tablename__ = "doctors"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str
    specialty: Optional[str] = None
    is_online: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    queue_entries: List["QueueEntry"] = Relationship(back_populates="doctor")
