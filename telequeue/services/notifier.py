"""Pushes queue and consultation events to live connections."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from telequeue.core.logger import logger
from telequeue.services.connection_registry import ConnectionRegistry

QUEUE_POSITION_UPDATE = "QUEUE_POSITION_UPDATE"
QUEUE_CHANGED = "QUEUE_CHANGED"
INVITE_PATIENT = "INVITE_PATIENT"
CONSULTATION_STARTED = "CONSULTATION_STARTED"
CONSULTATION_ENDED = "CONSULTATION_ENDED"
CONSULTATION_CANCELLED = "CONSULTATION_CANCELLED"
DOCTOR_STATUS_CHANGED = "DOCTOR_STATUS_CHANGED"
NO_WAITING_PATIENTS = "NO_WAITING_PATIENTS"
ERROR = "ERROR"


class Notifier:
    """
    Best-effort fan-out. An event for a party without a live connection is
    dropped, and a socket that fails to send is detached from the registry.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    async def send_to_connection(self, connection_id: Optional[str], event: str, data: Any = None) -> bool:
        if not connection_id:
            return False
        websocket = self.registry.get_socket(connection_id)
        if websocket is None:
            logger.debug(f"Dropping {event}: connection {connection_id} has no socket")
            return False

        message = {
            "type": event,
            "data": data if data is not None else {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await websocket.send_json(message)
        except Exception:
            logger.warning(f"Failed to send {event} to connection {connection_id}")
            self.registry.detach(connection_id)
            return False
        return True

    async def send_to_user(self, role: str, user_id: UUID, event: str, data: Any = None) -> bool:
        connection_id = self.registry.lookup_connection(role, user_id)
        if connection_id is None:
            logger.debug(f"Dropping {event}: {role} {user_id} is offline")
            return False
        return await self.send_to_connection(connection_id, event, data)

    async def send_error(self, connection_id: Optional[str], message: str) -> bool:
        return await self.send_to_connection(connection_id, ERROR, {"message": message})

    async def send_many(self, role: str, payloads: Dict[UUID, Any], event: str) -> int:
        delivered = 0
        for user_id, data in payloads.items():
            if await self.send_to_user(role, user_id, event, data):
                delivered += 1
        return delivered
