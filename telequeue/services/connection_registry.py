"""
In-memory map of online doctors/patients to their live connection.

The registry is process local and rebuilt from nothing on restart: clients
re-announce themselves in the websocket handshake. It is only touched from
the event loop, so plain dicts are enough.
"""

from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from telequeue.core.exceptions import ValidationError
from telequeue.core.logger import logger

DOCTOR = "doctor"
PATIENT = "patient"
ROLES = (DOCTOR, PATIENT)

Identity = Tuple[str, UUID]


class ConnectionRegistry:
    def __init__(self) -> None:
        self._by_identity: Dict[Identity, str] = {}
        self._by_connection: Dict[str, Identity] = {}
        self._sockets: Dict[str, Any] = {}

    def register_connection(self, role: str, user_id: UUID, connection_id: str) -> None:
        if role not in ROLES:
            raise ValidationError(f"Unknown user type: {role}")

        key = (role, user_id)
        previous = self._by_identity.get(key)
        if previous == connection_id:
            return
        if previous is not None:
            self._by_connection.pop(previous, None)

        # A connection speaks for one identity at a time
        stale = self._by_connection.get(connection_id)
        if stale is not None and stale != key:
            self._by_identity.pop(stale, None)

        self._by_identity[key] = connection_id
        self._by_connection[connection_id] = key
        logger.info(f"{role.capitalize()} connected: {user_id}, connection: {connection_id}")

    def lookup_connection(self, role: str, user_id: UUID) -> Optional[str]:
        return self._by_identity.get((role, user_id))

    def identity_for(self, connection_id: str) -> Optional[Identity]:
        return self._by_connection.get(connection_id)

    def unregister_connection(self, connection_id: str) -> Optional[Identity]:
        key = self._by_connection.pop(connection_id, None)
        if key is not None and self._by_identity.get(key) == connection_id:
            del self._by_identity[key]
        self._sockets.pop(connection_id, None)
        if key is not None:
            logger.info(f"{key[0].capitalize()} disconnected: {key[1]}, connection: {connection_id}")
        return key

    def attach(self, connection_id: str, websocket: Any) -> None:
        self._sockets[connection_id] = websocket

    def detach(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)

    def get_socket(self, connection_id: str) -> Optional[Any]:
        return self._sockets.get(connection_id)

    def online_count(self, role: str) -> int:
        return sum(1 for r, _ in self._by_identity if r == role)

    def clear(self) -> None:
        self._by_identity.clear()
        self._by_connection.clear()
        self._sockets.clear()
