"""Dispatches inbound websocket events to the queue coordinator."""

import json
from typing import Any, Awaitable, Callable, Dict, Tuple, Type

from pydantic import BaseModel, ValidationError as PayloadError

from telequeue.core.exceptions import NoWaitingPatients, QueueError
from telequeue.core.logger import logger
from telequeue.schemas.live import (
    EndConsultationPayload,
    InviteNextPayload,
    JoinDoctorRoomPayload,
    LeaveQueuePayload,
    LiveMessage,
    PatientJoinQueuePayload,
    StartConsultationPayload,
    SwitchAvailabilityPayload,
)
from telequeue.services import notifier as events
from telequeue.services.connection_registry import DOCTOR, PATIENT
from telequeue.services.queue_coordinator import QueueCoordinator

PATIENT_JOIN_QUEUE = "PATIENT_JOIN_QUEUE"
INVITE_NEXT_PATIENT = "INVITE_NEXT_PATIENT"
START_CONSULTATION = "START_CONSULTATION"
END_CONSULTATION = "END_CONSULTATION"
LEAVE_QUEUE = "LEAVE_QUEUE"
SWITCH_DOCTOR_AVAILABILITY = "SWITCH_DOCTOR_AVAILABILITY"
JOIN_DOCTOR_ROOM = "JOIN_DOCTOR_ROOM"

# Shown to the sender when an event fails for an unexpected reason
FAILURE_MESSAGES = {
    PATIENT_JOIN_QUEUE: "Failed to join queue, please retry",
    INVITE_NEXT_PATIENT: "Failed to invite next patient",
    START_CONSULTATION: "Failed to start consultation",
    END_CONSULTATION: "Failed to end consultation",
    LEAVE_QUEUE: "Failed to leave queue",
    SWITCH_DOCTOR_AVAILABILITY: "Failed to update availability",
    JOIN_DOCTOR_ROOM: "Failed to join doctor room",
}


class LiveEventHandler:
    """
    One handler per live connection. Failures are reported to this
    connection only, as an ``ERROR`` event; nobody else hears about them.
    """

    def __init__(self, coordinator: QueueCoordinator, connection_id: str):
        self.coordinator = coordinator
        self.connection_id = connection_id
        self.notifier = coordinator.notifier
        self.routes: Dict[str, Tuple[Type[BaseModel], Callable[[Any], Awaitable[None]]]] = {
            PATIENT_JOIN_QUEUE: (PatientJoinQueuePayload, self.on_patient_join_queue),
            INVITE_NEXT_PATIENT: (InviteNextPayload, self.on_invite_next_patient),
            START_CONSULTATION: (StartConsultationPayload, self.on_start_consultation),
            END_CONSULTATION: (EndConsultationPayload, self.on_end_consultation),
            LEAVE_QUEUE: (LeaveQueuePayload, self.on_leave_queue),
            SWITCH_DOCTOR_AVAILABILITY: (SwitchAvailabilityPayload, self.on_switch_doctor_availability),
            JOIN_DOCTOR_ROOM: (JoinDoctorRoomPayload, self.on_join_doctor_room),
        }

    async def handle(self, raw: str) -> None:
        try:
            message = LiveMessage.model_validate(json.loads(raw))
        except (ValueError, PayloadError):
            await self.notifier.send_error(self.connection_id, "Malformed message")
            return
        await self.dispatch(message.type, message.data)

    async def dispatch(self, event: str, data: dict) -> None:
        route = self.routes.get(event)
        if route is None:
            await self.notifier.send_error(self.connection_id, f"Unknown event: {event}")
            return

        payload_model, handler = route
        try:
            payload = payload_model.model_validate(data)
        except PayloadError:
            await self.notifier.send_error(self.connection_id, f"Invalid payload for {event}")
            return

        try:
            await handler(payload)
        except NoWaitingPatients:
            await self.notifier.send_to_connection(self.connection_id, events.NO_WAITING_PATIENTS)
        except QueueError as exc:
            logger.info(f"{event} rejected for connection {self.connection_id}: {exc.detail}")
            await self.notifier.send_error(self.connection_id, exc.detail)
        except Exception:
            logger.exception(f"Error in {event}")
            await self.notifier.send_error(self.connection_id, FAILURE_MESSAGES[event])

    def _claim(self, role: str, user_id) -> None:
        if self.coordinator.registry.lookup_connection(role, user_id) != self.connection_id:
            self.coordinator.registry.register_connection(role, user_id, self.connection_id)

    async def on_patient_join_queue(self, payload: PatientJoinQueuePayload) -> None:
        # Room names are always issued by the server, a client supplied one is ignored
        self._claim(PATIENT, payload.patient_id)
        await self.coordinator.join(
            payload.doctor_id,
            payload.patient_id,
            connection_id=self.connection_id,
            priority=payload.priority
        )

    async def on_invite_next_patient(self, payload: InviteNextPayload) -> None:
        self._claim(DOCTOR, payload.doctor_id)
        await self.coordinator.invite_next(payload.doctor_id, connection_id=self.connection_id)

    async def on_start_consultation(self, payload: StartConsultationPayload) -> None:
        self._claim(DOCTOR, payload.doctor_id)
        started = await self.coordinator.start_consultation(
            payload.doctor_id, payload.patient_id, connection_id=self.connection_id
        )
        if started.action == "rejoin":
            await self.notifier.send_to_connection(self.connection_id, events.CONSULTATION_STARTED, started.to_wire())

    async def on_end_consultation(self, payload: EndConsultationPayload) -> None:
        await self.coordinator.end_consultation(payload.consultation_id, payload.notes)

    async def on_leave_queue(self, payload: LeaveQueuePayload) -> None:
        await self.coordinator.leave(payload.doctor_id, payload.patient_id)

    async def on_switch_doctor_availability(self, payload: SwitchAvailabilityPayload) -> None:
        await self.coordinator.set_doctor_availability(payload.doctor_id, payload.is_available)

    async def on_join_doctor_room(self, payload: JoinDoctorRoomPayload) -> None:
        await self.coordinator.connect(DOCTOR, payload.doctor_id, self.connection_id)
        snapshot = await self.coordinator.get_active_queue(payload.doctor_id)
        await self.notifier.send_to_connection(self.connection_id, events.QUEUE_CHANGED, snapshot.to_wire())
