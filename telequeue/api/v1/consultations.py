from fastapi import APIRouter, Depends
from uuid import UUID

from telequeue.api.deps import get_coordinator
from telequeue.core.exceptions import NotFoundError
from telequeue.schemas.consultation import (
    CancelConsultationRequest,
    ConsultationResponse,
    ConsultationStarted,
    EndConsultationRequest,
    InviteNextRequest,
    StartConsultationRequest
)
from telequeue.services.consultation_service import ConsultationManager
from telequeue.services.queue_coordinator import QueueCoordinator

router = APIRouter()

@router.post("/invite-next", response_model=ConsultationStarted)
async def invite_next_patient(
    request: InviteNextRequest,
    coordinator: QueueCoordinator = Depends(get_coordinator)
):
    return await coordinator.invite_next(request.doctor_id)

@router.post("/start", response_model=ConsultationStarted)
async def start_consultation(
    request: StartConsultationRequest,
    coordinator: QueueCoordinator = Depends(get_coordinator)
):
    return await coordinator.start_consultation(request.doctor_id, request.patient_id)

@router.post("/{consultation_id}/end", response_model=ConsultationResponse)
async def end_consultation(
    consultation_id: UUID,
    request: EndConsultationRequest,
    coordinator: QueueCoordinator = Depends(get_coordinator)
):
    return await coordinator.end_consultation(consultation_id, request.notes)

@router.post("/{consultation_id}/cancel", response_model=ConsultationResponse)
async def cancel_consultation(
    consultation_id: UUID,
    request: CancelConsultationRequest,
    coordinator: QueueCoordinator = Depends(get_coordinator)
):
    return await coordinator.cancel_consultation(consultation_id, request.cancel_reason, request.cancelled_by)

@router.get("/doctor/{doctor_id}/ongoing", response_model=ConsultationResponse)
async def read_ongoing_consultation(
    doctor_id: UUID,
    coordinator: QueueCoordinator = Depends(get_coordinator)
):
    async with coordinator.session_factory() as session:
        consultation = await ConsultationManager(session).get_ongoing_for_doctor(doctor_id)
    if not consultation:
        raise NotFoundError("No ongoing consultation for this doctor")
    return consultation
