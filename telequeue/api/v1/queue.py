from fastapi import APIRouter, Depends, Query
from uuid import UUID

from telequeue.api.deps import get_coordinator
from telequeue.schemas.queue import (
    JoinQueueRequest,
    JoinQueueResponse,
    LeaveQueueRequest,
    PatientQueueStatus,
    QueueResponse
)
from telequeue.services.queue_coordinator import QueueCoordinator

router = APIRouter()

@router.get("/doctor/{doctor_id}", response_model=QueueResponse)
async def read_doctor_queue(
    doctor_id: UUID,
    coordinator: QueueCoordinator = Depends(get_coordinator)
):
    return await coordinator.get_active_queue(doctor_id)

@router.post("/join", response_model=JoinQueueResponse)
async def join_queue(
    request: JoinQueueRequest,
    coordinator: QueueCoordinator = Depends(get_coordinator)
):
    return await coordinator.join(request.doctor_id, request.patient_id, priority=request.priority)

@router.post("/leave", response_model=QueueResponse)
async def leave_queue(
    request: LeaveQueueRequest,
    coordinator: QueueCoordinator = Depends(get_coordinator)
):
    return await coordinator.leave(request.doctor_id, request.patient_id)

@router.get("/status", response_model=PatientQueueStatus)
async def read_queue_status(
    doctor_id: UUID = Query(..., alias="doctorId"),
    patient_id: UUID = Query(..., alias="patientId"),
    coordinator: QueueCoordinator = Depends(get_coordinator)
):
    return await coordinator.get_patient_status(doctor_id, patient_id)
