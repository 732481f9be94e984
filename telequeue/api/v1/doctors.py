from fastapi import APIRouter, Depends
from uuid import UUID

from telequeue.api.deps import get_coordinator
from telequeue.schemas.doctor import AvailabilityUpdate, DoctorStatusResponse
from telequeue.services.queue_coordinator import QueueCoordinator

router = APIRouter()

@router.patch("/{doctor_id}/availability", response_model=DoctorStatusResponse)
async def update_availability(
    doctor_id: UUID,
    request: AvailabilityUpdate,
    coordinator: QueueCoordinator = Depends(get_coordinator)
):
    return await coordinator.set_doctor_availability(doctor_id, request.is_available)
