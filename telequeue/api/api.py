from fastapi import APIRouter, Depends
from telequeue.api.deps import get_current_identity
from telequeue.api.v1 import consultations, doctors, live, queue

api_router = APIRouter()

authenticated = [Depends(get_current_identity)]

api_router.include_router(queue.router, prefix="/patientQueue", tags=["queue"], dependencies=authenticated)
api_router.include_router(consultations.router, prefix="/consultations", tags=["consultations"], dependencies=authenticated)
api_router.include_router(doctors.router, prefix="/doctors", tags=["doctors"], dependencies=authenticated)
api_router.include_router(live.router, tags=["live"])
