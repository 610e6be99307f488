from fastapi import APIRouter

from app.api.v1.endpoints import (
    appointments,
    providers,
    scheduling,
)

api_router = APIRouter()

# Appointment lifecycle endpoints
api_router.include_router(
    appointments.router, prefix="/appointments", tags=["appointments"]
)

# Slot queries and booking validation
api_router.include_router(scheduling.router, prefix="/scheduling", tags=["scheduling"])

# Provider availability management
api_router.include_router(providers.router, prefix="/providers", tags=["providers"])
