from fastapi import APIRouter

from api.routes import auth, devices, patient, proxy, therapist

api_router = APIRouter()

api_router.include_router(auth.router, tags=["auth"], prefix="/auth")
api_router.include_router(patient.router, tags=["patient"], prefix="/patient")
api_router.include_router(therapist.router, tags=["therapist"], prefix="/therapist")
api_router.include_router(devices.router, tags=["devices"], prefix="/devices")
api_router.include_router(proxy.router, tags=["proxy"], prefix="/n8n")
