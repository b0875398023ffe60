from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError # type: ignore

from core.config import Settings
from database.store import DocumentStore
from schemas.auth import UserProfile
from services.auth_service import decode_token, find_user_by_email, get_user, to_profile
from services.dispatch_service import MeasurementDispatcher
from services.ingestion_service import DeviceRegistry
from services.measurement_service import MeasurementRecorder
from services.seed_service import DEMO_PATIENT_EMAIL

bearer = HTTPBearer(auto_error=False)


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_recorder(request: Request) -> MeasurementRecorder:
    return request.app.state.recorder


def get_dispatcher(request: Request) -> MeasurementDispatcher:
    return request.app.state.dispatcher


def get_devices(request: Request) -> DeviceRegistry:
    return request.app.state.devices


StoreDep = Annotated[DocumentStore, Depends(get_store)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
RecorderDep = Annotated[MeasurementRecorder, Depends(get_recorder)]
DevicesDep = Annotated[DeviceRegistry, Depends(get_devices)]


class AuthError(Exception):
    pass


def resolve_user(store: DocumentStore, token: str | None) -> UserProfile:
    # MVP behavior: no token or the frontend's mock token maps to the seeded demo patient.
    if token in (None, "", "mock-token"):
        user = find_user_by_email(store, DEMO_PATIENT_EMAIL)
        if not user:
            raise AuthError("Demo user missing. Seed failed.")
        return to_profile(user)

    try:
        payload = decode_token(token)
    except JWTError as exc:
        raise AuthError("Invalid token.") from exc
    sub = payload.get("sub")
    if not sub:
        raise AuthError("Invalid token.")

    user = get_user(store, sub)
    if not user:
        raise AuthError("User not found.")
    return to_profile(user)


def get_current_user(
    store: StoreDep, creds: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)]
) -> UserProfile:
    try:
        return resolve_user(store, creds.credentials if creds else None)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc


CurrentUserDep = Annotated[UserProfile, Depends(get_current_user)]


def require_physio(user: CurrentUserDep) -> UserProfile:
    if user.role != "physiotherapist":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Physiotherapist access required.")
    return user


def require_patient(user: CurrentUserDep) -> UserProfile:
    if user.role != "patient":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Patient access required.")
    return user


PhysioDep = Annotated[UserProfile, Depends(require_physio)]
PatientDep = Annotated[UserProfile, Depends(require_patient)]
