import asyncio
import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status

from api.deps import AuthError, DevicesDep, PatientDep, RecorderDep, SettingsDep, StoreDep, resolve_user
from api.live import stop_pump
from core.errors import WebhookError
from database import paths
from database.store import OrderBy
from schemas.exercises import AssignedExercise, AssignedExercisesResponse, StartExerciseResponse
from schemas.progress import ProgressSessionsResponse
from schemas.readings import Measurement, ParsedReading, ReadingCreate, ReadingCreateResponse, ReadingsResponse
from schemas.webhook import RecommendationsResponse
from services.exercise_service import (
    ExerciseStateError,
    complete_assigned_exercise,
    list_assigned_exercises,
    start_assigned_exercise,
)
from services.measurement_service import LATEST_READINGS_LIMIT, latest_measurements
from services.progress_service import list_progress_sessions
from services.recommendation_service import list_recommendations, request_recommendations
from services.serial_parser import parse_serial_line

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/assigned-exercises", response_model=AssignedExercisesResponse)
def my_assigned_exercises(store: StoreDep, user: PatientDep):
    return AssignedExercisesResponse(patient_id=user.uid, exercises=list_assigned_exercises(store, user.uid))


@router.post("/assigned-exercises/{assigned_id}/start", response_model=StartExerciseResponse)
async def start_exercise(assigned_id: str, store: StoreDep, devices: DevicesDep, user: PatientDep):
    device = devices.get(user.uid)
    if device is None or not device.connected:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Connect your device before starting.")
    try:
        assignment, session_id = await asyncio.to_thread(start_assigned_exercise, store, user.uid, assigned_id)
    except LookupError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assigned exercise not found.")
    except ExerciseStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    await device.start_recording(assignment.exercise_id)
    return StartExerciseResponse(assignment=assignment, session_id=session_id, recording=device.is_recording)


@router.post("/assigned-exercises/{assigned_id}/complete", response_model=AssignedExercise)
async def complete_exercise(assigned_id: str, store: StoreDep, devices: DevicesDep, user: PatientDep):
    device = devices.get(user.uid)
    if device is not None:
        device.stop_recording()
    try:
        return await asyncio.to_thread(complete_assigned_exercise, store, user.uid, assigned_id)
    except LookupError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assigned exercise not found.")


@router.get("/readings", response_model=ReadingsResponse)
def my_readings(store: StoreDep, user: PatientDep):
    return ReadingsResponse(patient_id=user.uid, readings=latest_measurements(store, user.uid))


@router.post("/readings", response_model=ReadingCreateResponse)
async def upload_reading(payload: ReadingCreate, recorder: RecorderDep, user: PatientDep):
    # Readings parsed client side (browser Web Serial) arrive here instead of through a device stream.
    reading: ParsedReading | None
    if payload.raw:
        reading = parse_serial_line(payload.raw)
    elif None not in (payload.angle, payload.roll, payload.pitch, payload.yaw):
        reading = ParsedReading(
            angle=payload.angle, roll=payload.roll, pitch=payload.pitch, yaw=payload.yaw, raw=""
        )
    else:
        reading = None
    if reading is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Unrecognised reading.")

    measurement = await recorder.record(user.uid, reading, exercise_id=payload.exercise_id, device=payload.device)
    return ReadingCreateResponse(id=measurement.id)


@router.get("/progress", response_model=ProgressSessionsResponse)
def my_progress(store: StoreDep, user: PatientDep):
    return ProgressSessionsResponse(patient_id=user.uid, sessions=list_progress_sessions(store, user.uid))


@router.get("/recommendations", response_model=RecommendationsResponse)
def my_recommendations(store: StoreDep, user: PatientDep):
    return RecommendationsResponse(patient_id=user.uid, recommendations=list_recommendations(store, user.uid))


@router.post("/recommendations/refresh", response_model=RecommendationsResponse)
def refresh_recommendations(store: StoreDep, cfg: SettingsDep, user: PatientDep):
    try:
        recs = request_recommendations(store, user.uid, cfg)
    except WebhookError as exc:
        logger.error("Error fetching recommendations for patient %s: %s", user.uid, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Could not fetch recommendations.")
    return RecommendationsResponse(patient_id=user.uid, recommendations=recs)


@router.websocket("/readings/live")
async def live_readings(ws: WebSocket, token: str | None = None):
    store = ws.app.state.store
    try:
        user = resolve_user(store, token)
    except AuthError:
        await ws.close(code=1008)
        return
    await ws.accept()

    loop = asyncio.get_running_loop()
    snapshots: asyncio.Queue = asyncio.Queue()

    def on_snapshot(docs):
        loop.call_soon_threadsafe(snapshots.put_nowait, docs)

    sub = await asyncio.to_thread(
        store.subscribe,
        paths.readings(user.uid),
        on_snapshot,
        (),
        OrderBy("timestamp", descending=True),
        LATEST_READINGS_LIMIT,
    )

    async def pump():
        while True:
            docs = await snapshots.get()
            readings = [Measurement.model_validate(d).model_dump() for d in docs]
            await ws.send_json({"patient_id": user.uid, "readings": readings})

    pump_task = asyncio.create_task(pump())
    try:
        # Client messages are ignored; receiving only detects the disconnect.
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        sub.unsubscribe()
        await stop_pump(pump_task, f"Live readings for patient {user.uid}")
