import asyncio
import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status

from api.deps import AuthError, DevicesDep, PatientDep, SettingsDep, resolve_user
from api.live import stop_pump
from core.errors import DeviceError
from schemas.devices import DeviceStatus, RecordingStartRequest, SerialConnectRequest
from schemas.readings import ParsedReading
from services.device_connection import SerialDevicePort, StreamDevicePort

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/status", response_model=DeviceStatus)
def device_status(devices: DevicesDep, user: PatientDep):
    device = devices.get(user.uid)
    if device is None:
        return DeviceStatus(connected=False)
    return device.status()


@router.post("/serial/connect", response_model=DeviceStatus)
async def connect_serial(payload: SerialConnectRequest, devices: DevicesDep, cfg: SettingsDep, user: PatientDep):
    port = SerialDevicePort(payload.port, payload.baud_rate or cfg.serial_baud_rate)
    try:
        device = await devices.connect(user.uid, port)
    except DeviceError as exc:
        logger.error("Error connecting to device for patient %s: %s", user.uid, exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return device.status()


@router.post("/disconnect", response_model=DeviceStatus)
async def disconnect_device(devices: DevicesDep, user: PatientDep):
    await devices.disconnect(user.uid)
    return DeviceStatus(connected=False)


@router.post("/recording/start", response_model=DeviceStatus)
async def start_recording(payload: RecordingStartRequest, devices: DevicesDep, user: PatientDep):
    device = devices.get(user.uid)
    if device is None or not device.connected:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Device not connected.")
    await device.start_recording(payload.exercise_id)
    return device.status()


@router.post("/recording/stop", response_model=DeviceStatus)
def stop_recording(devices: DevicesDep, user: PatientDep):
    device = devices.get(user.uid)
    if device is None:
        return DeviceStatus(connected=False)
    device.stop_recording()
    return device.status()


@router.websocket("/stream")
async def device_stream(ws: WebSocket, token: str | None = None):
    """
    The browser owns the serial port and relays what it reads as text
    messages; each parsed reading is echoed back as JSON.
    """
    devices = ws.app.state.devices
    try:
        user = resolve_user(ws.app.state.store, token)
    except AuthError:
        await ws.close(code=1008)
        return
    await ws.accept()

    port = StreamDevicePort()
    device = await devices.connect(user.uid, port)

    outgoing: asyncio.Queue = asyncio.Queue()

    def on_reading(reading: ParsedReading) -> None:
        outgoing.put_nowait(reading)

    async def pump():
        while True:
            reading = await outgoing.get()
            await ws.send_json({"reading": reading.model_dump(), "is_recording": device.is_recording})

    device.add_listener(on_reading)
    pump_task = asyncio.create_task(pump())
    try:
        while True:
            port.feed(await ws.receive_text())
    except WebSocketDisconnect:
        logger.info("Device stream closed for patient %s", user.uid)
    finally:
        device.remove_listener(on_reading)
        await stop_pump(pump_task, f"Device echo for patient {user.uid}")
        # A newer connection may already have replaced this one.
        if device.is_connected_to(port):
            await device.disconnect()
