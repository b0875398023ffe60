from pydantic import BaseModel, Field

from schemas.readings import ParsedReading


class DeviceStatus(BaseModel):
    connected: bool
    device_name: str | None = None
    current_reading: ParsedReading | None = None
    is_recording: bool = False
    exercise_id: str | None = None


class SerialConnectRequest(BaseModel):
    port: str = Field(..., min_length=1)
    baud_rate: int | None = Field(None, ge=300, le=2_000_000)


class RecordingStartRequest(BaseModel):
    exercise_id: str | None = None
