from pydantic import BaseModel, Field


class ParsedReading(BaseModel):
    angle: float
    roll: float
    pitch: float
    yaw: float
    raw: str


class Measurement(BaseModel):
    id: str
    patient_id: str
    timestamp: int  # epoch milliseconds
    angle: float
    roll: float
    pitch: float
    yaw: float
    raw: str = ""
    device: str | None = None
    exercise_id: str | None = None  # None => passive capture

    # Written once by the webhook forwarder.
    forwarded: bool = False
    webhook_response: str | None = None
    webhook_status_code: int | None = None


class ReadingCreate(BaseModel):
    # Either the raw serial line or the four parsed values.
    raw: str | None = Field(None, max_length=500)
    angle: float | None = None
    roll: float | None = None
    pitch: float | None = None
    yaw: float | None = None
    device: str | None = Field(None, max_length=100)
    exercise_id: str | None = Field(None, max_length=200)


class ReadingCreateResponse(BaseModel):
    id: str


class ReadingsResponse(BaseModel):
    patient_id: str
    readings: list[Measurement]
