from typing import Literal

from pydantic import BaseModel

SessionStatus = Literal["active", "completed", "abandoned"]


class ProgressSession(BaseModel):
    id: str
    patient_id: str
    exercise_id: str
    assigned_exercise_id: str
    session_start_time: int
    session_end_time: int | None = None
    reps_completed: int = 0
    average_angle: float | None = None
    min_angle: float | None = None
    max_angle: float | None = None
    status: SessionStatus = "active"
    completed_at: int | None = None
    reading_ids: list[str] = []


class ProgressSessionsResponse(BaseModel):
    patient_id: str
    sessions: list[ProgressSession]
