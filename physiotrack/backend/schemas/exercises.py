from typing import Literal

from pydantic import BaseModel, Field, model_validator

AssignmentStatus = Literal["assigned", "in_progress", "completed"]


class ExerciseTemplateCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: str = Field("", max_length=2000)
    target_angle_min: float = Field(..., ge=0, le=360)
    target_angle_max: float = Field(..., ge=0, le=360)
    target_reps: int = Field(..., ge=1, le=500)
    target_duration: int = Field(..., ge=1, le=7200)  # seconds

    @model_validator(mode="after")
    def _check_band(self):
        if self.target_angle_min > self.target_angle_max:
            raise ValueError("target_angle_min must not exceed target_angle_max")
        return self


class ExerciseTemplate(BaseModel):
    id: str
    name: str
    description: str = ""
    target_angle_min: float
    target_angle_max: float
    target_reps: int
    target_duration: int
    created_by: str
    created_at: int


class ExerciseTemplatesResponse(BaseModel):
    exercises: list[ExerciseTemplate]


class AssignExerciseRequest(BaseModel):
    exercise_id: str = Field(..., min_length=1)


class AssignedExercise(BaseModel):
    id: str
    exercise_id: str
    exercise_name: str
    patient_id: str
    assigned_by: str
    assigned_at: int
    target_angle_min: float
    target_angle_max: float
    target_reps: int
    target_duration: int
    status: AssignmentStatus = "assigned"
    completed_at: int | None = None


class AssignedExercisesResponse(BaseModel):
    patient_id: str
    exercises: list[AssignedExercise]


class StartExerciseResponse(BaseModel):
    assignment: AssignedExercise
    session_id: str
    recording: bool
