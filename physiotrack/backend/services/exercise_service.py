from __future__ import annotations

import logging

from database import paths
from database.queries import query_ordered
from database.store import DocumentStore, OrderBy, eq
from schemas.auth import UserProfile
from schemas.exercises import AssignedExercise, ExerciseTemplate, ExerciseTemplateCreate
from services.auth_service import to_profile
from services.measurement_service import now_ms
from services.progress_service import find_active_session

logger = logging.getLogger(__name__)


class ExerciseStateError(Exception):
    """The requested lifecycle change does not apply to the assignment's current state."""


# Templates ---------------------------------------------------------------


def create_template(store: DocumentStore, physio_id: str, payload: ExerciseTemplateCreate) -> ExerciseTemplate:
    data = {**payload.model_dump(), "created_by": physio_id, "created_at": now_ms()}
    template_id = store.create(paths.EXERCISES, data)
    return ExerciseTemplate(id=template_id, **data)


def get_template(store: DocumentStore, template_id: str) -> ExerciseTemplate | None:
    doc = store.get(paths.EXERCISES, template_id)
    return ExerciseTemplate.model_validate(doc) if doc else None


def list_templates_by_creator(store: DocumentStore, physio_id: str) -> list[ExerciseTemplate]:
    docs = query_ordered(
        store, paths.EXERCISES, [eq("created_by", physio_id)], OrderBy("created_at", descending=True)
    )
    return [ExerciseTemplate.model_validate(d) for d in docs]


# Patients ----------------------------------------------------------------


def list_patients_for_physio(store: DocumentStore, physio_id: str) -> list[UserProfile]:
    docs = store.query(paths.USERS, [eq("role", "patient"), eq("assigned_physio_id", physio_id)])
    return [to_profile(d) for d in docs]


def list_unassigned_patients(store: DocumentStore) -> list[UserProfile]:
    docs = store.query(paths.USERS, [eq("role", "patient")])
    return [to_profile(d) for d in docs if not d.get("assigned_physio_id")]


def assign_patient(store: DocumentStore, patient_id: str, physio_id: str) -> None:
    store.update(paths.USERS, patient_id, {"assigned_physio_id": physio_id})


# Assignments -------------------------------------------------------------


def assign_exercise(
    store: DocumentStore, patient_id: str, template: ExerciseTemplate, physio_id: str
) -> AssignedExercise:
    # Targets are copied so later template edits do not move the goalposts.
    data = {
        "exercise_id": template.id,
        "exercise_name": template.name,
        "patient_id": patient_id,
        "assigned_by": physio_id,
        "assigned_at": now_ms(),
        "target_angle_min": template.target_angle_min,
        "target_angle_max": template.target_angle_max,
        "target_reps": template.target_reps,
        "target_duration": template.target_duration,
        "status": "assigned",
    }
    assigned_id = store.create(paths.assigned_exercises(patient_id), data)
    return AssignedExercise(id=assigned_id, **data)


def list_assigned_exercises(store: DocumentStore, patient_id: str) -> list[AssignedExercise]:
    docs = query_ordered(store, paths.assigned_exercises(patient_id), [], OrderBy("assigned_at", descending=True))
    return [AssignedExercise.model_validate(d) for d in docs]


def get_assigned_exercise(store: DocumentStore, patient_id: str, assigned_id: str) -> AssignedExercise | None:
    doc = store.get(paths.assigned_exercises(patient_id), assigned_id)
    return AssignedExercise.model_validate(doc) if doc else None


def start_assigned_exercise(
    store: DocumentStore, patient_id: str, assigned_id: str
) -> tuple[AssignedExercise, str]:
    """Mark an assignment in progress and open an empty progress session for it."""
    assignment = get_assigned_exercise(store, patient_id, assigned_id)
    if assignment is None:
        raise LookupError(assigned_id)
    if assignment.status == "completed":
        raise ExerciseStateError("Exercise already completed.")

    busy = store.query(paths.assigned_exercises(patient_id), [eq("status", "in_progress")])
    if any(d["id"] != assigned_id for d in busy):
        raise ExerciseStateError("Finish the current exercise before starting another.")

    store.update(paths.assigned_exercises(patient_id), assigned_id, {"status": "in_progress"})

    session = find_active_session(store, patient_id, assigned_id)
    if session is None:
        data = {
            "patient_id": patient_id,
            "exercise_id": assignment.exercise_id,
            "assigned_exercise_id": assigned_id,
            "session_start_time": now_ms(),
            "reps_completed": 0,
            "status": "active",
            "reading_ids": [],
        }
        session = {**data, "id": store.create(paths.progress_sessions(patient_id), data)}
    logger.info("Patient %s started assignment %s", patient_id, assigned_id)
    return assignment.model_copy(update={"status": "in_progress"}), session["id"]


def complete_assigned_exercise(store: DocumentStore, patient_id: str, assigned_id: str) -> AssignedExercise:
    assignment = get_assigned_exercise(store, patient_id, assigned_id)
    if assignment is None:
        raise LookupError(assigned_id)
    if assignment.status == "completed":
        return assignment

    completed_at = now_ms()
    store.update(
        paths.assigned_exercises(patient_id), assigned_id, {"status": "completed", "completed_at": completed_at}
    )
    session = find_active_session(store, patient_id, assigned_id)
    if session is not None:
        store.update(
            paths.progress_sessions(patient_id),
            session["id"],
            {"status": "completed", "session_end_time": completed_at, "completed_at": completed_at},
        )
    logger.info("Patient %s completed assignment %s", patient_id, assigned_id)
    return assignment.model_copy(update={"status": "completed", "completed_at": completed_at})
