"""
Exercise progress tracking, run once per stored measurement.

Repetitions are counted edge-triggered: a measurement inside the target
angle band counts one rep when the measurement before it in the session was
outside the band. This detects entries into the band; it does not track full
flexion/extension cycles.

The lookups and the final update are separate store calls with no
transaction around them. Two measurements for the same assignment processed
at the same moment can both find no active session and create one each, or
overwrite each other's ``reading_ids``; at human movement rates this is
accepted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from core.config import Settings, settings
from database import paths
from database.queries import query_ordered
from database.store import DOCUMENT_ID, DocumentStore, OrderBy, eq, is_in
from schemas.progress import ProgressSession
from schemas.readings import Measurement
from services.measurement_service import now_ms

logger = logging.getLogger(__name__)

ACTIVE_ASSIGNMENT_STATUSES = ("assigned", "in_progress")


@dataclass
class ProgressOutcome:
    status: str  # skipped | no_assignment | duplicate | updated | completed | failed
    session_id: str | None = None
    reps_completed: int | None = None
    rep_counted: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status != "failed"


def in_target_range(angle: float, assignment: dict[str, Any]) -> bool:
    return float(assignment["target_angle_min"]) <= angle <= float(assignment["target_angle_max"])


def find_active_assignment(store: DocumentStore, patient_id: str, exercise_id: str) -> dict[str, Any] | None:
    docs = query_ordered(
        store,
        paths.assigned_exercises(patient_id),
        [eq("exercise_id", exercise_id), is_in("status", ACTIVE_ASSIGNMENT_STATUSES)],
        OrderBy("assigned_at", descending=True),
        limit=1,
    )
    return docs[0] if docs else None


def find_active_session(store: DocumentStore, patient_id: str, assigned_exercise_id: str) -> dict[str, Any] | None:
    docs = store.query(
        paths.progress_sessions(patient_id),
        [eq("assigned_exercise_id", assigned_exercise_id), eq("status", "active")],
        limit=1,
    )
    return docs[0] if docs else None


def _reading_angles(store: DocumentStore, patient_id: str, reading_ids: list[str]) -> dict[str, float]:
    if not reading_ids:
        return {}
    docs = store.query(paths.readings(patient_id), [is_in(DOCUMENT_ID, reading_ids)])
    return {d["id"]: float(d["angle"]) for d in docs if d.get("angle") is not None}


def _open_session(store: DocumentStore, measurement: Measurement, assignment: dict[str, Any]) -> dict[str, Any]:
    data = {
        "patient_id": measurement.patient_id,
        "exercise_id": measurement.exercise_id,
        "assigned_exercise_id": assignment["id"],
        "session_start_time": measurement.timestamp,
        "reps_completed": 0,
        "status": "active",
        "reading_ids": [measurement.id],
        "min_angle": measurement.angle,
        "max_angle": measurement.angle,
    }
    session_id = store.create(paths.progress_sessions(measurement.patient_id), data)
    logger.info("Opened progress session %s for assignment %s", session_id, assignment["id"])
    return {**data, "id": session_id}


def _apply_measurement(store: DocumentStore, measurement: Measurement, average_window: int) -> ProgressOutcome:
    patient_id = measurement.patient_id
    reading_id = measurement.id
    angle = measurement.angle

    assignment = find_active_assignment(store, patient_id, measurement.exercise_id)
    if assignment is None:
        logger.info("No active assigned exercise found for exercise %s", measurement.exercise_id)
        return ProgressOutcome("no_assignment")

    session = find_active_session(store, patient_id, assignment["id"])
    if session is None:
        session = _open_session(store, measurement, assignment)
        previous_ids: list[str] = []
    else:
        previous_ids = list(session.get("reading_ids") or [])
        if reading_id in previous_ids:
            logger.info("Reading %s already counted in session %s", reading_id, session["id"])
            return ProgressOutcome(
                "duplicate", session_id=session["id"], reps_completed=int(session.get("reps_completed") or 0)
            )

    reps = int(session.get("reps_completed") or 0)
    min_angle = session.get("min_angle")
    max_angle = session.get("max_angle")

    rep_counted = False
    if in_target_range(angle, assignment) and previous_ids:
        previous = store.get(paths.readings(patient_id), previous_ids[-1])
        if previous is not None and not in_target_range(float(previous["angle"]), assignment):
            reps += 1
            rep_counted = True

    contributing = previous_ids + [reading_id]
    window = contributing[-average_window:]
    angles = _reading_angles(store, patient_id, window)
    angles.setdefault(reading_id, angle)
    window_angles = [angles[i] for i in window if i in angles]

    updates: dict[str, Any] = {
        "reading_ids": contributing,
        "min_angle": angle if min_angle is None else min(float(min_angle), angle),
        "max_angle": angle if max_angle is None else max(float(max_angle), angle),
        "average_angle": sum(window_angles) / len(window_angles),
    }

    status = "updated"
    if rep_counted:
        updates["reps_completed"] = reps
        if reps >= int(assignment["target_reps"]):
            completed_at = now_ms()
            updates["status"] = "completed"
            updates["session_end_time"] = measurement.timestamp
            updates["completed_at"] = completed_at
            store.update(
                paths.assigned_exercises(patient_id),
                assignment["id"],
                {"status": "completed", "completed_at": completed_at},
            )
            status = "completed"
            logger.info("Exercise %s completed for patient %s", measurement.exercise_id, patient_id)

    store.update(paths.progress_sessions(patient_id), session["id"], updates)
    logger.debug("Updated progress for exercise %s (reps=%s)", measurement.exercise_id, reps)
    return ProgressOutcome(status, session_id=session["id"], reps_completed=reps, rep_counted=rep_counted)


def update_progress(store: DocumentStore, measurement: Measurement, cfg: Settings = settings) -> ProgressOutcome:
    if not measurement.exercise_id:
        return ProgressOutcome("skipped")
    try:
        return _apply_measurement(store, measurement, cfg.rolling_average_window)
    except Exception as exc:
        # Not retried: the progress update for this measurement is lost.
        logger.exception("Error updating exercise progress for reading %s", measurement.id)
        return ProgressOutcome("failed", error=str(exc))


def list_progress_sessions(store: DocumentStore, patient_id: str, exercise_id: str | None = None) -> list[ProgressSession]:
    filters = [eq("exercise_id", exercise_id)] if exercise_id else []
    docs = query_ordered(
        store, paths.progress_sessions(patient_id), filters, OrderBy("session_start_time", descending=True)
    )
    return [ProgressSession.model_validate(d) for d in docs]
