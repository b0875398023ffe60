"""Collection paths of the document store."""

USERS = "users"
EXERCISES = "exercises"


def assigned_exercises(patient_id: str) -> str:
    return f"patients/{patient_id}/assigned_exercises"


def recommendations(patient_id: str) -> str:
    return f"patients/{patient_id}/recommendations"


def readings(patient_id: str) -> str:
    return f"readings/{patient_id}/events"


def progress_sessions(patient_id: str) -> str:
    return f"progress/{patient_id}/sessions"
