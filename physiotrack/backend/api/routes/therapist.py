from fastapi import APIRouter, HTTPException, status

from api.deps import PhysioDep, StoreDep
from database.store import DocumentStore
from schemas.auth import PatientsResponse, UserProfile
from schemas.exercises import (
    AssignedExercise,
    AssignedExercisesResponse,
    AssignExerciseRequest,
    ExerciseTemplate,
    ExerciseTemplateCreate,
    ExerciseTemplatesResponse,
)
from schemas.progress import ProgressSessionsResponse
from schemas.readings import ReadingsResponse
from services.auth_service import get_user, to_profile
from services.exercise_service import (
    assign_exercise,
    assign_patient,
    create_template,
    get_template,
    list_assigned_exercises,
    list_patients_for_physio,
    list_templates_by_creator,
    list_unassigned_patients,
)
from services.measurement_service import latest_measurements
from services.progress_service import list_progress_sessions

router = APIRouter()


def _own_patient(store: DocumentStore, physio: UserProfile, patient_id: str) -> UserProfile:
    doc = get_user(store, patient_id)
    if not doc or doc.get("role") != "patient":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found.")
    if doc.get("assigned_physio_id") != physio.uid:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Patient is not assigned to you.")
    return to_profile(doc)


@router.get("/patients", response_model=PatientsResponse)
def my_patients(store: StoreDep, user: PhysioDep):
    return PatientsResponse(patients=list_patients_for_physio(store, user.uid))


@router.get("/patients/unassigned", response_model=PatientsResponse)
def unassigned_patients(store: StoreDep, user: PhysioDep):
    return PatientsResponse(patients=list_unassigned_patients(store))


@router.put("/patients/{patient_id}/assign", response_model=UserProfile)
def take_patient(patient_id: str, store: StoreDep, user: PhysioDep):
    doc = get_user(store, patient_id)
    if not doc or doc.get("role") != "patient":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found.")
    assign_patient(store, patient_id, user.uid)
    return to_profile({**doc, "assigned_physio_id": user.uid})


@router.post("/exercises", response_model=ExerciseTemplate)
def new_exercise(payload: ExerciseTemplateCreate, store: StoreDep, user: PhysioDep):
    return create_template(store, user.uid, payload)


@router.get("/exercises", response_model=ExerciseTemplatesResponse)
def my_exercises(store: StoreDep, user: PhysioDep):
    return ExerciseTemplatesResponse(exercises=list_templates_by_creator(store, user.uid))


@router.post("/patients/{patient_id}/assigned-exercises", response_model=AssignedExercise)
def assign_to_patient(patient_id: str, payload: AssignExerciseRequest, store: StoreDep, user: PhysioDep):
    _own_patient(store, user, patient_id)
    template = get_template(store, payload.exercise_id)
    if template is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exercise not found.")
    return assign_exercise(store, patient_id, template, user.uid)


@router.get("/patients/{patient_id}/assigned-exercises", response_model=AssignedExercisesResponse)
def patient_assigned_exercises(patient_id: str, store: StoreDep, user: PhysioDep):
    _own_patient(store, user, patient_id)
    return AssignedExercisesResponse(patient_id=patient_id, exercises=list_assigned_exercises(store, patient_id))


@router.get("/patients/{patient_id}/readings", response_model=ReadingsResponse)
def patient_readings(patient_id: str, store: StoreDep, user: PhysioDep):
    _own_patient(store, user, patient_id)
    return ReadingsResponse(patient_id=patient_id, readings=latest_measurements(store, patient_id))


@router.get("/patients/{patient_id}/progress", response_model=ProgressSessionsResponse)
def patient_progress(patient_id: str, store: StoreDep, user: PhysioDep):
    _own_patient(store, user, patient_id)
    return ProgressSessionsResponse(patient_id=patient_id, sessions=list_progress_sessions(store, patient_id))
