from database import paths
from database.store import DocumentStore, eq
from schemas.auth import SignupRequest
from schemas.exercises import ExerciseTemplateCreate
from services.auth_service import create_user, find_user_by_email
from services.exercise_service import assign_exercise, assign_patient, create_template, list_templates_by_creator

DEMO_PASSWORD = "Password123!"
DEMO_PATIENT_EMAIL = "demo.patient@physiotrack.app"
DEMO_PHYSIO_EMAIL = "demo.physio@physiotrack.app"
DEMO_EXERCISE_NAME = "Seated Knee Extension"


def seed_demo_data(store: DocumentStore) -> None:
    # Users
    patient = find_user_by_email(store, DEMO_PATIENT_EMAIL)
    if not patient:
        create_user(
            store,
            SignupRequest(email=DEMO_PATIENT_EMAIL, password=DEMO_PASSWORD, display_name="Demo Patient", role="patient"),
        )
        patient = find_user_by_email(store, DEMO_PATIENT_EMAIL)

    physio = find_user_by_email(store, DEMO_PHYSIO_EMAIL)
    if not physio:
        create_user(
            store,
            SignupRequest(
                email=DEMO_PHYSIO_EMAIL, password=DEMO_PASSWORD, display_name="Demo Physio", role="physiotherapist"
            ),
        )
        physio = find_user_by_email(store, DEMO_PHYSIO_EMAIL)

    if not patient.get("assigned_physio_id"):
        assign_patient(store, patient["id"], physio["id"])

    # One template and one assignment for the demo patient.
    templates = [t for t in list_templates_by_creator(store, physio["id"]) if t.name == DEMO_EXERCISE_NAME]
    if templates:
        template = templates[0]
    else:
        template = create_template(
            store,
            physio["id"],
            ExerciseTemplateCreate(
                name=DEMO_EXERCISE_NAME,
                description="Straighten the knee from a seated position, then lower slowly.",
                target_angle_min=45,
                target_angle_max=90,
                target_reps=10,
                target_duration=300,
            ),
        )

    existing = store.query(paths.assigned_exercises(patient["id"]), [eq("exercise_id", template.id)], limit=1)
    if not existing:
        assign_exercise(store, patient["id"], template, physio["id"])
