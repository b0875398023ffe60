import json
import unittest
from unittest import mock

from fastapi.testclient import TestClient

from core.config import Settings
from database.store import MemoryDocumentStore
from main import create_app
from services.device_connection import StreamDevicePort
from services.seed_service import DEMO_EXERCISE_NAME, DEMO_PASSWORD, DEMO_PATIENT_EMAIL, DEMO_PHYSIO_EMAIL

API = "/api"


def webhook_reply(status_code=200, body=None):
    response = mock.Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = json.dumps(body)
    response.json.return_value = body
    return response


class ApiTest(unittest.TestCase):
    def setUp(self):
        self.http = mock.Mock()
        self.http.post.return_value = webhook_reply(200, {"recommendations": [{"feedback": "Nice work"}]})
        patcher = mock.patch("services.http_client.requests", self.http)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.store = MemoryDocumentStore()
        self.app = create_app(Settings(store_backend="memory", log_level="WARNING"), self.store)
        self.client = TestClient(self.app)
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)

        self.patient = self._login(DEMO_PATIENT_EMAIL)
        self.physio = self._login(DEMO_PHYSIO_EMAIL)

    def _login(self, email):
        r = self.client.post(f"{API}/auth/login", json={"email": email, "password": DEMO_PASSWORD})
        self.assertEqual(r.status_code, 200, r.text)
        return {"Authorization": f"Bearer {r.json()['access_token']}"}

    def _drain(self):
        self.client.portal.call(self.app.state.dispatcher.drain)

    def _patient_id(self):
        return self.client.get(f"{API}/auth/me", headers=self.patient).json()["uid"]

    def _demo_template(self):
        exercises = self.client.get(f"{API}/therapist/exercises", headers=self.physio).json()["exercises"]
        return next(e for e in exercises if e["name"] == DEMO_EXERCISE_NAME)

    def test_health(self):
        self.assertEqual(self.client.get(f"{API}/health").json(), {"status": "ok"})

    def test_auth_flow(self):
        r = self.client.post(
            f"{API}/auth/signup",
            json={"email": "New.Patient@Example.com", "password": "longenough", "display_name": "New", "role": "patient"},
        )
        self.assertEqual(r.status_code, 200)
        headers = {"Authorization": f"Bearer {r.json()['access_token']}"}
        me = self.client.get(f"{API}/auth/me", headers=headers).json()
        self.assertEqual(me["email"], "new.patient@example.com")
        self.assertIsNone(me["assigned_physio_id"])

        dup = self.client.post(
            f"{API}/auth/signup",
            json={"email": "new.patient@example.com", "password": "longenough", "display_name": "X", "role": "patient"},
        )
        self.assertEqual(dup.status_code, 409)

        bad = self.client.post(f"{API}/auth/login", json={"email": DEMO_PATIENT_EMAIL, "password": "wrong-password"})
        self.assertEqual(bad.status_code, 401)

    def test_token_handling(self):
        # No token falls back to the demo patient.
        self.assertEqual(self.client.get(f"{API}/auth/me").json()["email"], DEMO_PATIENT_EMAIL)
        self.assertEqual(
            self.client.get(f"{API}/auth/me", headers={"Authorization": "Bearer mock-token"}).json()["email"],
            DEMO_PATIENT_EMAIL,
        )
        r = self.client.get(f"{API}/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(r.status_code, 401)

    def test_role_checks(self):
        self.assertEqual(self.client.get(f"{API}/therapist/patients", headers=self.patient).status_code, 403)
        self.assertEqual(self.client.get(f"{API}/patient/readings", headers=self.physio).status_code, 403)
        self.assertEqual(self.client.get(f"{API}/devices/status", headers=self.physio).status_code, 403)

    def test_physio_manages_patients_and_exercises(self):
        patients = self.client.get(f"{API}/therapist/patients", headers=self.physio).json()["patients"]
        self.assertEqual([p["email"] for p in patients], [DEMO_PATIENT_EMAIL])
        patient_id = patients[0]["uid"]

        r = self.client.post(
            f"{API}/therapist/exercises",
            headers=self.physio,
            json={
                "name": "Heel Slides",
                "description": "Slide the heel towards the buttock.",
                "target_angle_min": 20,
                "target_angle_max": 70,
                "target_reps": 15,
                "target_duration": 240,
            },
        )
        self.assertEqual(r.status_code, 200, r.text)
        template = r.json()

        r = self.client.post(
            f"{API}/therapist/patients/{patient_id}/assigned-exercises",
            headers=self.physio,
            json={"exercise_id": template["id"]},
        )
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["status"], "assigned")
        self.assertEqual(r.json()["target_angle_min"], 20)

        mine = self.client.get(f"{API}/patient/assigned-exercises", headers=self.patient).json()["exercises"]
        self.assertEqual({e["exercise_name"] for e in mine}, {"Heel Slides", DEMO_EXERCISE_NAME})

        missing = self.client.post(
            f"{API}/therapist/patients/{patient_id}/assigned-exercises",
            headers=self.physio,
            json={"exercise_id": "nope"},
        )
        self.assertEqual(missing.status_code, 404)

    def test_invalid_template_is_rejected(self):
        r = self.client.post(
            f"{API}/therapist/exercises",
            headers=self.physio,
            json={"name": "Backwards", "target_angle_min": 90, "target_angle_max": 45, "target_reps": 5, "target_duration": 60},
        )
        self.assertEqual(r.status_code, 422)

    def test_other_physio_cannot_see_patient(self):
        r = self.client.post(
            f"{API}/auth/signup",
            json={"email": "other@example.com", "password": "longenough", "display_name": "Other", "role": "physiotherapist"},
        )
        other = {"Authorization": f"Bearer {r.json()['access_token']}"}
        r = self.client.get(f"{API}/therapist/patients/{self._patient_id()}/readings", headers=other)
        self.assertEqual(r.status_code, 403)
        self.assertEqual(self.client.get(f"{API}/therapist/patients/nobody/readings", headers=other).status_code, 404)

    def test_uploaded_readings_drive_progress(self):
        template = self._demo_template()
        for raw in ("Angle: 30 Roll: 0 Pitch: 0 Yaw: 0", "Angle: 60 Roll: 0 Pitch: 0 Yaw: 0"):
            r = self.client.post(
                f"{API}/patient/readings", headers=self.patient, json={"raw": raw, "exercise_id": template["id"]}
            )
            self.assertEqual(r.status_code, 200, r.text)
            self._drain()

        (session,) = self.client.get(f"{API}/patient/progress", headers=self.patient).json()["sessions"]
        self.assertEqual(session["reps_completed"], 1)
        self.assertEqual(session["min_angle"], 30)
        self.assertEqual(session["max_angle"], 60)

        readings = self.client.get(f"{API}/patient/readings", headers=self.patient).json()["readings"]
        self.assertEqual(len(readings), 2)
        self.assertTrue(all(r["forwarded"] for r in readings))
        self.assertEqual(self.http.post.call_count, 2)

        # The physio sees the same data.
        patient_id = self._patient_id()
        sessions = self.client.get(f"{API}/therapist/patients/{patient_id}/progress", headers=self.physio).json()
        self.assertEqual(sessions["sessions"][0]["reps_completed"], 1)

    def test_structured_and_invalid_uploads(self):
        r = self.client.post(
            f"{API}/patient/readings", headers=self.patient, json={"angle": 10, "roll": 1, "pitch": 2, "yaw": 3}
        )
        self.assertEqual(r.status_code, 200)
        self._drain()

        r = self.client.post(f"{API}/patient/readings", headers=self.patient, json={"raw": "garbage"})
        self.assertEqual(r.status_code, 422)
        r = self.client.post(f"{API}/patient/readings", headers=self.patient, json={"angle": 10})
        self.assertEqual(r.status_code, 422)

    def test_recommendations(self):
        r = self.client.post(f"{API}/patient/recommendations/refresh", headers=self.patient)
        self.assertEqual(r.status_code, 200)
        self.assertEqual([rec["feedback"] for rec in r.json()["recommendations"]], ["Nice work"])

        self.http.post.return_value = webhook_reply(500, {"error": "boom"})
        r = self.client.post(f"{API}/patient/recommendations/refresh", headers=self.patient)
        self.assertEqual(r.status_code, 502)

    def test_start_requires_connected_device(self):
        assignment = self.client.get(f"{API}/patient/assigned-exercises", headers=self.patient).json()["exercises"][0]
        r = self.client.post(f"{API}/patient/assigned-exercises/{assignment['id']}/start", headers=self.patient)
        self.assertEqual(r.status_code, 409)

    def test_exercise_lifecycle(self):
        patient_id = self._patient_id()
        self.client.portal.call(self.app.state.devices.connect, patient_id, StreamDevicePort())

        assignment = self.client.get(f"{API}/patient/assigned-exercises", headers=self.patient).json()["exercises"][0]
        r = self.client.post(f"{API}/patient/assigned-exercises/{assignment['id']}/start", headers=self.patient)
        self.assertEqual(r.status_code, 200, r.text)
        started = r.json()
        self.assertTrue(started["recording"])
        self.assertEqual(started["assignment"]["status"], "in_progress")

        status = self.client.get(f"{API}/devices/status", headers=self.patient).json()
        self.assertEqual(status["exercise_id"], assignment["exercise_id"])

        r = self.client.post(f"{API}/patient/assigned-exercises/{assignment['id']}/complete", headers=self.patient)
        self.assertEqual(r.json()["status"], "completed")
        self.assertFalse(self.client.get(f"{API}/devices/status", headers=self.patient).json()["is_recording"])

        (session,) = self.client.get(f"{API}/patient/progress", headers=self.patient).json()["sessions"]
        self.assertEqual(session["id"], started["session_id"])
        self.assertEqual(session["status"], "completed")

        r = self.client.post(f"{API}/patient/assigned-exercises/{assignment['id']}/start", headers=self.patient)
        self.assertEqual(r.status_code, 409)

    def test_device_stream_echoes_readings(self):
        with self.client.websocket_connect(f"{API}/devices/stream?token=mock-token") as ws:
            ws.send_text("Angle: 50 Roll: 1")
            ws.send_text(" Pitch: 2 Yaw: 3\n")
            message = ws.receive_json()
            self.assertEqual(message["reading"]["angle"], 50)
            self.assertEqual(message["reading"]["yaw"], 3)
            self.assertFalse(message["is_recording"])

            status = self.client.get(f"{API}/devices/status", headers=self.patient).json()
            self.assertTrue(status["connected"])

    def test_n8n_proxy(self):
        self.http.post.return_value = webhook_reply(201, {"answer": "Rest today"})
        r = self.client.post(f"{API}/n8n/patient-query", json={"question": "Can I run?"})
        self.assertEqual(r.status_code, 201)
        self.assertEqual(r.json(), {"answer": "Rest today"})
        self.assertEqual(self.http.post.call_args.kwargs["json"], {"question": "Can I run?"})

        r = self.client.post(f"{API}/n8n/patient-query", content=b"not json")
        self.assertEqual(r.status_code, 400)


if __name__ == "__main__":
    unittest.main()
