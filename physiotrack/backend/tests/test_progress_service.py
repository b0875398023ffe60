import unittest
from unittest import mock

from core.config import Settings
from database import paths
from database.store import MemoryDocumentStore
from schemas.readings import ParsedReading
from services.measurement_service import create_measurement
from services.progress_service import update_progress

PATIENT = "patient-1"
EXERCISE = "knee-ext"


class ProgressUpdaterTest(unittest.TestCase):
    def setUp(self):
        self.store = MemoryDocumentStore()
        self.cfg = Settings(store_backend="memory", rolling_average_window=10)
        self.clock = 1_000
        self.assignment_id = self._assign(target_reps=10)

    def _assign(self, target_reps, status="assigned", assigned_at=1):
        return self.store.create(
            paths.assigned_exercises(PATIENT),
            {
                "exercise_id": EXERCISE,
                "exercise_name": "Knee Extension",
                "patient_id": PATIENT,
                "assigned_by": "physio-1",
                "assigned_at": assigned_at,
                "target_angle_min": 45,
                "target_angle_max": 90,
                "target_reps": target_reps,
                "target_duration": 300,
                "status": status,
            },
        )

    def _measure(self, angle, exercise_id=EXERCISE):
        self.clock += 100
        reading = ParsedReading(angle=angle, roll=0, pitch=0, yaw=0, raw=f"Angle: {angle} Roll: 0 Pitch: 0 Yaw: 0")
        return create_measurement(self.store, PATIENT, reading, exercise_id=exercise_id, timestamp=self.clock)

    def _feed(self, angles):
        outcomes = []
        for angle in angles:
            outcomes.append(update_progress(self.store, self._measure(angle), self.cfg))
        return outcomes

    def _sessions(self):
        return self.store.query(paths.progress_sessions(PATIENT))

    def _assignment(self):
        return self.store.get(paths.assigned_exercises(PATIENT), self.assignment_id)

    def test_counts_entries_into_target_band(self):
        # 50 enters from 30, 60 enters from 95, 70 enters from 40.
        outcomes = self._feed([30, 50, 95, 60, 40, 70])

        self.assertEqual([o.rep_counted for o in outcomes], [False, True, False, True, False, True])
        (session,) = self._sessions()
        self.assertEqual(session["reps_completed"], 3)
        self.assertEqual(session["min_angle"], 30)
        self.assertEqual(session["max_angle"], 95)
        self.assertEqual(len(session["reading_ids"]), 6)

    def test_staying_inside_band_counts_once(self):
        self._feed([30, 50, 60, 70, 80])
        (session,) = self._sessions()
        self.assertEqual(session["reps_completed"], 1)

    def test_first_measurement_opens_session_without_rep(self):
        outcome = update_progress(self.store, self._measure(60), self.cfg)

        self.assertEqual(outcome.status, "updated")
        self.assertFalse(outcome.rep_counted)
        (session,) = self._sessions()
        self.assertEqual(session["status"], "active")
        self.assertEqual(session["assigned_exercise_id"], self.assignment_id)
        self.assertEqual(session["reps_completed"], 0)
        self.assertEqual(session["min_angle"], 60)
        self.assertEqual(session["average_angle"], 60)

    def test_completion_fires_once_at_target(self):
        self.store.update(paths.assigned_exercises(PATIENT), self.assignment_id, {"target_reps": 2})

        outcomes = self._feed([30, 50, 20, 60])
        self.assertEqual(outcomes[-1].status, "completed")
        (session,) = self._sessions()
        self.assertEqual(session["status"], "completed")
        self.assertEqual(session["reps_completed"], 2)
        self.assertEqual(session["session_end_time"], self.clock)
        self.assertIsNotNone(session["completed_at"])
        assignment = self._assignment()
        self.assertEqual(assignment["status"], "completed")
        completed_at = assignment["completed_at"]

        # Further movement neither counts nor re-completes.
        later = self._feed([20, 70])
        self.assertEqual([o.status for o in later], ["no_assignment", "no_assignment"])
        (session,) = self._sessions()
        self.assertEqual(session["reps_completed"], 2)
        self.assertEqual(self._assignment()["completed_at"], completed_at)

    def test_rolling_average_uses_last_ten(self):
        angles = [float(a) for a in range(10, 160, 10)]  # 15 values
        self._feed(angles)
        (session,) = self._sessions()
        self.assertAlmostEqual(session["average_angle"], sum(angles[-10:]) / 10)

    def test_rolling_window_reads_only_window_readings(self):
        self._feed([float(a) for a in range(10, 160, 10)])
        measurement = self._measure(50)

        scanned = []
        load_collection = self.store._load_collection

        def tracking(path):
            scanned.append(path)
            return load_collection(path)

        with mock.patch.object(self.store, "_load_collection", side_effect=tracking):
            outcome = update_progress(self.store, measurement, self.cfg)

        self.assertEqual(outcome.status, "updated")
        self.assertNotIn(paths.readings(PATIENT), scanned)

    def test_redelivery_does_not_double_count(self):
        self._feed([30])
        measurement = self._measure(60)
        first = update_progress(self.store, measurement, self.cfg)
        second = update_progress(self.store, measurement, self.cfg)

        self.assertTrue(first.rep_counted)
        self.assertEqual(second.status, "duplicate")
        (session,) = self._sessions()
        self.assertEqual(session["reps_completed"], 1)
        self.assertEqual(session["reading_ids"].count(measurement.id), 1)

    def test_passive_measurement_is_skipped(self):
        outcome = update_progress(self.store, self._measure(60, exercise_id=None), self.cfg)
        self.assertEqual(outcome.status, "skipped")
        self.assertEqual(self._sessions(), [])

    def test_unknown_exercise_is_a_noop(self):
        outcome = update_progress(self.store, self._measure(60, exercise_id="other"), self.cfg)
        self.assertEqual(outcome.status, "no_assignment")
        self.assertTrue(outcome.success)
        self.assertEqual(self._sessions(), [])

    def test_uses_most_recent_active_assignment(self):
        newer = self._assign(target_reps=5, status="in_progress", assigned_at=50)
        self._feed([60])
        (session,) = self._sessions()
        self.assertEqual(session["assigned_exercise_id"], newer)

    def test_reuses_session_opened_by_start(self):
        session_id = self.store.create(
            paths.progress_sessions(PATIENT),
            {
                "patient_id": PATIENT,
                "exercise_id": EXERCISE,
                "assigned_exercise_id": self.assignment_id,
                "session_start_time": 0,
                "reps_completed": 0,
                "status": "active",
                "reading_ids": [],
            },
        )
        self._feed([30, 60])
        (session,) = self._sessions()
        self.assertEqual(session["id"], session_id)
        self.assertEqual(session["reps_completed"], 1)
        self.assertEqual(session["min_angle"], 30)

    def test_index_fallback_when_ordered_lookup_is_rejected(self):
        self.store.enforce_indexes = True
        self._feed([30, 60])
        (session,) = self._sessions()
        self.assertEqual(session["reps_completed"], 1)

    def test_store_failure_is_reported_not_raised(self):
        measurement = self._measure(60)
        with mock.patch.object(self.store, "update", side_effect=RuntimeError("backend down")):
            outcome = update_progress(self.store, measurement, self.cfg)
        self.assertEqual(outcome.status, "failed")
        self.assertFalse(outcome.success)
        self.assertIn("backend down", outcome.error)
        # The measurement itself is untouched.
        self.assertEqual(self.store.get(paths.readings(PATIENT), measurement.id)["angle"], 60)


if __name__ == "__main__":
    unittest.main()
