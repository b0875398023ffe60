from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from database import paths
from database.queries import query_ordered
from database.store import DocumentStore, OrderBy
from schemas.readings import Measurement, ParsedReading

if TYPE_CHECKING:
    from services.dispatch_service import MeasurementDispatcher

logger = logging.getLogger(__name__)

LATEST_READINGS_LIMIT = 50


def now_ms() -> int:
    return int(time.time() * 1000)


def create_measurement(
    store: DocumentStore,
    patient_id: str,
    reading: ParsedReading,
    exercise_id: str | None = None,
    device: str | None = None,
    timestamp: int | None = None,
) -> Measurement:
    data = {
        "patient_id": patient_id,
        "timestamp": timestamp if timestamp is not None else now_ms(),
        "angle": reading.angle,
        "roll": reading.roll,
        "pitch": reading.pitch,
        "yaw": reading.yaw,
        "raw": reading.raw,
        "device": device,
        "exercise_id": exercise_id or None,
        "forwarded": False,
    }
    reading_id = store.create(paths.readings(patient_id), data)
    return Measurement(id=reading_id, **data)


def get_measurement(store: DocumentStore, patient_id: str, reading_id: str) -> Measurement | None:
    doc = store.get(paths.readings(patient_id), reading_id)
    return Measurement.model_validate(doc) if doc else None


def latest_measurements(store: DocumentStore, patient_id: str, limit: int = LATEST_READINGS_LIMIT) -> list[Measurement]:
    docs = query_ordered(store, paths.readings(patient_id), [], OrderBy("timestamp", descending=True), limit)
    return [Measurement.model_validate(d) for d in docs]


class MeasurementRecorder:
    """Stores a measurement, then hands it to the dispatcher for progress and forwarding."""

    def __init__(self, store: DocumentStore, dispatcher: MeasurementDispatcher):
        self.store = store
        self.dispatcher = dispatcher

    async def record(
        self,
        patient_id: str,
        reading: ParsedReading,
        exercise_id: str | None = None,
        device: str | None = None,
        timestamp: int | None = None,
    ) -> Measurement:
        measurement = await asyncio.to_thread(
            create_measurement, self.store, patient_id, reading, exercise_id, device, timestamp
        )
        logger.debug("Saved reading %s for patient %s", measurement.id, patient_id)
        self.dispatcher.dispatch(measurement)
        return measurement
