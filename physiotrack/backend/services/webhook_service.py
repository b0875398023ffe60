from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import requests

from core.config import Settings, settings
from database import paths
from database.store import DocumentStore
from schemas.readings import Measurement
from schemas.webhook import ArduinoData, ExerciseIdResponse, ReadingWebhookPayload, parse_recommendations
from services.http_client import post_json, response_body
from services.recommendation_service import save_recommendations

logger = logging.getLogger(__name__)


@dataclass
class DeliveryOutcome:
    forwarded: bool
    status_code: int
    response: str
    annotated: bool = True


def iso_timestamp(epoch_ms: int) -> str:
    dt = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_reading_payload(measurement: Measurement, source: str) -> dict[str, Any]:
    payload = ReadingWebhookPayload(
        timestamp=iso_timestamp(measurement.timestamp),
        arduino_data=ArduinoData(
            knee_angle=measurement.angle,
            roll=measurement.roll,
            pitch=measurement.pitch,
            yaw=measurement.yaw,
            recording_status="active" if measurement.exercise_id else "passive",
        ),
        source=source,
        patientId=measurement.patient_id,
        exerciseId=measurement.exercise_id or None,
        readingId=measurement.id,
    )
    return payload.model_dump()


def _store_response_recommendations(store: DocumentStore, patient_id: str, body_text: str) -> None:
    try:
        body = json.loads(body_text)
    except ValueError:
        return
    recs = parse_recommendations(body)
    if recs:
        save_recommendations(store, patient_id, recs)


def forward_measurement(
    store: DocumentStore,
    measurement: Measurement,
    cfg: Settings = settings,
    http: requests.Session | None = None,
) -> DeliveryOutcome:
    """
    POST one measurement to the automation webhook and record the result on
    the measurement. One attempt only; failures are recorded, not retried.
    """
    payload = build_reading_payload(measurement, cfg.webhook_source)
    try:
        response = post_json(cfg.webhook_url, payload, cfg, http)
        outcome = DeliveryOutcome(forwarded=response.ok, status_code=response.status_code, response=response.text)
        if response.ok:
            logger.info("Sent reading %s to webhook", measurement.id)
        else:
            logger.warning("Webhook rejected reading %s with status %s", measurement.id, response.status_code)
    except requests.RequestException as exc:
        logger.error("Error sending reading %s to webhook: %s", measurement.id, exc)
        outcome = DeliveryOutcome(forwarded=False, status_code=0, response=str(exc) or exc.__class__.__name__)

    try:
        store.update(
            paths.readings(measurement.patient_id),
            measurement.id,
            {
                "forwarded": outcome.forwarded,
                "webhook_response": outcome.response,
                "webhook_status_code": outcome.status_code,
            },
        )
    except Exception:
        logger.exception("Could not record webhook outcome on reading %s", measurement.id)
        outcome.annotated = False

    if outcome.forwarded:
        try:
            _store_response_recommendations(store, measurement.patient_id, outcome.response)
        except Exception:
            logger.exception("Could not store recommendations for patient %s", measurement.patient_id)

    return outcome


def request_exercise_id(patient_id: str, cfg: Settings = settings, http: requests.Session | None = None) -> str | None:
    """Ask the automation workflow for an exercise id to record under. Raises on transport errors."""
    response = post_json(cfg.webhook_url, {"patientId": patient_id}, cfg, http)
    body = response_body(response)
    if not isinstance(body, dict):
        return None
    return ExerciseIdResponse.model_validate(body).exerciseId


def relay(url: str, body: Any, cfg: Settings = settings, http: requests.Session | None = None) -> tuple[int, Any]:
    """Forward an arbitrary JSON body and hand back the webhook's status and body unchanged."""
    response = post_json(url, body, cfg, http)
    return response.status_code, response_body(response)
