from __future__ import annotations

import logging

import requests

from core.config import Settings, settings
from core.errors import WebhookError
from database import paths
from database.queries import query_ordered
from database.store import DocumentStore, OrderBy
from schemas.webhook import (
    Recommendation,
    RecommendationRequest,
    RecentReading,
    StoredRecommendations,
    parse_recommendations,
)
from services.http_client import post_json, response_body
from services.measurement_service import now_ms

logger = logging.getLogger(__name__)

RECENT_READINGS_SENT = 10


def save_recommendations(store: DocumentStore, patient_id: str, recs: list[Recommendation]) -> str:
    return store.create(
        paths.recommendations(patient_id),
        {"timestamp": now_ms(), "recommendations": [r.model_dump() for r in recs]},
    )


def list_recommendations(store: DocumentStore, patient_id: str, limit: int = 20) -> list[Recommendation]:
    docs = query_ordered(store, paths.recommendations(patient_id), [], OrderBy("timestamp", descending=True), limit)
    seen: set[tuple[str, str, str, str]] = set()
    result: list[Recommendation] = []
    for doc in docs:
        for rec in StoredRecommendations.model_validate(doc).recommendations:
            key = rec.dedupe_key()
            if key in seen:
                continue
            seen.add(key)
            result.append(rec)
    return result


def build_recommendation_request(store: DocumentStore, patient_id: str, cfg: Settings = settings) -> RecommendationRequest:
    recent = query_ordered(
        store,
        paths.readings(patient_id),
        [],
        OrderBy("timestamp", descending=True),
        cfg.recommendation_history_size,
    )
    return RecommendationRequest(
        patientId=patient_id,
        recentReadings=[
            RecentReading(
                angle=float(r.get("angle") or 0),
                timestamp=int(r.get("timestamp") or now_ms()),
                exerciseId=r.get("exercise_id") or "",
            )
            for r in recent[:RECENT_READINGS_SENT]
        ],
    )


def request_recommendations(
    store: DocumentStore,
    patient_id: str,
    cfg: Settings = settings,
    http: requests.Session | None = None,
) -> list[Recommendation]:
    """Send the patient's recent readings to the workflow and parse the suggestions it returns."""
    payload = build_recommendation_request(store, patient_id, cfg)
    try:
        response = post_json(cfg.webhook_test_url, payload.model_dump(), cfg, http)
    except requests.RequestException as exc:
        raise WebhookError(f"Failed to reach webhook: {exc}") from exc
    if not response.ok:
        raise WebhookError(f"Webhook returned status {response.status_code}", status_code=response.status_code)

    recs = parse_recommendations(response_body(response))
    logger.info("Parsed %d recommendations for patient %s", len(recs), patient_id)
    return recs
