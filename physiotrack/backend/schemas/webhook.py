"""
Wire formats of the automation webhook.

Outgoing payloads mirror what the webhook workflow expects (camelCase keys).
Incoming recommendation bodies are parsed against ``Recommendation`` and
normalised by ``parse_recommendations``; anything the workflow renames or
nests differently is handled there and nowhere else.
"""

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

RECOMMENDATION_SCHEMA_VERSION = 1


class ArduinoData(BaseModel):
    knee_angle: float
    roll: float
    pitch: float
    yaw: float
    recording_status: Literal["active", "passive"]


class ReadingWebhookPayload(BaseModel):
    timestamp: str  # ISO-8601
    arduino_data: ArduinoData
    source: str
    patientId: str
    exerciseId: str | None
    readingId: str


class RecentReading(BaseModel):
    angle: float
    timestamp: int
    exerciseId: str


class RecommendationRequest(BaseModel):
    patientId: str
    recentReadings: list[RecentReading]
    requestType: Literal["recommendations"] = "recommendations"


class Recommendation(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    schema_version: int = RECOMMENDATION_SCHEMA_VERSION
    feedback: str = Field("", validation_alias=AliasChoices("feedback", "Feedback"))
    recommended_exercise: str = Field(
        "", validation_alias=AliasChoices("recommendedExercise", "RecommendedExercise", "exercise")
    )
    rationale: str = Field("", validation_alias=AliasChoices("rationale", "Rationale"))
    additional_advice: str = Field(
        "", validation_alias=AliasChoices("additionalAdvice", "AdditionalAdvice", "advice")
    )
    confidence: float = Field(0.8, validation_alias=AliasChoices("confidence", "Confidence"))

    def dedupe_key(self) -> tuple[str, str, str, str]:
        return (self.recommended_exercise, self.feedback, self.rationale, self.additional_advice)


class StoredRecommendations(BaseModel):
    id: str
    timestamp: int
    recommendations: list[Recommendation]


class RecommendationsResponse(BaseModel):
    patient_id: str
    recommendations: list[Recommendation]


def _looks_like_recommendation(item: dict[str, Any]) -> bool:
    return any(k in item for k in ("feedback", "Feedback", "recommendedExercise", "RecommendedExercise"))


def _to_recommendation(raw: Any) -> Recommendation | None:
    if not isinstance(raw, dict):
        return None
    cleaned = {k: v for k, v in raw.items() if v not in (None, "")}
    try:
        return Recommendation.model_validate(cleaned)
    except ValidationError:
        return None


def parse_recommendations(body: Any) -> list[Recommendation]:
    """
    Accepts the shapes the workflow has been seen to return: a list of items
    each holding a ``recommendations`` list or being a recommendation, an
    object with a ``recommendations`` list, or a single recommendation object.
    Unrecognised input yields an empty list.
    """
    items: list[Any]
    if isinstance(body, list):
        items = body
    elif isinstance(body, dict):
        items = [body]
    else:
        return []

    recs: list[Recommendation] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        nested = item.get("recommendations")
        if isinstance(nested, list):
            candidates = nested
        elif _looks_like_recommendation(item):
            candidates = [item]
        else:
            continue
        for candidate in candidates:
            rec = _to_recommendation(candidate)
            if rec is not None:
                recs.append(rec)
    return recs


class ExerciseIdResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    exerciseId: str | None = None
