from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from store.models import TriageLevel


class AnalysisResponse(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    is_relevant: bool
    urgency: TriageLevel
    risk_score: int
    reasoning: str
    recommended_action: str
    location_detected: str | None = None


FALLBACK_ANALYSIS = AnalysisResponse(
    is_relevant=True,
    urgency=TriageLevel.YELLOW,
    risk_score=50,
    reasoning="Classifier signal degraded. Severity estimated.",
    recommended_action="Field assessment required.",
    location_detected=None,
)


TRIAGE_SCHEMA: dict = {
    "type": "OBJECT",
    "properties": {
        "is_relevant": {
            "type": "BOOLEAN",
            "description": "Is this a real physical emergency or disaster event?",
        },
        "urgency": {
            "type": "STRING",
            "enum": [level.value for level in TriageLevel],
        },
        "risk_score": {
            "type": "INTEGER",
            "description": "0-100 score of the threat severity.",
        },
        "reasoning": {
            "type": "STRING",
            "description": "Technical reasoning for the triage decision.",
        },
        "recommended_action": {
            "type": "STRING",
            "description": "Immediate directive for responders.",
        },
        "location_detected": {"type": "STRING", "nullable": True},
    },
    "required": [
        "is_relevant",
        "urgency",
        "risk_score",
        "reasoning",
        "recommended_action",
    ],
}
