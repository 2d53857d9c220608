"""
Score insights: top factors, risk level and recommendations.

Every Score carries a small, human-readable explanation for CRM users. The
rules are intentionally simple and deterministic:

Risk level (by predicted conversion probability):
    > 0.8  -> High
    > 0.6  -> Medium
    else   -> Low

Top factors are the (at most three) features with the largest weighted,
normalized contribution, rendered as short phrases.
"""

from typing import Callable, Dict, List

from leadscore.models.enums import RiskLevel
from leadscore.models.schemas import ScoreInsights


HIGH_RISK_THRESHOLD: float = 0.8
MEDIUM_RISK_THRESHOLD: float = 0.6
MAX_TOP_FACTORS: int = 3

# Domain weights used to rank factors; negative means "less is better".
FACTOR_WEIGHTS: Dict[str, float] = {
    "totalInteractions": 0.25,
    "emailInteractions": 0.15,
    "phoneInteractions": 0.20,
    "meetingInteractions": 0.25,
    "websiteInteractions": 0.10,
    "interactionFrequency": 0.20,
    "daysSinceLastInteraction": -0.15,
    "avgBudget": 0.20,
    "propertyCount": 0.15,
    "leadAgeDays": 0.10,
    "profileCompleteness": 0.15,
    "hasEmail": 0.10,
    "hasPhone": 0.10,
}

_NORMALIZERS: Dict[str, Callable[[float], float]] = {
    "totalInteractions": lambda v: min(v / 50.0, 1.0),
    "emailInteractions": lambda v: min(v / 20.0, 1.0),
    "phoneInteractions": lambda v: min(v / 10.0, 1.0),
    "meetingInteractions": lambda v: min(v / 5.0, 1.0),
    "websiteInteractions": lambda v: min(v / 20.0, 1.0),
    "interactionFrequency": lambda v: min(v, 1.0),
    "daysSinceLastInteraction": lambda v: min(v / 90.0, 1.0),
    "avgBudget": lambda v: min(v / 1_000_000.0, 1.0),
    "propertyCount": lambda v: min(v / 10.0, 1.0),
    "leadAgeDays": lambda v: min(v / 365.0, 1.0),
}

_FACTOR_LABELS: Dict[str, str] = {
    "totalInteractions": "High engagement",
    "emailInteractions": "Active email engagement",
    "phoneInteractions": "Direct phone contact",
    "meetingInteractions": "In-person meetings held",
    "websiteInteractions": "Frequent website visits",
    "interactionFrequency": "Frequent recent activity",
    "daysSinceLastInteraction": "Long time since last contact",
    "avgBudget": "High budget",
    "propertyCount": "Many saved properties",
    "leadAgeDays": "Established relationship",
    "profileCompleteness": "Complete profile",
    "hasEmail": "Email on file",
    "hasPhone": "Phone on file",
}


def risk_level_for(value: float) -> RiskLevel:
    if value > HIGH_RISK_THRESHOLD:
        return RiskLevel.HIGH
    if value > MEDIUM_RISK_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def top_factors(features: Dict[str, float], limit: int = MAX_TOP_FACTORS) -> List[str]:
    """Rank features by |weight * normalized value| and label the strongest."""
    impacts = []
    for name, value in features.items():
        weight = FACTOR_WEIGHTS.get(name)
        if weight is None:
            continue
        normalized = _NORMALIZERS.get(name, lambda v: min(v, 1.0))(max(value, 0.0))
        impact = abs(weight * normalized)
        if impact > 0:
            impacts.append((impact, name))

    # Stable for equal impacts: sort by impact desc, then name
    impacts.sort(key=lambda item: (-item[0], item[1]))
    return [_FACTOR_LABELS.get(name, name) for _, name in impacts[:limit]]


def recommendations_for(value: float, features: Dict[str, float]) -> List[str]:
    if value > HIGH_RISK_THRESHOLD:
        recs = ["Prioritize this lead", "Schedule immediate follow-up"]
    elif value > MEDIUM_RISK_THRESHOLD:
        recs = ["Moderate priority", "Nurture with targeted content"]
    else:
        recs = ["Low priority", "Add to drip campaign"]

    if features.get("daysSinceLastInteraction", 0.0) > 30:
        recs.append("Re-engage: no contact in over 30 days")
    if features.get("totalInteractions", 0.0) < 3:
        recs.append("Limited interaction history: schedule a discovery call")
    return recs


def build_insights(value: float, features: Dict[str, float]) -> ScoreInsights:
    return ScoreInsights(
        topFactors=top_factors(features),
        riskLevel=risk_level_for(value),
        recommendations=recommendations_for(value, features),
    )
