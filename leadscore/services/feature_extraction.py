"""
Feature extraction: LeadProfile + interactions -> fixed-length feature vector.

The scoring engine and the training pipeline only depend on the
FeatureExtractor interface, so a different extractor can be plugged in at
integration time. DefaultFeatureExtractor produces the documented 14-feature
vector below. The order is part of the model contract: a model trained on
one order must never be served vectors in another.

Feature order (FEATURE_NAMES):
    0  leadAgeDays              days since the lead was created
    1  hasEmail                 1.0 if an email address is on file
    2  hasPhone                 1.0 if a phone number is on file
    3  nameLength               characters in first + last name
    4  profileCompleteness      share of core profile fields filled (0-1)
    5  totalInteractions        all interactions
    6  emailInteractions        interactions whose type mentions "email"
    7  phoneInteractions        ... "phone" or "call"
    8  meetingInteractions      ... "meeting" or "showing"
    9  websiteInteractions      ... "website" or "visit"
    10 interactionFrequency     interactions per day of lead age
    11 daysSinceLastInteraction days since the most recent interaction
                                (lead age when there are none)
    12 avgBudget                midpoint of budgetMin/budgetMax
    13 propertyCount            properties the lead has saved

Usage:
    extractor = DefaultFeatureExtractor()
    vector = extractor.extract(profile, interactions)
    named = extractor.as_dict(vector)
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from leadscore.models.schemas import Interaction, LeadProfile


FEATURE_NAMES: List[str] = [
    "leadAgeDays",
    "hasEmail",
    "hasPhone",
    "nameLength",
    "profileCompleteness",
    "totalInteractions",
    "emailInteractions",
    "phoneInteractions",
    "meetingInteractions",
    "websiteInteractions",
    "interactionFrequency",
    "daysSinceLastInteraction",
    "avgBudget",
    "propertyCount",
]

_INTERACTION_GROUPS: Dict[str, tuple] = {
    "emailInteractions": ("email",),
    "phoneInteractions": ("phone", "call"),
    "meetingInteractions": ("meeting", "showing"),
    "websiteInteractions": ("website", "visit"),
}

_SECONDS_PER_DAY = 86400.0


class FeatureExtractor(ABC):
    """Maps a lead snapshot to a fixed-length numeric vector."""

    @property
    @abstractmethod
    def feature_names(self) -> List[str]:
        """Ordered names of the vector components."""

    @abstractmethod
    def extract(
        self,
        profile: LeadProfile,
        interactions: Sequence[Interaction] = (),
    ) -> np.ndarray:
        """Return a 1-D float vector of len(feature_names)."""

    def as_dict(self, vector: np.ndarray) -> Dict[str, float]:
        return {name: float(value) for name, value in zip(self.feature_names, vector)}


class DefaultFeatureExtractor(FeatureExtractor):
    """
    Profile and engagement features for real-estate leads.

    Args:
        clock: Returns the current UTC time. Injected so tests can pin
            lead age and recency.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def feature_names(self) -> List[str]:
        return list(FEATURE_NAMES)

    def extract(
        self,
        profile: LeadProfile,
        interactions: Sequence[Interaction] = (),
    ) -> np.ndarray:
        now = self._clock()

        lead_age = _days_between(profile.createdAt, now) if profile.createdAt else 0.0

        name_length = len((profile.firstName or "") + (profile.lastName or ""))
        core_fields = [profile.firstName, profile.lastName, profile.email, profile.phone,
                       profile.budgetMin, profile.budgetMax]
        completeness = sum(1 for f in core_fields if f not in (None, "")) / len(core_fields)

        counts = {name: 0 for name in _INTERACTION_GROUPS}
        for interaction in interactions:
            kind = interaction.type.lower()
            for name, kinds in _INTERACTION_GROUPS.items():
                if any(keyword in kind for keyword in kinds):
                    counts[name] += 1
                    break

        total = len(interactions)
        frequency = total / max(lead_age, 1.0)

        if interactions:
            latest = max(i.occurredAt for i in interactions)
            since_last = _days_between(latest, now)
        else:
            since_last = lead_age

        budgets = [b for b in (profile.budgetMin, profile.budgetMax) if b is not None]
        avg_budget = float(np.mean(budgets)) if budgets else 0.0

        return np.array(
            [
                lead_age,
                1.0 if profile.email else 0.0,
                1.0 if profile.phone else 0.0,
                float(name_length),
                completeness,
                float(total),
                float(counts["emailInteractions"]),
                float(counts["phoneInteractions"]),
                float(counts["meetingInteractions"]),
                float(counts["websiteInteractions"]),
                frequency,
                since_last,
                avg_budget,
                float(profile.propertyCount),
            ],
            dtype=float,
        )


def _days_between(start: datetime, end: datetime) -> float:
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return max((end - start).total_seconds() / _SECONDS_PER_DAY, 0.0)
