"""
Automatic winner selection for A/B tests.

Turns statistical output into one deterministic decision. Rules are evaluated
in order and the first match wins:

1. implement_winner  - significant AND confidence >= minimumConfidence AND
                       total sample >= minimumSampleSize AND
                       |effect size| >= minimumEffectSize AND
                       duration <= maximumTestDuration
2. continue_testing  - total sample < minimumSampleSize OR power < 0.80
3. stop_test         - duration >= maximumTestDuration, or not_significant
                       with power >= 0.80 and sample >= minimumSampleSize
4. no_clear_winner   - anything else

Success criteria come from a risk profile, chosen from the test's target
metric unless overridden explicitly:

    profile        minConfidence  minSample  minEffect  maxDuration
    conservative   0.99           10000      10%        30 days
    moderate       0.95           5000       5%         14 days
    aggressive     0.90           2000       2%         7 days

    conversion_rate -> conservative
    response_rate   -> moderate
    click_rate, open_rate -> aggressive
"""

import logging
from typing import Dict, List, Optional

from leadscore.models.enums import (
    RiskLevel,
    RiskProfile,
    SignificanceOutcome,
    TargetMetric,
    Variant,
    WinnerDecision,
)
from leadscore.models.schemas import (
    RiskAssessment,
    SignificanceResult,
    SuccessCriteria,
    WinnerRecommendation,
)
from leadscore.services.statistics import TARGET_POWER, two_proportion_test


logger = logging.getLogger(__name__)


RISK_PRESETS: Dict[RiskProfile, SuccessCriteria] = {
    RiskProfile.CONSERVATIVE: SuccessCriteria(
        riskProfile=RiskProfile.CONSERVATIVE,
        minimumConfidence=0.99,
        minimumSampleSize=10_000,
        minimumEffectSize=0.10,
        maximumTestDurationDays=30,
    ),
    RiskProfile.MODERATE: SuccessCriteria(
        riskProfile=RiskProfile.MODERATE,
        minimumConfidence=0.95,
        minimumSampleSize=5_000,
        minimumEffectSize=0.05,
        maximumTestDurationDays=14,
    ),
    RiskProfile.AGGRESSIVE: SuccessCriteria(
        riskProfile=RiskProfile.AGGRESSIVE,
        minimumConfidence=0.90,
        minimumSampleSize=2_000,
        minimumEffectSize=0.02,
        maximumTestDurationDays=7,
    ),
}

METRIC_PROFILES: Dict[TargetMetric, RiskProfile] = {
    TargetMetric.CONVERSION_RATE: RiskProfile.CONSERVATIVE,
    TargetMetric.RESPONSE_RATE: RiskProfile.MODERATE,
    TargetMetric.CLICK_RATE: RiskProfile.AGGRESSIVE,
    TargetMetric.OPEN_RATE: RiskProfile.AGGRESSIVE,
}


def criteria_for(
    target_metric: TargetMetric = TargetMetric.CONVERSION_RATE,
    risk_profile: Optional[RiskProfile] = None,
) -> SuccessCriteria:
    profile = risk_profile or METRIC_PROFILES[TargetMetric(target_metric)]
    return RISK_PRESETS[RiskProfile(profile)]


def effect_size(stats: SignificanceResult) -> float:
    """Relative improvement, or the absolute difference against a zero baseline."""
    if stats.controlRate == 0:
        return stats.absoluteDifference
    return stats.relativeImprovement


def decide(
    stats: SignificanceResult,
    criteria: SuccessCriteria,
    duration_days: float,
) -> WinnerDecision:
    """Apply the ordered decision policy to one statistical result."""
    total = stats.totalSampleSize

    if (
        stats.outcome == SignificanceOutcome.SIGNIFICANT
        and stats.confidence >= criteria.minimumConfidence
        and total >= criteria.minimumSampleSize
        and abs(effect_size(stats)) >= criteria.minimumEffectSize
        and duration_days <= criteria.maximumTestDurationDays
    ):
        return WinnerDecision.IMPLEMENT_WINNER

    if total < criteria.minimumSampleSize or stats.power < TARGET_POWER:
        return WinnerDecision.CONTINUE_TESTING

    if duration_days >= criteria.maximumTestDurationDays or (
        stats.outcome == SignificanceOutcome.NOT_SIGNIFICANT
        and stats.power >= TARGET_POWER
        and total >= criteria.minimumSampleSize
    ):
        return WinnerDecision.STOP_TEST

    return WinnerDecision.NO_CLEAR_WINNER


def _improvement(stats: SignificanceResult) -> str:
    if stats.controlRate == 0:
        return f"Challenger converts at {stats.treatmentRate:.1%} against a zero champion baseline"
    return (
        f"Relative improvement {stats.relativeImprovement:+.1%} "
        f"({stats.absoluteDifference:+.4f} absolute)"
    )


def _reasoning(
    decision: WinnerDecision,
    stats: SignificanceResult,
    criteria: SuccessCriteria,
    duration_days: float,
) -> List[str]:
    total = stats.totalSampleSize
    if decision == WinnerDecision.IMPLEMENT_WINNER:
        reasons = [
            f"Statistical significance achieved with {stats.confidence:.1%} confidence",
            _improvement(stats),
            f"Sample size: {total} visitors",
            f"Effect size meets minimum threshold of {criteria.minimumEffectSize:.1%}",
        ]
        if stats.relativeImprovement < 0:
            reasons.append("Challenger performs worse than champion; keep the champion")
        return reasons

    if decision == WinnerDecision.CONTINUE_TESTING:
        reasons = []
        if total < criteria.minimumSampleSize:
            reasons.append(f"Insufficient sample size: {total} < {criteria.minimumSampleSize} required")
        if stats.power < TARGET_POWER:
            reasons.append(f"Low statistical power: {stats.power:.1%} < {TARGET_POWER:.0%} required")
        if stats.requiredSampleSize is not None:
            reasons.append(f"About {stats.requiredSampleSize} visitors per variant needed at the observed effect")
        reasons.append("Continue testing to gather more conclusive results")
        return reasons

    if decision == WinnerDecision.STOP_TEST:
        reasons = []
        if duration_days >= criteria.maximumTestDurationDays:
            reasons.append(f"Maximum test duration of {criteria.maximumTestDurationDays:g} days reached")
        if stats.outcome == SignificanceOutcome.NOT_SIGNIFICANT:
            reasons.append("No statistically significant difference detected with adequate power")
        reasons.append("Consider testing more distinct variations")
        return reasons

    return [
        "Results are inconclusive",
        f"Statistical significance: {stats.outcome.value} ({stats.confidence:.1%} confidence)",
        f"Effect size {effect_size(stats):+.1%} (threshold {criteria.minimumEffectSize:.1%})",
    ]


def _risk(decision: WinnerDecision, stats: SignificanceResult) -> RiskAssessment:
    false_positive = 1.0 - stats.confidence
    false_negative = 1.0 - stats.power
    factors = [
        f"False positive risk {false_positive:.1%}",
        f"False negative risk {false_negative:.1%}",
    ]

    if decision == WinnerDecision.IMPLEMENT_WINNER:
        level = RiskLevel.LOW if false_positive <= 0.01 else RiskLevel.MEDIUM
        factors.append("Winner shows a significant improvement over the alternative")
    elif decision == WinnerDecision.CONTINUE_TESTING:
        level = RiskLevel.MEDIUM
        factors.append("Delaying the decision may miss optimization opportunities")
    elif decision == WinnerDecision.STOP_TEST:
        level = RiskLevel.LOW
        factors.append("Stopping may miss a small real improvement")
    else:
        level = RiskLevel.HIGH
        factors.append("Inconclusive results increase decision uncertainty")

    return RiskAssessment(level=level, factors=factors)


_NEXT_STEPS: Dict[WinnerDecision, List[str]] = {
    WinnerDecision.IMPLEMENT_WINNER: [
        "Deploy the winning model",
        "Monitor conversion rate after deployment",
        "Update performance baselines",
    ],
    WinnerDecision.CONTINUE_TESTING: [
        "Keep the A/B test running",
        "Monitor performance trends",
        "Re-analyze after reaching the minimum sample size",
    ],
    WinnerDecision.STOP_TEST: [
        "Stop the A/B test and keep the champion",
        "Document results and learnings",
        "Train a more distinct challenger",
    ],
    WinnerDecision.NO_CLEAR_WINNER: [
        "Review test design and traffic split",
        "Analyze why results were inconclusive",
        "Consider a longer test or a more distinct challenger",
    ],
}


def select_winner(
    test_id: str,
    champion_conversions: int,
    champion_requests: int,
    challenger_conversions: int,
    challenger_requests: int,
    duration_days: float,
    target_metric: TargetMetric = TargetMetric.CONVERSION_RATE,
    risk_profile: Optional[RiskProfile] = None,
) -> WinnerRecommendation:
    """
    Produce an immutable recommendation for one A/B test snapshot.

    Example:
        >>> rec = select_winner("t1", 500, 5000, 650, 5000, 7,
        ...                     risk_profile=RiskProfile.MODERATE)
        >>> rec.decision.value, rec.winner.value
        ('implement_winner', 'challenger')
    """
    criteria = criteria_for(target_metric, risk_profile)
    stats = two_proportion_test(
        champion_conversions,
        champion_requests,
        challenger_conversions,
        challenger_requests,
        confidence_level=criteria.minimumConfidence,
    )
    decision = decide(stats, criteria, duration_days)

    winner: Optional[Variant] = None
    if decision == WinnerDecision.IMPLEMENT_WINNER:
        winner = Variant.CHALLENGER if stats.absoluteDifference > 0 else Variant.CHAMPION

    recommendation = WinnerRecommendation(
        testId=test_id,
        winner=winner,
        decision=decision,
        confidence=stats.confidence,
        relativeImprovement=stats.relativeImprovement,
        testDurationDays=duration_days,
        reasoning=_reasoning(decision, stats, criteria, duration_days),
        riskAssessment=_risk(decision, stats),
        nextSteps=list(_NEXT_STEPS[decision]),
        criteria=criteria,
        statistics=stats,
    )
    logger.info(
        f"Winner selection for test {test_id}: {decision.value}"
        + (f" ({winner.value})" if winner else "")
    )
    return recommendation
