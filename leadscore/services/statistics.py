"""
Statistical significance engine for champion/challenger experiments.

Implements the two-proportion z-test used to compare conversion rates, the
power and sample-size calculations that go with it, and the sequential
stopping rule evaluated as traffic accrues.

Algorithm Overview:
    Given (conversionsA, sentA) for the control (champion) and
    (conversionsB, sentB) for the treatment (challenger):

        pooled = (convA + convB) / (sentA + sentB)
        SE     = sqrt(pooled * (1 - pooled) * (1/sentA + 1/sentB))
        z      = |rateB - rateA| / SE
        p      = 2 * (1 - Phi(z))          (two-sided)
        confidence = 1 - p

    Phi is the standard normal CDF from scipy.stats. Power is evaluated at
    the observed effect with the unpooled standard error, and the required
    sample size (per group) is the classic formula for 80% power.

Underpowered results are never raised as errors: they are returned as data
and the winner selector turns them into a "continue_testing" decision.

Dependencies:
    - numpy: square roots and ceil
    - scipy.stats.norm: CDF, survival function and quantiles
"""

import logging
import math
from typing import Optional

import numpy as np
from scipy.stats import norm

from leadscore.core.errors import ValidationError
from leadscore.models.enums import SignificanceOutcome
from leadscore.models.schemas import SignificanceResult, StoppingDecision


logger = logging.getLogger(__name__)


DEFAULT_CONFIDENCE_LEVEL: float = 0.95
TARGET_POWER: float = 0.80

# Early stop for a clearly losing challenger
NEGATIVE_EFFECT_STOP: float = -0.05


def _validate_counts(conversions: int, sent: int, label: str) -> None:
    if sent < 0 or conversions < 0:
        raise ValidationError(f"{label}: counts must be non-negative")
    if conversions > sent:
        raise ValidationError(f"{label}: conversions ({conversions}) exceed sample size ({sent})")


def calculate_power(
    control_rate: float,
    treatment_rate: float,
    control_n: int,
    treatment_n: int,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
) -> float:
    """
    Power of a two-sided test to detect the observed difference.

    Returns 0.0 when either group is empty. With no variance at all the
    power is 1.0 for a non-zero difference and the significance level for a
    zero one.
    """
    if control_n <= 0 or treatment_n <= 0:
        return 0.0
    alpha = 1.0 - confidence_level
    delta = abs(treatment_rate - control_rate)
    sigma = math.sqrt(
        control_rate * (1 - control_rate) / control_n
        + treatment_rate * (1 - treatment_rate) / treatment_n
    )
    if sigma == 0:
        return 1.0 if delta > 0 else alpha
    z_crit = norm.ppf(1 - alpha / 2)
    return float(norm.cdf(delta / sigma - z_crit))


def required_sample_size(
    control_rate: float,
    treatment_rate: float,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
    power: float = TARGET_POWER,
) -> Optional[int]:
    """
    Sample size per group needed to detect the given difference.

    Returns None when the rates are equal (no finite sample detects a zero
    effect).
    """
    delta = abs(treatment_rate - control_rate)
    if delta == 0:
        return None
    z_alpha = norm.ppf(1 - (1 - confidence_level) / 2)
    z_beta = norm.ppf(power)
    p_bar = (control_rate + treatment_rate) / 2
    numerator = (
        z_alpha * math.sqrt(2 * p_bar * (1 - p_bar))
        + z_beta * math.sqrt(control_rate * (1 - control_rate) + treatment_rate * (1 - treatment_rate))
    ) ** 2
    return int(np.ceil(numerator / delta ** 2))


def two_proportion_test(
    control_conversions: int,
    control_n: int,
    treatment_conversions: int,
    treatment_n: int,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
) -> SignificanceResult:
    """
    Two-proportion z-test of treatment (challenger) against control (champion).

    Args:
        control_conversions: Conversions observed for the control.
        control_n: Requests routed to the control.
        treatment_conversions: Conversions observed for the treatment.
        treatment_n: Requests routed to the treatment.
        confidence_level: Level at which the result is called significant.

    Returns:
        SignificanceResult. ``outcome`` is insufficient_data when either
        group is empty, significant when p < 1 - confidence_level, and
        not_significant otherwise. ``relativeImprovement`` is undefined
        against a zero control rate and is reported as 0.0; callers judge
        effect size by ``absoluteDifference`` in that case.

    Raises:
        ValidationError: On negative counts, conversions above sample size,
            or a confidence level outside (0, 1).

    Example:
        >>> r = two_proportion_test(500, 5000, 650, 5000)
        >>> r.outcome.value, round(r.relativeImprovement, 2)
        ('significant', 0.3)
    """
    if not 0 < confidence_level < 1:
        raise ValidationError("confidence_level must be in (0, 1)")
    _validate_counts(control_conversions, control_n, "control")
    _validate_counts(treatment_conversions, treatment_n, "treatment")

    total = control_n + treatment_n
    if control_n == 0 or treatment_n == 0:
        return SignificanceResult(
            outcome=SignificanceOutcome.INSUFFICIENT_DATA,
            controlRate=control_conversions / control_n if control_n else 0.0,
            treatmentRate=treatment_conversions / treatment_n if treatment_n else 0.0,
            absoluteDifference=0.0,
            relativeImprovement=0.0,
            standardError=0.0,
            zScore=0.0,
            pValue=1.0,
            confidence=0.0,
            confidenceInterval=(0.0, 0.0),
            power=0.0,
            requiredSampleSize=None,
            totalSampleSize=total,
        )

    control_rate = control_conversions / control_n
    treatment_rate = treatment_conversions / treatment_n
    difference = treatment_rate - control_rate
    relative = difference / control_rate if control_rate > 0 else 0.0

    pooled = (control_conversions + treatment_conversions) / total
    se = math.sqrt(pooled * (1 - pooled) * (1 / control_n + 1 / treatment_n))
    if se > 0:
        z = abs(difference) / se
        p_value = float(2 * norm.sf(z))
    else:
        z = 0.0
        p_value = 1.0

    se_diff = math.sqrt(
        control_rate * (1 - control_rate) / control_n
        + treatment_rate * (1 - treatment_rate) / treatment_n
    )
    margin = float(norm.ppf((1 + confidence_level) / 2)) * se_diff

    outcome = (
        SignificanceOutcome.SIGNIFICANT
        if p_value < 1 - confidence_level
        else SignificanceOutcome.NOT_SIGNIFICANT
    )

    return SignificanceResult(
        outcome=outcome,
        controlRate=control_rate,
        treatmentRate=treatment_rate,
        absoluteDifference=difference,
        relativeImprovement=relative,
        standardError=se,
        zScore=z,
        pValue=p_value,
        confidence=1.0 - p_value,
        confidenceInterval=(difference - margin, difference + margin),
        power=calculate_power(control_rate, treatment_rate, control_n, treatment_n, confidence_level),
        requiredSampleSize=required_sample_size(control_rate, treatment_rate, confidence_level),
        totalSampleSize=total,
    )


def check_stopping_rule(
    result: SignificanceResult,
    total_visitors: int,
    last_checked_visitors: int,
    check_interval: int,
    minimum_sample_size: int,
) -> StoppingDecision:
    """
    Sequential stopping rule, re-evaluated every ``check_interval`` visitors.

    Never stops below ``minimum_sample_size`` regardless of observed rates.
    At or above it, stops on a significant result, calling out a clearly
    negative effect (relative improvement <= -5%) separately.
    """
    next_check = last_checked_visitors + check_interval
    if total_visitors < next_check:
        return StoppingDecision(
            checked=False,
            canStop=False,
            reason=f"Next check at {next_check} visitors",
            totalVisitors=total_visitors,
            nextCheckAt=next_check,
        )

    next_check = total_visitors + check_interval
    if total_visitors < minimum_sample_size:
        return StoppingDecision(
            checked=True,
            canStop=False,
            reason=f"Sample size {total_visitors} below minimum {minimum_sample_size}",
            totalVisitors=total_visitors,
            nextCheckAt=next_check,
        )

    if result.outcome == SignificanceOutcome.SIGNIFICANT:
        if result.relativeImprovement <= NEGATIVE_EFFECT_STOP:
            reason = (
                f"Challenger significantly worse ({result.relativeImprovement:.1%}) "
                f"with adequate sample"
            )
        else:
            reason = f"Significant at {result.confidence:.1%} confidence with adequate sample"
        return StoppingDecision(
            checked=True,
            canStop=True,
            reason=reason,
            totalVisitors=total_visitors,
            nextCheckAt=next_check,
        )

    return StoppingDecision(
        checked=True,
        canStop=False,
        reason=f"Not yet significant ({result.confidence:.1%} confidence)",
        totalVisitors=total_visitors,
        nextCheckAt=next_check,
    )
