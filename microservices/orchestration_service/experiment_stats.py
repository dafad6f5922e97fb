"""
Experiment Statistics

Two-proportion z-test helpers and a simplified power analysis. These are
triage-level statistics for campaign content decisions.
"""

import logging
import math
from typing import Optional

from scipy import stats

logger = logging.getLogger(__name__)


def proportion(successes: int, trials: int) -> float:
    return successes / trials if trials > 0 else 0.0


def two_proportion_z_score(
    control_successes: int,
    control_trials: int,
    variant_successes: int,
    variant_trials: int,
) -> float:
    """Pooled two-proportion z-score of variant vs control; 0 when undefined"""
    total_trials = control_trials + variant_trials
    if control_trials <= 0 or variant_trials <= 0:
        return 0.0

    pooled = (control_successes + variant_successes) / total_trials
    variance = pooled * (1 - pooled) * (1 / control_trials + 1 / variant_trials)
    if variance <= 0:
        return 0.0

    control_rate = control_successes / control_trials
    variant_rate = variant_successes / variant_trials
    return (variant_rate - control_rate) / math.sqrt(variance)


def two_tailed_p_value(z_score: float) -> float:
    """P(|Z| >= |z|) from the normal survival function"""
    return min(1.0, 2 * float(stats.norm.sf(abs(z_score))))


def z_for_confidence(confidence_level: float) -> float:
    return float(stats.norm.ppf(1 - (1 - confidence_level) / 2))


def z_for_power(power: float) -> float:
    return float(stats.norm.ppf(power))


def required_sample_size(
    baseline_rate: float,
    effect_size: float,
    confidence_level: float = 0.95,
    power: float = 0.80,
) -> int:
    """
    Per-variant sample size for detecting an absolute effect.

    n = ceil(2 * (z_alpha + z_beta)^2 * p * (1 - p) / d^2)
    """
    z_alpha = z_for_confidence(confidence_level)
    z_beta = z_for_power(power)
    numerator = 2 * (z_alpha + z_beta) ** 2 * baseline_rate * (1 - baseline_rate)
    return math.ceil(numerator / effect_size ** 2)


def chi_square_statistic(
    control_successes: int,
    control_trials: int,
    variant_successes: int,
    variant_trials: int,
) -> Optional[float]:
    """Chi-square statistic of the 2x2 contingency table, None when undefined"""
    observed = [
        [variant_successes, max(variant_trials - variant_successes, 0)],
        [control_successes, max(control_trials - control_successes, 0)],
    ]
    row_totals = [sum(row) for row in observed]
    column_totals = [sum(column) for column in zip(*observed)]
    if 0 in row_totals or 0 in column_totals:
        logger.debug(f"Chi-square not computable for table {observed}")
        return None

    try:
        chi2, _, _, _ = stats.chi2_contingency(observed)
    except ValueError as e:
        logger.debug(f"Chi-square not computable: {e}")
        return None
    if math.isnan(chi2):
        return None
    return float(chi2)


__all__ = [
    "proportion",
    "two_proportion_z_score",
    "two_tailed_p_value",
    "z_for_confidence",
    "z_for_power",
    "required_sample_size",
    "chi_square_statistic",
]
