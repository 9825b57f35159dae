"""Results analysis for experiments.

Everything here is computed from scratch out of the assignment and event rows
it is given: no caching, no incremental state. Reading every row of an
experiment on each request is fine for interactive use at moderate volumes;
larger experiments need pre-aggregated counts, which this module does not do.

Degenerate inputs (no samples, zero variance, pooled rate of exactly 0 or 1)
produce zero intervals and zero significance instead of raising or NaN.
Conversions are counted per event, so a visitor converting twice can push
the raw rate above 1; intervals and tests treat such a rate as 1.
"""
import math
from collections import Counter, defaultdict
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from scipy.stats import norm

from splitlab.models.event import CONVERSION_EVENT
from splitlab.schemas.experiment import ExperimentRead, Metrics
from splitlab.schemas.results import ExperimentResults, VariantResults

# Conventional two-sided critical values; other levels use the normal quantile
Z_SCORES = {
    0.9: 1.645,
    0.95: 1.96,
    0.99: 2.576,
}

SECONDS_PER_DAY = 86400


def z_score(confidence_level: float) -> float:
    """Two-sided critical value for a confidence level."""
    z = Z_SCORES.get(round(confidence_level, 4))
    if z is None:
        z = float(norm.ppf(1 - (1 - confidence_level) / 2))
    return z


def wilson_interval(
    successes: int,
    trials: int,
    confidence_level: float = 0.95
) -> Tuple[float, float]:
    """
    Wilson score interval for a binomial proportion.

    Args:
        successes: Number of conversions
        trials: Number of assigned visitors
        confidence_level: e.g. 0.90, 0.95, 0.99

    Returns:
        (lower, upper) clamped to [0, 1]; (0, 0) when there are no trials
    """
    if trials <= 0:
        return (0.0, 0.0)

    z = z_score(confidence_level)
    z2 = z * z
    # Repeat conversions can push successes above trials
    phat = min(1.0, max(0.0, successes / trials))
    denominator = 1 + z2 / trials

    center = (phat + z2 / (2 * trials)) / denominator
    radicand = max(0.0, phat * (1 - phat) / trials + z2 / (4 * trials * trials))
    margin = z * math.sqrt(radicand) / denominator

    return (max(0.0, center - margin), min(1.0, center + margin))


def two_proportion_significance(
    control_conversions: int,
    control_trials: int,
    variant_conversions: int,
    variant_trials: int
) -> float:
    """
    Significance of the difference between two conversion rates.

    Pooled-proportion two-sample z-test, two-tailed.

    Returns:
        1 - p-value, or 0.0 when either sample is empty or there is no variance
    """
    if control_trials <= 0 or variant_trials <= 0:
        return 0.0

    pooled = (control_conversions + variant_conversions) / (control_trials + variant_trials)
    if pooled <= 0 or pooled >= 1:
        return 0.0

    se = math.sqrt(pooled * (1 - pooled) * (1 / control_trials + 1 / variant_trials))
    if se == 0:
        return 0.0

    control_rate = min(1.0, control_conversions / control_trials)
    variant_rate = min(1.0, variant_conversions / variant_trials)
    z = abs(variant_rate - control_rate) / se
    p_value = 2 * float(norm.sf(z))

    return min(1.0, max(0.0, 1 - p_value))


def relative_change(rate: float, control_rate: float) -> float:
    """Percent change of a rate against the control rate (0 if control is 0)."""
    if control_rate == 0:
        return 0.0
    return (rate - control_rate) / control_rate * 100


def determine_winner(
    variants: List[VariantResults],
    confidence_level: float
) -> Optional[VariantResults]:
    """
    Pick the best significant improvement over control.

    Among non-control variants that beat the control rate with significance at
    or above the confidence level, the highest conversion rate wins. Ties go to
    the variant declared first.
    """
    control = next((v for v in variants if v.is_control), None)
    if control is None:
        return None

    winner = None
    for variant in variants:
        if variant.is_control:
            continue
        if variant.significance < confidence_level:
            continue
        if variant.conversion_rate <= control.conversion_rate:
            continue
        if winner is None or variant.conversion_rate > winner.conversion_rate:
            winner = variant

    return winner


def lead_variant(
    variants: List[VariantResults],
    winner: Optional[VariantResults]
) -> Optional[VariantResults]:
    """The winner, or failing that the best non-control variant above control."""
    if winner is not None:
        return winner

    control = next((v for v in variants if v.is_control), None)
    if control is None:
        return None

    lead = None
    for variant in variants:
        if variant.is_control or variant.conversion_rate <= control.conversion_rate:
            continue
        if lead is None or variant.conversion_rate > lead.conversion_rate:
            lead = variant
    return lead


def generate_recommendation(
    variants: List[VariantResults],
    lead: Optional[VariantResults],
    significance: float,
    metrics: Metrics
) -> str:
    """
    Plain-language next step. Checks run in order; the first match wins.

    1. nothing beats control
    2. the lead is not yet significant
    3. not enough samples overall
    4. the lift is below the minimum effect size
    5. ship the winner
    """
    if lead is None:
        control = next((v for v in variants if v.is_control), None)
        control_rate = control.conversion_rate if control else 0.0
        best_rate = max(
            (v.conversion_rate for v in variants if not v.is_control),
            default=0.0
        )
        return (
            f"No variant outperformed the control (control {control_rate:.2%}, "
            f"best variant {best_rate:.2%}). Consider running the experiment longer "
            f"or testing different variations."
        )

    if significance < metrics.confidence_level:
        return (
            f"The results are not yet statistically significant "
            f"({significance * 100:.1f}% vs {metrics.confidence_level * 100:g}% required). "
            f"Continue running the experiment."
        )

    total_samples = sum(v.sample_size for v in variants)
    if total_samples < metrics.minimum_sample_size:
        return (
            f"More samples needed ({total_samples} vs {metrics.minimum_sample_size} minimum). "
            f"Continue running the experiment."
        )

    lift = lead.conversion_rate_change
    if abs(lift) < metrics.minimum_effect_size * 100:
        return (
            f"The effect size ({lift:.2f}%) is below the minimum detectable effect "
            f"({metrics.minimum_effect_size * 100:g}%). The difference may not be "
            f"practically significant."
        )

    return (
        f'Variant "{lead.variant_name}" is the winner with {lift:.2f}% improvement over control. '
        f"Statistical significance: {significance * 100:.1f}%. Recommend implementing this variant."
    )


def duration_days(
    started_at: Optional[datetime],
    ended_at: Optional[datetime],
    now: datetime
) -> int:
    """Whole days the experiment has been (or was) running, rounded up."""
    start = started_at or now
    end = ended_at or now
    seconds = max(0.0, (end - start).total_seconds())
    return math.ceil(seconds / SECONDS_PER_DAY)


def build_results(
    experiment: ExperimentRead,
    assignments: Iterable,
    events: Iterable,
    now: Optional[datetime] = None
) -> ExperimentResults:
    """
    Compute per-variant rates, intervals, significance, winner and recommendation.

    Args:
        experiment: Experiment configuration (variants, metrics, dates)
        assignments: Rows with a `variant_id`
        events: Rows with `variant_id`, `event_type` and `event_value`
        now: Reference time for the duration of a running experiment

    Returns:
        ExperimentResults for the experiment's declared variants
    """
    now = now or datetime.utcnow()
    confidence_level = experiment.metrics.confidence_level

    sample_sizes = Counter(a.variant_id for a in assignments)
    event_counts = defaultdict(Counter)
    conversion_values = defaultdict(list)
    for event in events:
        event_counts[event.variant_id][event.event_type] += 1
        if event.event_type == CONVERSION_EVENT and event.event_value is not None:
            conversion_values[event.variant_id].append(event.event_value)

    results = []
    for variant in experiment.variants:
        sample_size = sample_sizes.get(variant.id, 0)
        conversions = event_counts[variant.id].get(CONVERSION_EVENT, 0)
        values = conversion_values.get(variant.id)
        results.append(VariantResults(
            variant_id=variant.id,
            variant_name=variant.name,
            is_control=variant.is_control,
            sample_size=sample_size,
            conversions=conversions,
            conversion_rate=conversions / sample_size if sample_size > 0 else 0.0,
            confidence_interval=wilson_interval(conversions, sample_size, confidence_level),
            events=dict(event_counts[variant.id]),
            average_value=sum(values) / len(values) if values else None,
        ))

    control = next((r for r in results if r.is_control), None)
    if control is not None:
        for result in results:
            if result.is_control:
                continue
            result.conversion_rate_change = relative_change(
                result.conversion_rate, control.conversion_rate
            )
            result.significance = two_proportion_significance(
                control.conversions, control.sample_size,
                result.conversions, result.sample_size
            )

    winner = determine_winner(results, confidence_level)
    lead = lead_variant(results, winner)
    significance = lead.significance if lead else 0.0

    total_samples = sum(r.sample_size for r in results)
    total_conversions = sum(r.conversions for r in results)

    return ExperimentResults(
        experiment_id=experiment.id,
        variants=results,
        winner=winner.variant_id if winner else None,
        statistical_significance=significance,
        confidence_level=confidence_level,
        confidence_interval=wilson_interval(total_conversions, total_samples, confidence_level),
        sample_size=total_samples,
        duration_days=duration_days(experiment.started_at, experiment.ended_at, now),
        recommendation=generate_recommendation(results, lead, significance, experiment.metrics),
    )
