"""
Experiment Service

A/B experiments over campaign content: balanced randomized audience split,
per-variant event counters, pooled two-proportion significance testing and a
terminal winner declaration.
"""

import asyncio
import inspect
import logging
import math
import random
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from core.config import ExperimentConfig

from .audience import partition_audience
from .experiment_stats import (
    chi_square_statistic,
    proportion,
    required_sample_size,
    two_proportion_z_score,
    two_tailed_p_value,
    z_for_confidence,
    z_for_power,
)
from .models import (
    CONTROL_VARIANT_ID,
    Contact,
    EventRecordResult,
    ExperimentAnalysis,
    ExperimentDefinition,
    ExperimentEventType,
    ExperimentMetric,
    ExperimentResults,
    ExperimentSpec,
    ExperimentStatistics,
    ExperimentStatus,
    SampleSizeCalculation,
    Variant,
    VariantAnalysis,
    VariantCounts,
    VariantRates,
    Winner,
)
from .protocols import (
    ClockProtocol,
    ExperimentStoreProtocol,
    InvalidSpecError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

METRIC_COUNTS = {
    ExperimentMetric.OPEN_RATE: "opened",
    ExperimentMetric.CLICK_RATE: "clicked",
    ExperimentMetric.CONVERSION_RATE: "converted",
}

WinnerCallback = Callable[[ExperimentDefinition, Winner], Any]


def calculate_variant_rates(counts: VariantCounts) -> VariantRates:
    """All variant rates are taken over messages sent"""
    return VariantRates(
        delivery_rate=proportion(counts.delivered, counts.sent),
        open_rate=proportion(counts.opened, counts.sent),
        click_rate=proportion(counts.clicked, counts.sent),
        conversion_rate=proportion(counts.converted, counts.sent),
        unsubscribe_rate=proportion(counts.unsubscribed, counts.sent),
    )


class ExperimentEngine:
    """
    Experiment lifecycle and statistics.

    Writes to one experiment are serialized by a per-experiment lock;
    analysis reads do not take it.
    """

    def __init__(
        self,
        experiment_store: ExperimentStoreProtocol,
        clock: ClockProtocol,
        config: Optional[ExperimentConfig] = None,
        event_publisher=None,
        on_winner: Optional[WinnerCallback] = None,
        rng: Optional[random.Random] = None,
    ):
        self.experiment_store = experiment_store
        self.clock = clock
        self.config = config or ExperimentConfig()
        self.event_publisher = event_publisher
        self.on_winner = on_winner
        self.rng = rng or random.Random()
        self._locks: Dict[str, asyncio.Lock] = {}

    # ====================
    # Creation
    # ====================

    async def create_experiment(
        self,
        spec: ExperimentSpec,
        control_content: Dict[str, Any],
        audience: Sequence[Contact],
    ) -> str:
        """
        Create an experiment and split the audience across its variants.

        Raises:
            InvalidSpecError: missing name or primary metric, no challenger,
                too many variants, or audience below the minimum sample size
        """
        self._validate_spec(spec, audience)

        variant_count = len(spec.variant_contents) + 1
        groups = partition_audience(list(audience), variant_count, rng=self.rng)
        share = 1 / variant_count

        variants = [Variant(
            variant_id=CONTROL_VARIANT_ID,
            name="Control",
            content=control_content,
            audience=groups[0],
            traffic_share=share,
        )]
        for index, content in enumerate(spec.variant_contents, start=1):
            name = (
                spec.variant_names[index - 1]
                if index - 1 < len(spec.variant_names)
                else f"Variant {index}"
            )
            variants.append(Variant(
                variant_id=f"variant_{index}",
                name=name,
                content=content,
                audience=groups[index],
                traffic_share=share,
            ))

        expected_improvement = spec.expected_improvement or self.config.expected_improvement
        sample_size = self.calculate_sample_size(len(audience), expected_improvement, variant_count)

        now = self.clock.now()
        experiment = ExperimentDefinition(
            name=spec.name,
            channel_type=spec.channel_type,
            hypothesis=spec.hypothesis,
            primary_metric=spec.primary_metric,
            secondary_metrics=spec.secondary_metrics,
            variants=variants,
            statistics=ExperimentStatistics(
                confidence_level=self.config.confidence_level,
                significance_threshold=self.config.significance_threshold,
                required_sample_size=sample_size.required_sample_size,
                sample_size=sample_size,
            ),
            results=ExperimentResults(
                variant_results={v.variant_id: VariantCounts() for v in variants},
            ),
            created_at=now,
            start_date=now,
            expected_end_date=now + timedelta(days=self.config.default_test_duration_days),
        )
        await self.experiment_store.save_experiment(experiment)
        self._locks[experiment.test_id] = asyncio.Lock()

        logger.info(
            f"Created experiment {experiment.test_id} '{spec.name}': "
            f"{variant_count} variants, groups {[len(g) for g in groups]}, "
            f"required sample {sample_size.required_sample_size}/variant"
        )

        if self.event_publisher:
            await self.event_publisher.publish_experiment_created(
                test_id=experiment.test_id,
                name=experiment.name,
                primary_metric=experiment.primary_metric.value,
                variant_ids=[v.variant_id for v in variants],
                required_sample_size=sample_size.required_sample_size,
            )
        return experiment.test_id

    def calculate_sample_size(
        self, audience_size: int, expected_improvement: float, variant_count: int
    ) -> SampleSizeCalculation:
        """Simplified power analysis; the result is capped by the audience"""
        per_variant = required_sample_size(
            self.config.baseline_conversion_rate,
            expected_improvement,
            self.config.confidence_level,
            self.config.statistical_power,
        )
        total_required = per_variant * variant_count
        daily_sends = audience_size * self.config.daily_send_fraction

        return SampleSizeCalculation(
            required_sample_size=min(per_variant, audience_size // variant_count),
            total_required=min(total_required, audience_size),
            traffic_split=1 / variant_count,
            expected_duration_days=math.ceil(total_required / daily_sends) if daily_sends > 0 else 0,
            z_alpha=z_for_confidence(self.config.confidence_level),
            z_beta=z_for_power(self.config.statistical_power),
            effect_size=expected_improvement,
            baseline_conversion_rate=self.config.baseline_conversion_rate,
        )

    def _validate_spec(self, spec: ExperimentSpec, audience: Sequence[Contact]) -> None:
        if not spec.name or not spec.name.strip():
            raise InvalidSpecError("Experiment name is required", "name")
        if spec.primary_metric is None:
            raise InvalidSpecError("Primary metric is required", "primary_metric")
        if not spec.variant_contents:
            raise InvalidSpecError("At least one challenger variant is required", "variant_contents")
        if len(spec.variant_contents) + 1 > self.config.max_variants:
            raise InvalidSpecError(
                f"At most {self.config.max_variants} variants are allowed, "
                f"got {len(spec.variant_contents) + 1}",
                "variant_contents",
            )
        if len(audience) < self.config.min_sample_size:
            raise InvalidSpecError(
                f"Audience size {len(audience)} is below minimum sample size "
                f"{self.config.min_sample_size}",
                "audience",
            )

    # ====================
    # Events
    # ====================

    async def record_event(
        self,
        test_id: str,
        variant_id: str,
        event_type: Union[str, ExperimentEventType],
    ) -> EventRecordResult:
        """Increment one variant counter and analyze once enough data is in"""
        try:
            event = ExperimentEventType(event_type)
        except ValueError:
            raise InvalidSpecError(f"Unknown experiment event type: {event_type}", "event_type")

        experiment = await self.get_experiment(test_id)
        if experiment.get_variant(variant_id) is None:
            raise NotFoundError(
                f"Variant {variant_id} not found in experiment {test_id}", "variant", variant_id
            )

        declared: Optional[Winner] = None
        triggered = False
        lock = self._locks.setdefault(test_id, asyncio.Lock())

        async with lock:
            experiment = await self.get_experiment(test_id)
            counts = experiment.results.variant_results.setdefault(variant_id, VariantCounts())
            setattr(counts, event.value, getattr(counts, event.value) + 1)
            if event == ExperimentEventType.SENT:
                experiment.results.total_sent += 1
            counts.rates = calculate_variant_rates(counts)

            if experiment.status == ExperimentStatus.ACTIVE and self._should_analyze(experiment):
                triggered = True
                analysis = self._analyze(experiment)
                if analysis.significance_reached:
                    experiment.results.significance_reached = True
                if experiment.results.winner is None and analysis.winner is not None:
                    experiment.results.winner = analysis.winner
                    declared = analysis.winner

            await self.experiment_store.save_experiment(experiment)

        if declared is not None:
            logger.info(
                f"Experiment {test_id} winner declared: {declared.variant_id} "
                f"(+{declared.improvement:.1f}%)"
            )
            await self._auto_optimize(experiment, declared)

        return EventRecordResult(
            test_id=test_id,
            variant_id=variant_id,
            event_type=event,
            recorded_at=self.clock.now(),
            analysis_triggered=triggered,
            winner_declared=declared is not None,
        )

    def _should_analyze(self, experiment: ExperimentDefinition) -> bool:
        age_days = (self.clock.now() - experiment.start_date).total_seconds() / 86400
        return (
            age_days >= self.config.min_test_duration_days
            and experiment.results.total_sent >= self.config.min_sample_size
        )

    async def _auto_optimize(self, experiment: ExperimentDefinition, winner: Winner) -> None:
        if not self.config.auto_optimization:
            return

        logger.info(f"Auto-optimization triggered for experiment {experiment.test_id}")
        if self.event_publisher:
            await self.event_publisher.publish_winner_declared(
                test_id=experiment.test_id,
                variant_id=winner.variant_id,
                improvement=winner.improvement,
                confidence=winner.confidence,
            )

        if self.on_winner is None:
            return
        try:
            result = self.on_winner(experiment, winner)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Winner callback failed for experiment {experiment.test_id}: {e}")

    # ====================
    # Analysis
    # ====================

    async def analyze(self, test_id: str) -> ExperimentAnalysis:
        experiment = await self.get_experiment(test_id)
        analysis = self._analyze(experiment)
        logger.info(
            f"Analyzed experiment {test_id}: "
            f"{'significant' if analysis.significance_reached else 'inconclusive'}"
        )
        return analysis

    def _analyze(self, experiment: ExperimentDefinition) -> ExperimentAnalysis:
        count_field = METRIC_COUNTS[experiment.primary_metric]
        threshold = self.config.significance_threshold
        results = experiment.results.variant_results

        control = results.get(CONTROL_VARIANT_ID, VariantCounts())
        control_successes = getattr(control, count_field)
        control_rate = proportion(control_successes, control.sent)

        variants: Dict[str, VariantAnalysis] = {}
        for variant in experiment.variants:
            if variant.is_control:
                continue
            counts = results.get(variant.variant_id, VariantCounts())
            successes = getattr(counts, count_field)
            rate = proportion(successes, counts.sent)

            if control_rate > 0:
                improvement = (rate - control_rate) / control_rate * 100
            else:
                improvement = 100.0 if rate > 0 else 0.0

            z_score = two_proportion_z_score(
                control_successes, control.sent, successes, counts.sent
            )
            p_value = two_tailed_p_value(z_score)

            variants[variant.variant_id] = VariantAnalysis(
                variant_id=variant.variant_id,
                rate=rate,
                improvement=improvement,
                z_score=z_score,
                p_value=p_value,
                is_significant=p_value < threshold,
                confidence_level=1 - p_value,
                sample_size=counts.sent,
                chi_square_statistic=chi_square_statistic(
                    control_successes, control.sent, successes, counts.sent
                ),
            )

        significant_now = any(v.is_significant for v in variants.values())
        winner = experiment.results.winner or self._determine_winner(variants)
        now = self.clock.now()

        return ExperimentAnalysis(
            test_id=experiment.test_id,
            test_name=experiment.name,
            primary_metric=experiment.primary_metric,
            control_rate=control_rate,
            variants=variants,
            significance_reached=experiment.results.significance_reached or significant_now,
            winner=winner,
            test_duration_days=int((now - experiment.start_date).total_seconds() // 86400),
            recommendations=self._recommendations(winner),
            analyzed_at=now,
        )

    def _determine_winner(self, variants: Dict[str, VariantAnalysis]) -> Optional[Winner]:
        best: Optional[VariantAnalysis] = None
        for analysis in variants.values():
            if not analysis.is_significant or analysis.improvement <= 0:
                continue
            if best is None or analysis.improvement > best.improvement:
                best = analysis

        if best is None:
            return None
        return Winner(
            variant_id=best.variant_id,
            improvement=best.improvement,
            confidence=best.confidence_level,
            declared_at=self.clock.now(),
        )

    @staticmethod
    def _recommendations(winner: Optional[Winner]) -> List[str]:
        if winner is None:
            return ["Continue test or implement control, no significant winner detected"]
        return [
            f"Implement winning variant: {winner.variant_id} "
            f"({winner.improvement:.1f}% improvement)"
        ]

    # ====================
    # Lifecycle
    # ====================

    async def get_experiment(self, test_id: str) -> ExperimentDefinition:
        experiment = await self.experiment_store.get_experiment(test_id)
        if experiment is None:
            raise NotFoundError(f"Experiment not found: {test_id}", "experiment", test_id)
        return experiment

    async def list_experiments(self) -> List[ExperimentDefinition]:
        return await self.experiment_store.list_experiments()

    async def complete_experiment(self, test_id: str) -> ExperimentDefinition:
        """Stop automatic analysis; later events are still counted"""
        lock = self._locks.setdefault(test_id, asyncio.Lock())
        async with lock:
            experiment = await self.get_experiment(test_id)
            if experiment.status != ExperimentStatus.COMPLETED:
                experiment.status = ExperimentStatus.COMPLETED
                experiment.completed_at = self.clock.now()
                await self.experiment_store.save_experiment(experiment)
                logger.info(f"Completed experiment {test_id}")
        return experiment

    async def active_experiment_count(self) -> int:
        experiments = await self.experiment_store.list_experiments()
        return sum(1 for e in experiments if e.status == ExperimentStatus.ACTIVE)

    async def shutdown(self) -> None:
        self._locks.clear()
        logger.info("Experiment engine shut down")


__all__ = ["ExperimentEngine", "calculate_variant_rates"]
