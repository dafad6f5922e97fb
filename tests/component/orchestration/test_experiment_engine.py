"""
Component Tests for ExperimentEngine

Experiment lifecycle against an in-memory store, ManualClock and a
recording event bus.
"""

from datetime import timedelta

import pytest

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from core.config import ExperimentConfig
from microservices.orchestration_service.experiment_service import ExperimentEngine
from microservices.orchestration_service.models import (
    ExperimentStatus,
    VariantCounts,
)
from microservices.orchestration_service.protocols import InvalidSpecError, NotFoundError
from tests.contracts.orchestration.data_contract import (
    CONTROL_VARIANT_ID,
    ExperimentEventType,
    ExperimentMetric,
)

TWO_DAYS_MS = 2 * 86_400_000


async def create(engine, factory, audience_size=200, **spec_overrides):
    return await engine.create_experiment(
        factory.make_experiment_spec(**spec_overrides),
        factory.make_control_content(),
        factory.make_contacts(audience_size),
    )


async def record(engine, test_id, variant_id, event_type, times):
    result = None
    for _ in range(times):
        result = await engine.record_event(test_id, variant_id, event_type)
    return result


async def run_to_winner(engine, clock, test_id):
    """control 9/300 vs variant_1 40/300 on conversions"""
    await record(engine, test_id, CONTROL_VARIANT_ID, "sent", 300)
    await record(engine, test_id, "variant_1", "sent", 300)
    clock.advance(TWO_DAYS_MS)
    await record(engine, test_id, CONTROL_VARIANT_ID, "converted", 9)
    await record(engine, test_id, "variant_1", "converted", 40)


async def set_counts(engine, test_id, **counts_by_variant):
    experiment = await engine.get_experiment(test_id)
    for variant_id, counts in counts_by_variant.items():
        experiment.results.variant_results[variant_id] = VariantCounts(**counts)


# ====================
# Creation
# ====================


class TestCreateExperiment:

    @pytest.mark.asyncio
    async def test_audience_split_across_variants(self, engine, factory):
        test_id = await create(engine, factory, audience_size=101)

        experiment = await engine.get_experiment(test_id)
        assert [v.variant_id for v in experiment.variants] == [CONTROL_VARIANT_ID, "variant_1"]
        assert [len(v.audience) for v in experiment.variants] == [51, 50]
        assert experiment.control.traffic_share == 0.5
        assert experiment.status == ExperimentStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_groups_are_disjoint(self, engine, factory):
        test_id = await create(engine, factory, audience_size=300, challengers=2)

        experiment = await engine.get_experiment(test_id)
        ids = [c.contact_id for v in experiment.variants for c in v.audience]
        assert len(ids) == len(set(ids)) == 300
        assert [len(v.audience) for v in experiment.variants] == [100, 100, 100]

    @pytest.mark.asyncio
    async def test_variant_names(self, engine, factory):
        test_id = await create(engine, factory, challengers=2, variant_names=["Emoji subject"])

        experiment = await engine.get_experiment(test_id)
        assert [v.name for v in experiment.variants] == ["Control", "Emoji subject", "Variant 2"]

    @pytest.mark.asyncio
    async def test_statistics_and_schedule(self, engine, factory, clock):
        test_id = await create(engine, factory, audience_size=1_000)

        experiment = await engine.get_experiment(test_id)
        assert experiment.statistics.required_sample_size == 46
        assert experiment.statistics.confidence_level == 0.95
        assert experiment.start_date == clock.now()
        assert experiment.expected_end_date == clock.now() + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_created_event_published(self, engine, factory, mock_event_bus):
        test_id = await create(engine, factory)

        events = mock_event_bus.get_events_by_type("orchestration.experiment.created")
        assert events[0]["data"]["test_id"] == test_id
        assert events[0]["data"]["variant_ids"] == [CONTROL_VARIANT_ID, "variant_1"]

    @pytest.mark.asyncio
    async def test_audience_below_minimum_rejected(self, engine, factory, experiment_store):
        with pytest.raises(InvalidSpecError) as exc_info:
            await create(engine, factory, audience_size=40)

        assert exc_info.value.field == "audience"
        assert experiment_store.experiments == {}

    @pytest.mark.asyncio
    async def test_no_challenger_rejected(self, engine, factory):
        with pytest.raises(InvalidSpecError):
            await create(engine, factory, challengers=0)

    @pytest.mark.asyncio
    async def test_too_many_variants_rejected(self, engine, factory):
        with pytest.raises(InvalidSpecError):
            await create(engine, factory, challengers=5)

    @pytest.mark.asyncio
    async def test_four_challengers_allowed(self, engine, factory):
        test_id = await create(engine, factory, challengers=4)
        experiment = await engine.get_experiment(test_id)
        assert len(experiment.variants) == 5

    @pytest.mark.asyncio
    async def test_missing_primary_metric_rejected(self, engine, factory):
        with pytest.raises(InvalidSpecError) as exc_info:
            await create(engine, factory, primary_metric=None)
        assert exc_info.value.field == "primary_metric"

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, engine, factory):
        with pytest.raises(InvalidSpecError):
            await create(engine, factory, name="  ")


# ====================
# Events
# ====================


class TestRecordEvent:

    @pytest.mark.asyncio
    async def test_counters_and_rates(self, engine, factory):
        test_id = await create(engine, factory)

        await record(engine, test_id, "variant_1", "sent", 4)
        result = await engine.record_event(test_id, "variant_1", ExperimentEventType.OPENED)

        experiment = await engine.get_experiment(test_id)
        counts = experiment.results.variant_results["variant_1"]
        assert counts.sent == 4
        assert counts.opened == 1
        assert counts.rates.open_rate == pytest.approx(0.25)
        assert experiment.results.total_sent == 4
        assert result.event_type == ExperimentEventType.OPENED
        assert result.analysis_triggered is False

    @pytest.mark.asyncio
    async def test_unknown_event_type(self, engine, factory):
        test_id = await create(engine, factory)
        with pytest.raises(InvalidSpecError):
            await engine.record_event(test_id, "variant_1", "bounced")

    @pytest.mark.asyncio
    async def test_unknown_experiment(self, engine):
        with pytest.raises(NotFoundError):
            await engine.record_event("abt_missing", CONTROL_VARIANT_ID, "sent")

    @pytest.mark.asyncio
    async def test_unknown_variant(self, engine, factory):
        test_id = await create(engine, factory)
        with pytest.raises(NotFoundError) as exc_info:
            await engine.record_event(test_id, "variant_9", "sent")
        assert exc_info.value.resource_type == "variant"

    @pytest.mark.asyncio
    async def test_no_analysis_before_minimum_duration(self, engine, factory, clock):
        test_id = await create(engine, factory)
        await record(engine, test_id, CONTROL_VARIANT_ID, "sent", 150)

        clock.advance(TWO_DAYS_MS - 1)
        result = await engine.record_event(test_id, "variant_1", "sent")

        assert result.analysis_triggered is False

    @pytest.mark.asyncio
    async def test_no_analysis_before_minimum_sample(self, engine, factory, clock):
        test_id = await create(engine, factory)
        clock.advance(TWO_DAYS_MS)

        result = await record(engine, test_id, CONTROL_VARIANT_ID, "sent", 99)

        assert result.analysis_triggered is False
        result = await engine.record_event(test_id, CONTROL_VARIANT_ID, "sent")
        assert result.analysis_triggered is True


# ====================
# Winner
# ====================


class TestWinnerDeclaration:

    @pytest.mark.asyncio
    async def test_winner_declared_once(self, engine, factory, clock, mock_event_bus):
        test_id = await create(engine, factory)

        await run_to_winner(engine, clock, test_id)

        experiment = await engine.get_experiment(test_id)
        winner = experiment.results.winner
        assert winner.variant_id == "variant_1"
        assert winner.improvement > 0
        assert 0.95 < winner.confidence <= 1.0
        assert experiment.results.significance_reached is True
        events = mock_event_bus.get_events_by_type("orchestration.experiment.winner_declared")
        assert len(events) == 1
        assert events[0]["data"]["variant_id"] == "variant_1"

    @pytest.mark.asyncio
    async def test_winner_is_terminal(self, engine, factory, clock):
        test_id = await create(engine, factory)
        await run_to_winner(engine, clock, test_id)

        # Control overtakes the variant afterwards
        await record(engine, test_id, CONTROL_VARIANT_ID, "converted", 100)

        experiment = await engine.get_experiment(test_id)
        analysis = await engine.analyze(test_id)
        assert experiment.results.winner.variant_id == "variant_1"
        assert analysis.winner.variant_id == "variant_1"
        assert analysis.significance_reached is True

    @pytest.mark.asyncio
    async def test_on_winner_callback(self, experiment_store, clock, factory):
        calls = []

        async def on_winner(experiment, winner):
            calls.append((experiment.test_id, winner.variant_id))

        engine = ExperimentEngine(experiment_store, clock, ExperimentConfig(), on_winner=on_winner)
        test_id = await create(engine, factory)

        await run_to_winner(engine, clock, test_id)

        assert calls == [(test_id, "variant_1")]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_recording(self, experiment_store, clock, factory):
        def on_winner(experiment, winner):
            raise RuntimeError("downstream unavailable")

        engine = ExperimentEngine(experiment_store, clock, ExperimentConfig(), on_winner=on_winner)
        test_id = await create(engine, factory)

        await run_to_winner(engine, clock, test_id)

        experiment = await engine.get_experiment(test_id)
        assert experiment.results.winner is not None

    @pytest.mark.asyncio
    async def test_auto_optimization_disabled(self, experiment_store, clock, factory, event_publisher, mock_event_bus):
        calls = []
        engine = ExperimentEngine(
            experiment_store,
            clock,
            ExperimentConfig(auto_optimization=False),
            event_publisher=event_publisher,
            on_winner=lambda experiment, winner: calls.append(winner),
        )
        test_id = await create(engine, factory)

        await run_to_winner(engine, clock, test_id)

        experiment = await engine.get_experiment(test_id)
        assert experiment.results.winner is not None
        assert calls == []
        assert mock_event_bus.get_events_by_type("orchestration.experiment.winner_declared") == []


# ====================
# Analysis
# ====================


class TestAnalyze:

    @pytest.mark.asyncio
    async def test_improvement_and_significance(self, engine, factory):
        test_id = await create(engine, factory)
        await set_counts(
            engine, test_id,
            control={"sent": 1000, "converted": 300},
            variant_1={"sent": 1000, "converted": 400},
        )

        analysis = await engine.analyze(test_id)

        variant = analysis.variants["variant_1"]
        assert analysis.control_rate == pytest.approx(0.3)
        assert variant.improvement == pytest.approx(33.33, abs=0.01)
        assert variant.is_significant is True
        assert variant.p_value < 0.05
        assert variant.chi_square_statistic > 0
        assert analysis.winner.variant_id == "variant_1"
        assert analysis.winner.confidence == pytest.approx(1 - variant.p_value)

    @pytest.mark.asyncio
    async def test_analyze_does_not_persist_winner(self, engine, factory):
        test_id = await create(engine, factory)
        await set_counts(
            engine, test_id,
            control={"sent": 1000, "converted": 300},
            variant_1={"sent": 1000, "converted": 400},
        )

        await engine.analyze(test_id)

        experiment = await engine.get_experiment(test_id)
        assert experiment.results.winner is None

    @pytest.mark.asyncio
    async def test_identical_variants_inconclusive(self, engine, factory):
        test_id = await create(engine, factory)
        await set_counts(
            engine, test_id,
            control={"sent": 500, "converted": 50},
            variant_1={"sent": 500, "converted": 50},
        )

        analysis = await engine.analyze(test_id)

        assert analysis.variants["variant_1"].p_value == pytest.approx(1.0)
        assert analysis.significance_reached is False
        assert analysis.winner is None
        assert "no significant winner" in analysis.recommendations[0]

    @pytest.mark.asyncio
    async def test_zero_control_rate(self, engine, factory):
        test_id = await create(engine, factory)
        await set_counts(
            engine, test_id,
            control={"sent": 100, "converted": 0},
            variant_1={"sent": 100, "converted": 5},
        )

        analysis = await engine.analyze(test_id)

        assert analysis.variants["variant_1"].improvement == 100.0

    @pytest.mark.asyncio
    async def test_significantly_worse_variant_is_not_winner(self, engine, factory):
        test_id = await create(engine, factory)
        await set_counts(
            engine, test_id,
            control={"sent": 1000, "converted": 400},
            variant_1={"sent": 1000, "converted": 300},
        )

        analysis = await engine.analyze(test_id)

        assert analysis.variants["variant_1"].is_significant is True
        assert analysis.winner is None

    @pytest.mark.asyncio
    async def test_best_of_several_challengers(self, engine, factory):
        test_id = await create(engine, factory, challengers=2)
        await set_counts(
            engine, test_id,
            control={"sent": 1000, "converted": 300},
            variant_1={"sent": 1000, "converted": 380},
            variant_2={"sent": 1000, "converted": 420},
        )

        analysis = await engine.analyze(test_id)

        assert analysis.winner.variant_id == "variant_2"

    @pytest.mark.asyncio
    async def test_primary_metric_selects_counter(self, engine, factory):
        test_id = await create(engine, factory, primary_metric=ExperimentMetric.OPEN_RATE)
        await set_counts(
            engine, test_id,
            control={"sent": 1000, "opened": 200, "converted": 10},
            variant_1={"sent": 1000, "opened": 300, "converted": 10},
        )

        analysis = await engine.analyze(test_id)

        assert analysis.control_rate == pytest.approx(0.2)
        assert analysis.winner.variant_id == "variant_1"

    @pytest.mark.asyncio
    async def test_fresh_experiment_has_no_chi_square(self, engine, factory):
        test_id = await create(engine, factory)

        analysis = await engine.analyze(test_id)

        assert analysis.variants["variant_1"].chi_square_statistic is None

    @pytest.mark.asyncio
    async def test_analyze_unknown(self, engine):
        with pytest.raises(NotFoundError):
            await engine.analyze("abt_missing")


# ====================
# Lifecycle
# ====================


class TestExperimentLifecycle:

    @pytest.mark.asyncio
    async def test_complete_stops_automatic_analysis(self, engine, factory, clock):
        test_id = await create(engine, factory)
        clock.advance(TWO_DAYS_MS)

        completed = await engine.complete_experiment(test_id)
        result = await record(engine, test_id, CONTROL_VARIANT_ID, "sent", 120)

        assert completed.status == ExperimentStatus.COMPLETED
        assert completed.completed_at == clock.now()
        assert result.analysis_triggered is False
        experiment = await engine.get_experiment(test_id)
        assert experiment.results.total_sent == 120

    @pytest.mark.asyncio
    async def test_listing_and_counts(self, engine, factory):
        first = await create(engine, factory)
        await create(engine, factory)
        await engine.complete_experiment(first)

        experiments = await engine.list_experiments()

        assert len(experiments) == 2
        assert await engine.active_experiment_count() == 1
