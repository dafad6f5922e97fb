"""
Unit Tests for Experiment Statistics

Pooled two-proportion z-test, two-tailed p-value, power analysis and
variant rates.
"""

import pytest

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.orchestration_service.experiment_service import (
    ExperimentEngine,
    calculate_variant_rates,
)
from microservices.orchestration_service.experiment_stats import (
    chi_square_statistic,
    proportion,
    required_sample_size,
    two_proportion_z_score,
    two_tailed_p_value,
    z_for_confidence,
    z_for_power,
)
from microservices.orchestration_service.models import VariantCounts
from microservices.orchestration_service.orchestration_repository import InMemoryExperimentStore


class TestZScore:

    def test_clear_difference_is_significant(self):
        """control 300/1000 vs variant 400/1000"""
        z = two_proportion_z_score(300, 1000, 400, 1000)
        p = two_tailed_p_value(z)

        assert z == pytest.approx(4.69, abs=0.01)
        assert p < 0.001

    def test_sign_follows_variant(self):
        assert two_proportion_z_score(400, 1000, 300, 1000) < 0

    def test_identical_proportions(self):
        z = two_proportion_z_score(100, 500, 100, 500)

        assert z == 0.0
        assert two_tailed_p_value(z) == pytest.approx(1.0)

    @pytest.mark.parametrize(
        "args",
        [(0, 0, 5, 10), (5, 10, 0, 0), (0, 100, 0, 100), (100, 100, 100, 100)],
    )
    def test_undefined_variance_gives_zero(self, args):
        assert two_proportion_z_score(*args) == 0.0


class TestPValue:

    def test_zero_z_gives_one(self):
        assert two_tailed_p_value(0.0) == 1.0

    def test_symmetric_in_z(self):
        assert two_tailed_p_value(1.5) == pytest.approx(two_tailed_p_value(-1.5))

    def test_critical_value(self):
        assert two_tailed_p_value(1.959964) == pytest.approx(0.05, abs=1e-5)


class TestPowerAnalysis:

    def test_critical_values(self):
        assert z_for_confidence(0.95) == pytest.approx(1.959964, abs=1e-5)
        assert z_for_power(0.80) == pytest.approx(0.841621, abs=1e-5)

    def test_default_sample_size(self):
        """2 * (1.96 + 0.84)^2 * 0.03 * 0.97 / 0.1^2 = 45.7"""
        assert required_sample_size(0.03, 0.1, 0.95, 0.80) == 46

    def test_smaller_effect_needs_more_samples(self):
        assert required_sample_size(0.03, 0.05) > required_sample_size(0.03, 0.1)


class TestEngineSampleSize:
    """ExperimentEngine.calculate_sample_size caps by audience"""

    @pytest.fixture
    def engine(self, clock, experiment_config):
        return ExperimentEngine(InMemoryExperimentStore(), clock, experiment_config)

    def test_uncapped(self, engine):
        result = engine.calculate_sample_size(1_000, 0.1, 2)

        assert result.required_sample_size == 46
        assert result.total_required == 92
        assert result.traffic_split == 0.5
        # 92 needed at 100 sends per day
        assert result.expected_duration_days == 1

    def test_capped_by_audience(self, engine):
        result = engine.calculate_sample_size(60, 0.1, 2)

        assert result.required_sample_size == 30
        assert result.total_required == 60
        # uncapped 92 needed at 6 sends per day
        assert result.expected_duration_days == 16


class TestChiSquare:

    def test_defined_table(self):
        chi2 = chi_square_statistic(300, 1000, 400, 1000)
        assert chi2 is not None
        assert chi2 > 0

    def test_undefined_table(self):
        assert chi_square_statistic(0, 0, 0, 0) is None

    def test_no_successes_in_either_group(self):
        assert chi_square_statistic(0, 500, 0, 500) is None

    def test_every_trial_successful(self):
        assert chi_square_statistic(200, 200, 300, 300) is None

    def test_empty_variant(self):
        assert chi_square_statistic(30, 100, 0, 0) is None


class TestVariantRates:

    def test_rates_over_sent(self):
        rates = calculate_variant_rates(
            VariantCounts(sent=200, delivered=180, opened=50, clicked=20, converted=10, unsubscribed=2)
        )

        assert rates.delivery_rate == pytest.approx(0.9)
        assert rates.open_rate == pytest.approx(0.25)
        assert rates.click_rate == pytest.approx(0.1)
        assert rates.conversion_rate == pytest.approx(0.05)
        assert rates.unsubscribe_rate == pytest.approx(0.01)

    def test_nothing_sent(self):
        rates = calculate_variant_rates(VariantCounts(opened=3))
        assert rates.open_rate == 0.0
        assert proportion(3, 0) == 0.0
