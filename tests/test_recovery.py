"""
Unit tests for the recovery scorer. Pure functions only; no database.
"""
import math
from types import SimpleNamespace as NS

import pytest

from nudgegate.services.recovery import (
    COMPONENT_WEIGHTS,
    IllnessRisk,
    generate_reasoning,
    redistribute_weights,
    score_hrv,
    score_recovery,
    score_respiratory_rate,
    score_sleep_duration,
    temperature_penalty,
    z_to_score,
    zone_for,
)


def _baseline(**kw):
    fields = dict(
        hrv_ln_mean=math.log(50),
        hrv_ln_std_dev=0.2,
        rhr_mean=60.0,
        rhr_std_dev=3.0,
        respiratory_rate_mean=14.0,
        respiratory_rate_std_dev=0.5,
        sleep_duration_target_minutes=480.0,
        sample_count=14,
        confidence_level="high",
        menstrual_cycle_tracking=False,
        cycle_day=None,
    )
    fields.update(kw)
    return NS(**fields)


def _metrics(**kw):
    fields = dict(
        hrv_avg=50.0,
        rhr_avg=60.0,
        sleep_hours=8.0,
        sleep_efficiency=90.0,
        deep_pct=20.0,
        rem_pct=22.5,
        respiratory_rate=14.0,
        temperature_deviation=0.0,
    )
    fields.update(kw)
    return NS(**fields)


# ---------------------------------------------------------------------------
# Mapping helpers
# ---------------------------------------------------------------------------

class TestZScoreMapping:
    @pytest.mark.parametrize("z,points", [
        (0, 70), (1, 85), (2, 100), (3, 100), (-1, 55), (-2, 40), (-2.5, 20), (-3, 0), (-4, 0),
    ])
    def test_anchor_points(self, z, points):
        assert z_to_score(z) == points

    @pytest.mark.parametrize("score,zone", [
        (0, "red"), (33, "red"), (34, "yellow"), (66, "yellow"), (67, "green"), (100, "green"),
    ])
    def test_zones(self, score, zone):
        assert zone_for(score) == zone


class TestComponents:
    def test_hrv_at_baseline_is_neutral(self):
        c = score_hrv(50.0, _baseline())
        assert c.score == 70
        assert c.comparison.endswith("% vs baseline")

    def test_hrv_zero_variance_falls_back(self):
        c = score_hrv(80.0, _baseline(hrv_ln_std_dev=0.0))
        assert c.score == 70
        assert c.comparison == "Insufficient baseline variance"

    def test_missing_hrv_is_unavailable(self):
        c = score_hrv(None, _baseline())
        assert c.available is False

    @pytest.mark.parametrize("hours,points", [(8.0, 100), (8.2, 100), (6.0, 70), (10.0, 90), (1.0, 20)])
    def test_sleep_duration(self, hours, points):
        assert score_sleep_duration(hours, 480.0).score == points

    @pytest.mark.parametrize("rr,points", [(14.0, 100), (11.0, 85), (18.0, 80), (30.0, 40)])
    def test_respiratory_rate_population_fallback(self, rr, points):
        baseline = _baseline(respiratory_rate_mean=None, respiratory_rate_std_dev=None)
        assert score_respiratory_rate(rr, baseline).score == points


class TestTemperaturePenalty:
    @pytest.mark.parametrize("deviation,penalty", [
        (None, 0), (0.0, 0), (0.3, 0), (0.4, -5), (0.6, -10), (0.8, -15), (-0.8, -15),
    ])
    def test_steps(self, deviation, penalty):
        assert temperature_penalty(deviation, _baseline()).penalty == penalty

    def test_luteal_allowance_only_for_positive_deviation(self):
        luteal = _baseline(menstrual_cycle_tracking=True, cycle_day=20)
        assert temperature_penalty(0.6, luteal).penalty == 0
        assert temperature_penalty(-0.6, luteal).penalty == -10

    def test_no_allowance_outside_luteal_phase(self):
        follicular = _baseline(menstrual_cycle_tracking=True, cycle_day=5)
        assert temperature_penalty(0.6, follicular).penalty == -10


# ---------------------------------------------------------------------------
# Full score
# ---------------------------------------------------------------------------

class TestScoreRecovery:
    def test_nominal_day(self):
        result = score_recovery(_metrics(), _baseline())
        # 70*.40 + 70*.25 + 100*.20 + 100*.10 + 70*.05
        assert result.score == 79
        assert result.zone == "green"
        assert result.data_completeness == 100
        assert result.recommendations[0].headline == "Ready for high intensity"

    def test_not_ready_baseline_returns_none(self):
        assert score_recovery(_metrics(), _baseline(sample_count=2), min_baseline_days=3) is None

    def test_no_components_returns_none(self):
        empty = _metrics(
            hrv_avg=None, rhr_avg=None, sleep_hours=None, sleep_efficiency=None,
            deep_pct=None, rem_pct=None, respiratory_rate=None,
        )
        assert score_recovery(empty, _baseline()) is None

    def test_missing_component_redistributes(self):
        result = score_recovery(_metrics(hrv_avg=None), _baseline())
        # (70*.25 + 100*.20 + 100*.10 + 70*.05) / .60
        assert result.score == 85
        assert result.missing_inputs == ["hrv"]
        assert result.data_completeness == 80
        assert result.components["hrv"].effective_weight == 0
        assert result.components["rhr"].effective_weight == pytest.approx(0.25 / 0.60, abs=1e-4)

    def test_temperature_penalty_applies(self):
        result = score_recovery(_metrics(temperature_deviation=0.8), _baseline())
        assert result.score == 79 - 15

    def test_score_and_zone_stay_consistent(self):
        baseline = _baseline()
        for hrv in (10, 30, 50, 80, 150):
            for rhr in (40, 55, 60, 70, 90):
                for temp in (-1.0, 0.0, 0.6, 2.0):
                    result = score_recovery(
                        _metrics(hrv_avg=hrv, rhr_avg=rhr, temperature_deviation=temp), baseline,
                    )
                    assert 0 <= result.score <= 100
                    assert result.zone == zone_for(result.score)

    def test_red_zone_recommends_mvd(self):
        result = score_recovery(
            _metrics(hrv_avg=20, rhr_avg=75, sleep_hours=4, respiratory_rate=18,
                     temperature_deviation=1.0),
            _baseline(),
        )
        assert result.zone == "red"
        assert result.recommendations[0].activate_mvd is True

    def test_confidence_reflects_completeness(self):
        full = score_recovery(_metrics(), _baseline())
        partial = score_recovery(_metrics(hrv_avg=None, rhr_avg=None), _baseline())
        assert partial.confidence < full.confidence


class TestRedistribution:
    def test_weights_sum_to_one_and_keep_proportions(self):
        result = score_recovery(_metrics(hrv_avg=None, respiratory_rate=None), _baseline())
        weights = redistribute_weights(result.components)
        assert sum(weights.values()) == pytest.approx(1.0)
        assert weights["rhr"] / weights["sleep_quality"] == pytest.approx(
            COMPONENT_WEIGHTS["rhr"] / COMPONENT_WEIGHTS["sleep_quality"]
        )


class TestEdgeCases:
    def test_alcohol_pattern(self):
        result = score_recovery(_metrics(hrv_avg=35, rhr_avg=66), _baseline())
        assert result.edge_cases.alcohol_detected is True
        assert "Alcohol consumption pattern detected." in result.reasoning
        assert any(r.headline == "Elevated stress markers detected" for r in result.recommendations)

    def test_illness_high_with_cardio_strain(self):
        result = score_recovery(
            _metrics(temperature_deviation=0.6, respiratory_rate=16.5, rhr_avg=66), _baseline(),
        )
        assert result.edge_cases.illness_risk == IllnessRisk.HIGH
        assert any(r.activate_mvd for r in result.recommendations if r.type == "health")

    def test_illness_medium_without_cardio_strain(self):
        result = score_recovery(
            _metrics(temperature_deviation=0.6, respiratory_rate=16.5), _baseline(),
        )
        assert result.edge_cases.illness_risk == IllnessRisk.MEDIUM

    def test_illness_low_on_single_signal(self):
        result = score_recovery(_metrics(temperature_deviation=0.6), _baseline())
        assert result.edge_cases.illness_risk == IllnessRisk.LOW

    def test_travel_needs_three_signals(self):
        result = score_recovery(
            _metrics(hrv_avg=30, rhr_avg=68, respiratory_rate=15.5), _baseline(),
        )
        assert result.edge_cases.travel_detected is True
        assert any(r.headline == "Travel disruption detected" for r in result.recommendations)

        calm = score_recovery(_metrics(rhr_avg=68), _baseline())
        assert calm.edge_cases.travel_detected is False


class TestReasoning:
    def test_trend_sentences(self):
        result = score_recovery(_metrics(), _baseline(), previous_score=70)
        assert "Up 9 from previous score." in result.reasoning
        same = score_recovery(_metrics(), _baseline(), previous_score=79)
        assert "Unchanged from previous score." in same.reasoning
        lower = score_recovery(_metrics(), _baseline(), previous_score=90)
        assert "Down 11 from previous score." in lower.reasoning

    def test_reasoning_is_deterministic(self):
        a = score_recovery(_metrics(), _baseline(), previous_score=60)
        b = score_recovery(_metrics(), _baseline(), previous_score=60)
        assert a.reasoning == b.reasoning
        assert a.reasoning.startswith("Recovery Score: 79/100 (GREEN zone).")

    def test_reasoning_names_top_contributors(self):
        result = score_recovery(_metrics(), _baseline())
        text = generate_reasoning(
            result.score, result.zone, result.components, result.edge_cases,
        )
        assert "Top contributors: HRV, Sleep Quality." in text
