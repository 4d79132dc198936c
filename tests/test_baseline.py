"""
Tests for the baseline tracker and the metrics ingest endpoints.

Covers:
- compute_baseline_stats - windowing, missing values, log-space HRV, sleep target
- confidence_tier        - thresholds and monotonicity
- POST /metrics/daily    - baseline growth, readiness gate, idempotent re-post
- GET  /baseline, PUT /baseline/cycle-tracking
"""
import math
from types import SimpleNamespace as NS

import pytest

from nudgegate.services.baseline import (
    WINDOW_SIZE,
    baseline_status,
    compute_baseline_stats,
    confidence_tier,
)


def _row(**kw):
    fields = dict(hrv_avg=None, rhr_avg=None, sleep_hours=None, respiratory_rate=None)
    fields.update(kw)
    return NS(**fields)


# ---------------------------------------------------------------------------
# Unit tests on pure functions
# ---------------------------------------------------------------------------

class TestComputeBaselineStats:
    def test_sample_std_dev(self):
        rows = [_row(rhr_avg=60), _row(rhr_avg=62), _row(rhr_avg=64)]
        stats = compute_baseline_stats(rows)
        assert stats.rhr.mean == pytest.approx(62.0)
        assert stats.rhr.std_dev == pytest.approx(2.0)
        assert stats.rhr.count == 3

    def test_hrv_is_summarized_in_log_space(self):
        rows = [_row(hrv_avg=40), _row(hrv_avg=50), _row(hrv_avg=60)]
        stats = compute_baseline_stats(rows)
        expected = (math.log(40) + math.log(50) + math.log(60)) / 3
        assert stats.hrv_ln.mean == pytest.approx(expected)
        assert stats.hrv_coefficient_of_variation == pytest.approx(10 / 50)

    def test_missing_and_zero_values_are_skipped(self):
        rows = [_row(hrv_avg=None), _row(hrv_avg=0), _row(hrv_avg=55), _row(hrv_avg=45)]
        stats = compute_baseline_stats(rows)
        assert stats.hrv_ln.count == 2
        assert stats.rhr.count == 0
        assert stats.rhr.mean is None

    def test_single_sample_has_zero_std(self):
        stats = compute_baseline_stats([_row(rhr_avg=58)])
        assert stats.rhr.mean == 58
        assert stats.rhr.std_dev == 0.0

    def test_window_keeps_most_recent_values(self):
        # newest first: 100, 99, ... 81
        rows = [_row(rhr_avg=100 - i) for i in range(20)]
        stats = compute_baseline_stats(rows)
        assert stats.rhr.count == WINDOW_SIZE
        assert stats.rhr.mean == pytest.approx(sum(range(87, 101)) / WINDOW_SIZE)

    def test_sleep_target_is_75th_percentile(self):
        rows = [_row(sleep_hours=h) for h in (6, 9, 7, 8)]
        stats = compute_baseline_stats(rows)
        assert stats.sleep_duration_target_minutes == 540
        assert stats.sleep_count == 4

    def test_sleep_target_defaults_to_seven_hours(self):
        stats = compute_baseline_stats([_row(rhr_avg=60)])
        assert stats.sleep_duration_target_minutes == 420


class TestConfidenceTier:
    @pytest.mark.parametrize("count,tier", [
        (0, "low"), (6, "low"), (7, "medium"), (13, "medium"), (14, "high"), (90, "high"),
    ])
    def test_thresholds(self, count, tier):
        assert confidence_tier(count) == tier

    def test_monotonic_in_sample_count(self):
        order = {"low": 0, "medium": 1, "high": 2}
        ranks = [order[confidence_tier(n)] for n in range(40)]
        assert ranks == sorted(ranks)

    def test_status_without_baseline(self):
        status = baseline_status(None, 3)
        assert status["ready"] is False
        assert status["days_needed"] == 3
        assert "0/3" in status["message"]


# ---------------------------------------------------------------------------
# Integration tests
# ---------------------------------------------------------------------------

_DAYS = [
    ("2026-02-01", dict(hrv_avg=50, rhr_avg=60, sleep_hours=7.0, respiratory_rate=14.0)),
    ("2026-02-02", dict(hrv_avg=55, rhr_avg=58, sleep_hours=7.5, respiratory_rate=14.5)),
    ("2026-02-03", dict(hrv_avg=60, rhr_avg=62, sleep_hours=8.0, respiratory_rate=15.0)),
]


def _post_day(client, headers, day, **values):
    payload = {
        "day": day,
        "sleep_efficiency": 88,
        "deep_pct": 18,
        "rem_pct": 21,
        "temperature_deviation": 0.1,
        **values,
    }
    return client.post("/metrics/daily", json=payload, headers=headers)


class TestMetricsIngest:
    def test_new_user_baseline_defaults(self, client, headers):
        r = client.get("/baseline", headers=headers)
        assert r.status_code == 200
        body = r.json()
        assert body["sample_count"] == 0
        assert body["confidence_level"] == "low"
        assert body["sleep_duration_target_minutes"] == 420
        assert body["status"]["ready"] is False

    def test_recovery_waits_for_minimum_baseline(self, client, headers):
        responses = [_post_day(client, headers, day, **values) for day, values in _DAYS]
        assert [r.status_code for r in responses] == [201, 201, 201]
        assert responses[0].json()["recovery"] is None
        assert responses[1].json()["recovery"] is None

        third = responses[2].json()
        assert third["baseline"]["sample_count"] == 3
        assert third["baseline"]["status"]["ready"] is True
        recovery = third["recovery"]
        assert 0 <= recovery["score"] <= 100
        assert recovery["zone"] in ("red", "yellow", "green")
        assert recovery["data_completeness"] == 100
        assert recovery["missing_inputs"] == []

    def test_stored_score_is_readable(self, client, headers):
        for day, values in _DAYS:
            last = _post_day(client, headers, day, **values)
        scored = last.json()["recovery"]

        r = client.get("/recovery/2026-02-03", headers=headers)
        assert r.status_code == 200
        body = r.json()
        assert body["score"] == scored["score"]
        assert body["zone"] == scored["zone"]
        assert body["temperature_penalty"]["deviation"] == pytest.approx(0.1)
        assert set(body["components"]) == {
            "hrv", "rhr", "sleep_quality", "sleep_duration", "respiratory_rate",
        }

        assert client.get("/recovery/2026-02-01", headers=headers).status_code == 404

    def test_repost_does_not_grow_sample_count(self, client, headers):
        for day, values in _DAYS:
            _post_day(client, headers, day, **values)
        r = _post_day(client, headers, "2026-02-01", hrv_avg=52)
        assert r.status_code == 201
        assert r.json()["baseline"]["sample_count"] == 3

    def test_second_score_reports_trend(self, client, headers):
        for day, values in _DAYS:
            _post_day(client, headers, day, **values)
        r = _post_day(client, headers, "2026-02-04", hrv_avg=58, rhr_avg=59, sleep_hours=7.8)
        reasoning = r.json()["recovery"]["reasoning"]
        assert "from previous score" in reasoning

    def test_other_users_do_not_share_baselines(self, client, headers):
        for day, values in _DAYS:
            _post_day(client, headers, day, **values)
        r = client.get("/baseline", headers={"X-User-Id": headers["X-User-Id"] + "-other"})
        assert r.json()["sample_count"] == 0


class TestCycleTracking:
    def test_enable_and_disable(self, client, headers):
        r = client.put(
            "/baseline/cycle-tracking", json={"enabled": True, "cycle_day": 20}, headers=headers,
        )
        assert r.status_code == 200
        assert r.json()["menstrual_cycle_tracking"] is True
        assert r.json()["cycle_day"] == 20

        r = client.put(
            "/baseline/cycle-tracking", json={"enabled": False, "cycle_day": 20}, headers=headers,
        )
        assert r.json()["menstrual_cycle_tracking"] is False
        assert r.json()["cycle_day"] is None

    def test_cycle_day_out_of_range(self, client, headers):
        r = client.put(
            "/baseline/cycle-tracking", json={"enabled": True, "cycle_day": 0}, headers=headers,
        )
        assert r.status_code == 422
