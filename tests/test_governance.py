"""
End-to-end tests for POST /nudges/evaluate and nudge feedback.

Every evaluation pins `at` so cooldown, daily counters and local hour are
deterministic. Users default to UTC with quiet hours 22:00-06:00.
"""
import json
from datetime import date

import pytest

from nudgegate.core.config import settings
from nudgegate.main import app
from nudgegate.models.recovery_score import RecoveryScore
from nudgegate.models.user_state import UserState
from nudgegate.services.narrative import SAFE_FALLBACK
from nudgegate.services.recovery import zone_for

MORNING_LIGHT = {
    "id": "proto_morning_light",
    "name": "Morning light exposure",
    "category": "Foundation",
    "module_id": "morning_routine",
    "evidence_level": "Very High",
}
COLD_PLUNGE = {"id": "proto_cold_plunge", "name": "Cold plunge", "category": "Recovery"}


def store_recovery(db, user_id, day, score):
    db.add(RecoveryScore(
        user_id=user_id, day=day, score=score, zone=zone_for(score), confidence=0.9,
        components="{}", edge_cases="{}", recommendations="[]", reasoning="stored",
    ))
    db.commit()


def _evaluate(client, headers, nudge_id, at, priority="STANDARD", protocol=None, **extra):
    payload = {
        "nudge_id": nudge_id,
        "protocol": protocol or MORNING_LIGHT,
        "priority": priority,
        "at": at,
    }
    payload.update(extra)
    resp = client.post("/nudges/evaluate", headers=headers, json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestDelivery:
    def test_clean_slate_is_delivered(self, client, headers):
        body = _evaluate(client, headers, "n1", "2026-03-10T09:00:00Z")
        assert body["should_deliver"] is True
        assert body["suppressed_by"] is None
        assert len(body["rules_checked"]) == 9
        assert body["user_local_hour"] == 9
        assert body["recovery_score"] is None
        assert body["mvd"]["active"] is False
        assert body["mvd"]["approved"] is True
        assert body["confidence"]["overall"] >= 0.4
        assert body["narrative"] is None
        assert body["replayed"] is False

    def test_retry_replays_stored_decision(self, client, headers):
        first = _evaluate(client, headers, "n1", "2026-03-10T09:00:00Z")
        retry = _evaluate(client, headers, "n1", "2026-03-10T23:30:00Z", priority="CRITICAL")
        assert retry["replayed"] is True
        assert retry["should_deliver"] == first["should_deliver"]
        assert retry["evaluated_at"] == first["evaluated_at"]
        assert retry["priority"] == "STANDARD"

    def test_same_nudge_id_for_other_user_is_independent(self, client, headers):
        _evaluate(client, headers, "shared", "2026-03-10T09:00:00Z")
        other = _evaluate(client, {"X-User-Id": headers["X-User-Id"] + "-b"}, "shared", "2026-03-10T09:00:00Z")
        assert other["replayed"] is False


class TestRules:
    def test_cooldown_blocks_standard(self, client, headers):
        _evaluate(client, headers, "n1", "2026-03-10T09:00:00Z")
        body = _evaluate(client, headers, "n2", "2026-03-10T10:00:00Z")
        assert body["should_deliver"] is False
        assert body["suppressed_by"] == "cooldown"
        assert body["reason"] == "2-hour cooldown not elapsed (60 min remaining)"

    def test_critical_overrides_cooldown(self, client, headers):
        _evaluate(client, headers, "n1", "2026-03-10T09:00:00Z")
        body = _evaluate(client, headers, "n2", "2026-03-10T10:00:00Z", priority="CRITICAL")
        assert body["should_deliver"] is True
        assert body["was_overridden"] is True
        assert body["overridden_rule"] == "cooldown"

    def test_cooldown_ends_after_two_hours(self, client, headers):
        _evaluate(client, headers, "n1", "2026-03-10T09:00:00Z")
        assert _evaluate(client, headers, "n2", "2026-03-10T11:00:00Z")["should_deliver"] is True

    def test_quiet_hours_hold_even_critical(self, client, headers):
        body = _evaluate(client, headers, "n1", "2026-03-10T23:00:00Z", priority="CRITICAL")
        assert body["suppressed_by"] == "quiet_hours"
        assert body["rules_checked"] == ["daily_cap", "quiet_hours"]

    def test_daily_cap(self, client, headers):
        for i in range(5):
            body = _evaluate(client, headers, f"c{i}", f"2026-03-10T09:0{i}:00Z", priority="CRITICAL")
            assert body["should_deliver"] is True

        sixth = _evaluate(client, headers, "c5", "2026-03-10T09:10:00Z", priority="CRITICAL")
        assert sixth["should_deliver"] is True
        assert sixth["overridden_rules"] == ["daily_cap", "cooldown"]

        standard = _evaluate(client, headers, "s1", "2026-03-10T12:00:00Z")
        assert standard["suppressed_by"] == "daily_cap"

    def test_counters_reset_next_local_day(self, client, headers):
        for i in range(5):
            _evaluate(client, headers, f"c{i}", f"2026-03-10T09:0{i}:00Z", priority="CRITICAL")
        body = _evaluate(client, headers, "next", "2026-03-11T09:00:00Z")
        assert body["should_deliver"] is True

    def test_fatigue_after_three_dismissals(self, client, headers):
        for i in range(3):
            _evaluate(client, headers, f"d{i}", f"2026-03-10T09:0{i}:00Z", priority="CRITICAL")
            resp = client.post(f"/nudges/d{i}/feedback", headers=headers, json={"feedback": "dismissed"})
            assert resp.status_code == 200

        body = _evaluate(client, headers, "d3", "2026-03-10T09:30:00Z", priority="CRITICAL")
        assert body["suppressed_by"] == "fatigue_detection"
        assert body["reason"] == "3+ dismissals today - pausing until tomorrow"

    def test_dismissing_suppressed_nudges_is_not_fatigue(self, client, headers):
        for i in range(3):
            body = _evaluate(client, headers, f"q{i}", f"2026-03-10T23:0{i}:00Z", priority="CRITICAL")
            assert body["should_deliver"] is False
            client.post(f"/nudges/q{i}/feedback", headers=headers, json={"feedback": "dismissed"})

        body = _evaluate(client, headers, "morning", "2026-03-11T09:00:00Z")
        assert body["should_deliver"] is True

    def test_meeting_heavy_day(self, client, headers):
        body = _evaluate(client, headers, "m1", "2026-03-10T09:00:00Z", meeting_hours_today=3)
        assert body["suppressed_by"] == "meeting_awareness"
        adaptive = _evaluate(
            client, headers, "m2", "2026-03-10T09:00:00Z", priority="ADAPTIVE", meeting_hours_today=3,
        )
        assert adaptive["should_deliver"] is True

    def test_local_hour_follows_user_timezone(self, client, headers):
        client.put("/state/preferences", headers=headers, json={"timezone": "America/New_York"})
        body = _evaluate(client, headers, "tz", "2026-03-10T03:00:00Z")
        assert body["user_local_hour"] == 23
        assert body["suppressed_by"] == "quiet_hours"

    def test_custom_quiet_hours(self, client, headers):
        client.put(
            "/state/preferences", headers=headers,
            json={"quiet_hours_start": 8, "quiet_hours_end": 10},
        )
        body = _evaluate(client, headers, "q", "2026-03-10T09:00:00Z")
        assert body["reason"] == "Quiet hours (8:00-10:00)"


class TestRecoveryFreshness:
    def test_old_red_score_is_ignored(self, client, headers, db, user_id):
        store_recovery(db, user_id, date(2026, 2, 8), 20)
        body = _evaluate(client, headers, "old", "2026-03-10T14:00:00Z")
        assert body["recovery_score"] is None
        assert body["mvd"]["active"] is False
        assert body["mvd"]["action"] == "unchanged"
        assert body["should_deliver"] is True

    def test_todays_red_score_counts(self, client, headers, db, user_id):
        store_recovery(db, user_id, date(2026, 3, 10), 20)
        body = _evaluate(client, headers, "today", "2026-03-10T14:00:00Z")
        assert body["recovery_score"] == 20
        assert body["recovery_zone"] == "red"
        assert body["mvd"]["trigger"] == "low_recovery"
        assert body["suppressed_by"] == "low_recovery"


class TestMVDGate:
    def test_only_approved_protocols_during_mvd(self, client, headers):
        assert client.post("/mvd/activate", headers=headers).status_code == 200

        blocked = _evaluate(client, headers, "cp", "2026-03-10T09:00:00Z", protocol=COLD_PLUNGE)
        assert blocked["suppressed_by"] == "mvd_active"
        assert blocked["mvd"]["approved"] is False
        assert blocked["mvd"]["type"] == "full"

        allowed = _evaluate(client, headers, "ml", "2026-03-10T09:05:00Z")
        assert allowed["should_deliver"] is True
        assert allowed["mvd"]["approved"] is True

    def test_heavy_calendar_activates_during_evaluation(self, client, headers):
        body = _evaluate(
            client, headers, "hc", "2026-03-10T09:00:00Z",
            protocol=COLD_PLUNGE, priority="CRITICAL", meeting_hours_today=5,
        )
        assert body["mvd"]["action"] == "activated"
        assert body["mvd"]["trigger"] == "heavy_calendar"
        assert body["suppressed_by"] == "mvd_active"


class TestFeedback:
    def test_feedback_creates_memory(self, client, headers):
        _evaluate(client, headers, "f1", "2026-03-10T09:00:00Z")
        resp = client.post("/nudges/f1/feedback", headers=headers, json={"feedback": "completed", "rating": 5})
        assert resp.status_code == 200
        body = resp.json()
        assert body["feedback"] == "completed"
        assert body["rating"] == 5

        memories = client.get("/memory", headers=headers).json()
        assert memories["total"] == 1
        item = memories["items"][0]
        assert item["memory_type"] == "nudge_feedback"
        assert item["content"] == "User completed nudge for protocol proto_morning_light"
        assert item["confidence"] == 0.6

    def test_completed_feedback_raises_next_confidence(self, client, headers):
        first = _evaluate(client, headers, "f1", "2026-03-10T09:00:00Z")
        client.post("/nudges/f1/feedback", headers=headers, json={"feedback": "completed"})
        second = _evaluate(client, headers, "f2", "2026-03-10T12:00:00Z")
        assert second["confidence"]["factors"]["memory_support"] > first["confidence"]["factors"]["memory_support"]

    def test_rating_out_of_range(self, client, headers):
        _evaluate(client, headers, "f1", "2026-03-10T09:00:00Z")
        resp = client.post("/nudges/f1/feedback", headers=headers, json={"feedback": "completed", "rating": 6})
        assert resp.status_code == 422

    def test_unknown_feedback(self, client, headers):
        _evaluate(client, headers, "f1", "2026-03-10T09:00:00Z")
        resp = client.post("/nudges/f1/feedback", headers=headers, json={"feedback": "loved"})
        assert resp.status_code == 422


class TestValidation:
    def test_unknown_priority(self, client, headers):
        resp = client.post("/nudges/evaluate", headers=headers, json={
            "nudge_id": "x", "protocol": MORNING_LIGHT, "priority": "URGENT",
        })
        assert resp.status_code == 422
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_unknown_device_timezone(self, client, headers):
        resp = client.post("/nudges/evaluate", headers=headers, json={
            "nudge_id": "x", "protocol": MORNING_LIGHT, "device_timezone": "Atlantis/Capital",
        })
        assert resp.status_code == 422
        assert resp.json()["code"] == "INVALID_TIMEZONE"


class TestNarrativeAndDashboard:
    def test_narrative_when_enabled(self, client, headers, monkeypatch):
        prompts = []

        def complete(prompt):
            prompts.append(prompt)
            return "  Bright light now helps you wake up.  "

        monkeypatch.setattr(settings, "NARRATIVE_ENABLED", True)
        monkeypatch.setattr(app.state, "text_completion", complete)
        body = _evaluate(client, headers, "nar", "2026-03-10T09:00:00Z")
        assert body["narrative"] == "Bright light now helps you wake up."
        assert "Protocol: Morning light exposure" in prompts[0]
        assert "Delivered: yes" in prompts[0]

    def test_unsafe_narrative_falls_back(self, client, headers, monkeypatch):
        monkeypatch.setattr(settings, "NARRATIVE_ENABLED", True)
        monkeypatch.setattr(app.state, "text_completion", lambda prompt: "Just skip meals today.")
        body = _evaluate(client, headers, "nar", "2026-03-10T09:00:00Z")
        assert body["narrative"] == SAFE_FALLBACK
        assert body["should_deliver"] is True

    def test_dashboard_mirror(self, client, headers, db, user_id):
        _evaluate(client, headers, "dash", "2026-03-10T09:00:00Z")
        state = db.query(UserState).filter(UserState.user_id == user_id).one()
        dashboard = json.loads(state.dashboard)
        assert dashboard["last_decision"]["nudge_id"] == "dash"
        assert dashboard["last_decision"]["should_deliver"] is True
        assert dashboard["mvd"]["active"] is False
