"""
Tests for the memory store.

Covers:
- store / dedupe / reinforce
- decay and prune (expired, weak, overflow)
- relevance scoring and retrieval
- /memory routes, including per-user isolation
"""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace as NS

import pytest

from nudgegate.core.config import settings
from nudgegate.models.user_memory import UserMemory
from nudgegate.services.memory import (
    apply_memory_decay,
    calculate_relevance,
    decay_confidence,
    get_relevant_memories,
    memory_from_feedback,
    memory_stats,
    prune_memories,
    reinforce_memory,
    store_memory,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Write path
# ---------------------------------------------------------------------------

class TestStore:
    def test_new_memory_defaults(self, db, user_id):
        memory, created = store_memory(db, user_id, "nudge_feedback", "User completed nudge", now=T0)
        assert created is True
        assert memory.confidence == 0.5
        assert memory.evidence_count == 1
        assert memory.decay_rate == 0.05
        assert memory.expires_at.replace(tzinfo=timezone.utc) == T0 + timedelta(days=30)

    def test_stated_preference_never_expires(self, db, user_id):
        memory, _ = store_memory(db, user_id, "stated_preference", "I like cold showers", now=T0)
        assert memory.expires_at is None

    def test_duplicate_is_reinforced(self, db, user_id):
        first, _ = store_memory(db, user_id, "stated_preference", "I prefer morning workouts")
        second, created = store_memory(db, user_id, "stated_preference", "I PREFER MORNING WORKOUTS")
        assert created is False
        assert second.id == first.id
        assert second.confidence == pytest.approx(0.55)
        assert second.evidence_count == 2

    def test_same_content_other_type_is_new(self, db, user_id):
        store_memory(db, user_id, "stated_preference", "Mornings")
        _, created = store_memory(db, user_id, "preferred_time", "Mornings")
        assert created is True

    def test_decay_rate_is_clamped(self, db, user_id):
        memory, _ = store_memory(db, user_id, "pattern_detected", "Walks at lunch", decay_rate=0.5)
        assert memory.decay_rate == 0.1

    def test_feedback_memory(self, db, user_id):
        memory = memory_from_feedback(db, user_id, "n-1", "proto_nsdr", "dismissed")
        assert memory.content == "User dismissed nudge for protocol proto_nsdr"
        assert memory.confidence == 0.5
        assert memory.source_protocol_id == "proto_nsdr"
        assert memory.source_nudge_id == "n-1"


class TestReinforce:
    def test_confidence_cap(self):
        memory = UserMemory(confidence=0.95, evidence_count=1, decay_rate=0.05)
        reinforce_memory(memory, now=T0)
        assert memory.confidence == 0.95

    def test_moves_toward_one(self):
        memory = UserMemory(confidence=0.6, evidence_count=1, decay_rate=0.05)
        reinforce_memory(memory, {"source": "test"}, now=T0)
        assert memory.confidence == pytest.approx(0.64)
        assert memory.context == '{"source": "test"}'
        assert memory.last_used_at == T0

    def test_decay_rate_halves_at_five_evidence(self):
        memory = UserMemory(confidence=0.6, evidence_count=4, decay_rate=0.05)
        reinforce_memory(memory, now=T0)
        assert memory.evidence_count == 5
        assert memory.decay_rate == pytest.approx(0.025)

    def test_decay_rate_floor(self):
        memory = UserMemory(confidence=0.6, evidence_count=9, decay_rate=0.015)
        reinforce_memory(memory, now=T0)
        assert memory.decay_rate == 0.01


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------

class TestDecay:
    def test_formula(self):
        assert decay_confidence(0.8, 0.05, 2) == pytest.approx(0.8 * 0.95 ** 2)
        assert decay_confidence(0.8, 0.05, 0) == 0.8

    def test_two_weeks(self, db, user_id):
        memory, _ = store_memory(db, user_id, "stated_preference", "I like tea", confidence=0.8, now=T0)
        assert apply_memory_decay(db, user_id, now=T0 + timedelta(days=14)) == 1
        db.refresh(memory)
        assert memory.confidence == pytest.approx(0.8 * 0.95 ** 2)

    def test_skips_recently_decayed(self, db, user_id):
        memory, _ = store_memory(
            db, user_id, "pattern_detected", "Runs on Sundays",
            confidence=0.8, decay_rate=0.05, now=T0,
        )
        apply_memory_decay(db, user_id, now=T0 + timedelta(days=14))
        assert apply_memory_decay(db, user_id, now=T0 + timedelta(days=14, hours=6)) == 0
        db.refresh(memory)
        assert memory.confidence == pytest.approx(0.8 * 0.95 ** 2)


class TestPrune:
    def test_expired_and_weak(self, db, user_id):
        store_memory(db, user_id, "nudge_feedback", "Old feedback", now=T0 - timedelta(days=31))
        store_memory(db, user_id, "pattern_detected", "Faint pattern", confidence=0.05, now=T0)
        keep, _ = store_memory(db, user_id, "stated_preference", "I like tea", confidence=0.9, now=T0)

        assert prune_memories(db, user_id, now=T0) == 2
        remaining = db.query(UserMemory).filter(UserMemory.user_id == user_id).all()
        assert [m.id for m in remaining] == [keep.id]

    def test_overflow_drops_lowest_ranked(self, db, user_id, monkeypatch):
        monkeypatch.setattr(settings, "MAX_MEMORIES_PER_USER", 3)
        store_memory(db, user_id, "pattern_detected", "Pattern", confidence=0.9, now=T0)
        store_memory(db, user_id, "stated_preference", "Preference", confidence=0.9, now=T0)
        store_memory(db, user_id, "nudge_feedback", "Feedback strong", confidence=0.6, now=T0)
        store_memory(db, user_id, "nudge_feedback", "Feedback weak", confidence=0.4, now=T0)

        contents = {
            m.content for m in db.query(UserMemory).filter(UserMemory.user_id == user_id).all()
        }
        assert contents == {"Preference", "Feedback strong", "Feedback weak"}

    def test_new_memory_is_never_its_own_overflow(self, db, user_id, monkeypatch):
        monkeypatch.setattr(settings, "MAX_MEMORIES_PER_USER", 3)
        for content in ("Preference one", "Preference two", "Preference three"):
            store_memory(db, user_id, "stated_preference", content, confidence=0.9, now=T0)

        memory, created = store_memory(
            db, user_id, "pattern_detected", "Pattern low", confidence=0.3, now=T0,
        )
        assert created is True
        assert memory.content == "Pattern low"
        contents = {
            m.content for m in db.query(UserMemory).filter(UserMemory.user_id == user_id).all()
        }
        assert contents == {"Preference two", "Preference three", "Pattern low"}

    def test_weak_new_memory_survives_its_insert(self, db, user_id, monkeypatch):
        monkeypatch.setattr(settings, "MAX_MEMORIES_PER_USER", 1)
        store_memory(db, user_id, "stated_preference", "Preference", confidence=0.9, now=T0)
        memory, created = store_memory(
            db, user_id, "pattern_detected", "Faint", confidence=0.05, now=T0,
        )
        assert created is True
        assert db.query(UserMemory).filter(UserMemory.user_id == user_id).one().id == memory.id


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

def _ns_memory(**kw):
    fields = dict(
        memory_type="nudge_feedback", content="", confidence=0.5,
        source_protocol_id=None, evidence_count=1,
        last_used_at=T0, created_at=T0,
    )
    fields.update(kw)
    return NS(**fields)


class TestRelevance:
    def test_protocol_match_and_recent_use(self):
        m = _ns_memory(confidence=0.4, source_protocol_id="p1")
        assert calculate_relevance(m, "p1", now=T0 + timedelta(days=1)) == pytest.approx(0.72)

    def test_stale_memory_is_discounted(self):
        m = _ns_memory(confidence=0.5)
        assert calculate_relevance(m, "p1", now=T0 + timedelta(days=40)) == pytest.approx(0.4)

    def test_preferred_time_match(self):
        m = _ns_memory(memory_type="preferred_time", content="Prefers morning sessions", confidence=0.5)
        assert calculate_relevance(m, time_of_day="morning", now=T0 + timedelta(days=10)) == pytest.approx(0.65)

    def test_capped_at_one(self):
        m = _ns_memory(confidence=0.9, source_protocol_id="p1", evidence_count=6)
        assert calculate_relevance(m, "p1", now=T0) == 1.0


class TestRetrieval:
    def test_protocol_filter_keeps_general_memories(self, db, user_id):
        store_memory(db, user_id, "nudge_feedback", "About p1", source_protocol_id="p1", now=T0)
        store_memory(db, user_id, "nudge_feedback", "About p2", source_protocol_id="p2", now=T0)
        store_memory(db, user_id, "stated_preference", "General", now=T0)

        found = get_relevant_memories(db, user_id, protocol_id="p1", now=T0 + timedelta(hours=1))
        assert {m.content for m in found} == {"About p1", "General"}
        assert found[0].content == "About p1"

    def test_expired_and_weak_are_excluded(self, db, user_id):
        store_memory(db, user_id, "nudge_feedback", "Expired", now=T0 - timedelta(days=40))
        store_memory(db, user_id, "pattern_detected", "Weak", confidence=0.05, now=T0)
        assert get_relevant_memories(db, user_id, now=T0) == []

    def test_limit(self, db, user_id):
        for i in range(5):
            store_memory(db, user_id, "pattern_detected", f"Pattern number {i}", now=T0)
        assert len(get_relevant_memories(db, user_id, limit=2, now=T0)) == 2

    def test_stats(self, db, user_id):
        store_memory(db, user_id, "nudge_feedback", "One", confidence=0.4, now=T0)
        store_memory(db, user_id, "nudge_feedback", "Two", confidence=0.6, now=T0 + timedelta(days=1))
        store_memory(db, user_id, "stated_preference", "Three", confidence=0.8, now=T0)
        stats = memory_stats(db, user_id)
        assert stats["total"] == 3
        assert stats["by_type"] == {"nudge_feedback": 2, "stated_preference": 1}
        assert stats["avg_confidence"] == pytest.approx(0.6)
        assert stats["oldest_memory"] == T0
        assert stats["newest_memory"] == T0 + timedelta(days=1)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

class TestMemoryEndpoints:
    def test_create_then_reinforce(self, client, headers):
        payload = {"memory_type": "stated_preference", "content": "I like evening walks"}
        created = client.post("/memory", headers=headers, json=payload)
        assert created.status_code == 201
        assert created.json()["reinforced"] is False

        again = client.post("/memory", headers=headers, json=payload)
        assert again.status_code == 200
        body = again.json()
        assert body["reinforced"] is True
        assert body["evidence_count"] == 2
        assert body["id"] == created.json()["id"]

    def test_context_round_trip(self, client, headers):
        resp = client.post("/memory", headers=headers, json={
            "memory_type": "pattern_detected",
            "content": "Trains after work",
            "context": {"days": ["mon", "wed"]},
        })
        assert resp.json()["context"] == {"days": ["mon", "wed"]}

    def test_list_filter(self, client, headers):
        client.post("/memory", headers=headers, json={"memory_type": "stated_preference", "content": "A"})
        client.post("/memory", headers=headers, json={"memory_type": "pattern_detected", "content": "B"})

        body = client.get("/memory", headers=headers).json()
        assert body["total"] == 2
        filtered = client.get("/memory?memory_type=pattern_detected", headers=headers).json()
        assert filtered["total"] == 1
        assert filtered["items"][0]["content"] == "B"

    def test_stats_endpoint(self, client, headers):
        client.post("/memory", headers=headers, json={
            "memory_type": "stated_preference", "content": "A", "confidence": 0.9,
        })
        body = client.get("/memory/stats", headers=headers).json()
        assert body["total"] == 1
        assert body["avg_confidence"] == 0.9

    def test_delete_one(self, client, headers):
        memory_id = client.post("/memory", headers=headers, json={
            "memory_type": "stated_preference", "content": "A",
        }).json()["id"]
        assert client.delete(f"/memory/{memory_id}", headers=headers).status_code == 204
        missing = client.delete(f"/memory/{memory_id}", headers=headers)
        assert missing.status_code == 404
        assert missing.json()["code"] == "MEMORY_NOT_FOUND"

    def test_other_user_cannot_delete(self, client, headers):
        memory_id = client.post("/memory", headers=headers, json={
            "memory_type": "stated_preference", "content": "A",
        }).json()["id"]
        other = {"X-User-Id": "someone-else"}
        assert client.delete(f"/memory/{memory_id}", headers=other).status_code == 404
        assert client.get("/memory", headers=other).json()["total"] == 0
        assert client.get("/memory", headers=headers).json()["total"] == 1

    def test_delete_all(self, client, headers):
        for content in ("A", "B", "C"):
            client.post("/memory", headers=headers, json={
                "memory_type": "pattern_detected", "content": content,
            })
        assert client.delete("/memory", headers=headers).json() == {"count": 3}
        assert client.get("/memory", headers=headers).json()["total"] == 0

    def test_post_at_cap_keeps_new_memory(self, client, headers, monkeypatch):
        monkeypatch.setattr(settings, "MAX_MEMORIES_PER_USER", 1)
        client.post("/memory", headers=headers, json={
            "memory_type": "stated_preference", "content": "Strong", "confidence": 0.9,
        })
        resp = client.post("/memory", headers=headers, json={
            "memory_type": "pattern_detected", "content": "Weak", "confidence": 0.3,
        })
        assert resp.status_code == 201
        body = client.get("/memory", headers=headers).json()
        assert body["total"] == 1
        assert body["items"][0]["content"] == "Weak"

    def test_fresh_memories_are_not_decayed(self, client, headers):
        client.post("/memory", headers=headers, json={"memory_type": "stated_preference", "content": "A"})
        assert client.post("/memory/decay", headers=headers).json() == {"count": 0}
        assert client.post("/memory/prune", headers=headers).json() == {"count": 0}
