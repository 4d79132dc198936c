"""
Unit tests for decision explanations and the output safety scan.
"""
from nudgegate.services.narrative import (
    SAFE_FALLBACK,
    build_prompt,
    explain_decision,
    scan_output,
)

DECISION = {
    "protocol_id": "proto_nsdr",
    "protocol_name": "NSDR session",
    "should_deliver": False,
    "reason": "2-hour cooldown not elapsed (30 min remaining)",
    "confidence_reasoning": "Moderate confidence (62%).",
    "recovery_score": 41,
    "mvd_active": True,
    "mvd_type": "full",
}


class TestScan:
    def test_empty_is_safe(self):
        assert scan_output("").safe
        assert scan_output(None).safe

    def test_blocked_phrase(self):
        result = scan_output("Maybe   STOP\nEATING for a while")
        assert result.safe is False
        assert result.flagged == ["stop eating"]

    def test_curly_apostrophe_is_normalized(self):
        assert scan_output("You’re doing well, keep going.").safe


class TestPrompt:
    def test_includes_decision_facts(self):
        prompt = build_prompt(DECISION)
        assert "Protocol: NSDR session" in prompt
        assert "Delivered: no" in prompt
        assert "Suppression reason: 2-hour cooldown not elapsed (30 min remaining)" in prompt
        assert "Recovery score today: 41/100" in prompt
        assert "Minimum Viable Day mode is on (full)." in prompt

    def test_falls_back_to_protocol_id(self):
        prompt = build_prompt({"protocol_id": "proto_x", "should_deliver": True})
        assert "Protocol: proto_x" in prompt
        assert "Suppression reason" not in prompt


class TestExplain:
    def test_no_completion_configured(self):
        assert explain_decision(DECISION) is None

    def test_safe_text_is_returned(self):
        assert explain_decision(DECISION, lambda p: " Rest first today. ") == "Rest first today."

    def test_blank_text_uses_fallback(self):
        assert explain_decision(DECISION, lambda p: "   ") == SAFE_FALLBACK

    def test_unsafe_text_uses_fallback(self):
        assert explain_decision(DECISION, lambda p: "You could overdose on caffeine") == SAFE_FALLBACK

    def test_failing_completion_uses_fallback(self):
        def broken(prompt):
            raise TimeoutError("upstream timed out")

        assert explain_decision(DECISION, broken) == SAFE_FALLBACK
