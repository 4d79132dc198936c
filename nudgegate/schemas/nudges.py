"""
Nudge governance schemas.

POST /nudges/evaluate              NudgeEvaluateRequest -> NudgeDecisionResponse
POST /nudges/{nudge_id}/feedback   NudgeFeedbackRequest -> NudgeFeedbackResponse
"""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

EvidenceLevel = Literal["Very High", "High", "Moderate", "Emerging"]
Priority = Literal["CRITICAL", "ADAPTIVE", "STANDARD"]
Feedback = Literal["completed", "dismissed", "snoozed"]


class ProtocolIn(BaseModel):
    id: str = Field(min_length=1, max_length=128)
    name: str = Field(min_length=1, max_length=256)
    category: Optional[str] = Field(
        default=None, description="Foundation | Performance | Recovery | Optimization | Meta"
    )
    module_id: Optional[str] = None
    benefits: Optional[str] = None
    description: Optional[str] = None
    evidence_level: Optional[EvidenceLevel] = None


class NudgeEvaluateRequest(BaseModel):
    nudge_id: str = Field(min_length=1, max_length=128)
    protocol: ProtocolIn
    priority: Priority = "STANDARD"
    is_morning_anchor: bool = False
    device_timezone: Optional[str] = None
    meeting_hours_today: Optional[float] = Field(default=None, ge=0, le=24)
    batch: list[ProtocolIn] = Field(
        default_factory=list,
        description="Other candidates in the same delivery batch, for conflict checks.",
    )
    at: Optional[datetime] = Field(
        default=None,
        description="Evaluation instant. Defaults to server time; set for replays and backfills.",
    )


class ConfidenceOut(BaseModel):
    overall: float
    factors: dict[str, float]
    should_suppress: bool
    reasoning: str


class MVDDecisionOut(BaseModel):
    active: bool
    type: Optional[str] = None
    trigger: Optional[str] = None
    action: str
    approved: bool


class NudgeDecisionResponse(BaseModel):
    nudge_id: str
    protocol_id: str
    protocol_name: str
    priority: Priority
    should_deliver: bool
    suppressed_by: Optional[str] = None
    reason: Optional[str] = None
    rules_checked: list[str]
    was_overridden: bool
    overridden_rule: Optional[str] = None
    overridden_rules: list[str]
    confidence: ConfidenceOut
    recovery_score: Optional[int] = None
    recovery_zone: Optional[str] = None
    mvd: MVDDecisionOut
    user_local_hour: int
    evaluated_at: str
    narrative: Optional[str] = None
    replayed: bool = False


class NudgeFeedbackRequest(BaseModel):
    feedback: Feedback
    rating: Optional[int] = Field(default=None, ge=1, le=5)


class NudgeFeedbackResponse(BaseModel):
    nudge_id: str
    feedback: Feedback
    rating: Optional[int] = None
    feedback_at: str
