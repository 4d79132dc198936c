"""
Recovery score schemas.

GET /recovery/{day} -> RecoveryResponse
"""
from typing import Optional
from pydantic import BaseModel, Field


class ComponentResponse(BaseModel):
    raw: Optional[float] = None
    score: int = Field(ge=0, le=100)
    comparison: str
    weight: float
    effective_weight: float
    available: bool


class TemperaturePenaltyResponse(BaseModel):
    deviation: Optional[float] = None
    penalty: int = Field(le=0)


class EdgeCasesResponse(BaseModel):
    alcohol_detected: bool
    illness_risk: str = Field(description='"none" | "low" | "medium" | "high"')
    travel_detected: bool
    menstrual_phase_adjustment: bool


class RecommendationResponse(BaseModel):
    type: str
    headline: str
    body: str
    protocols: list[str]
    activate_mvd: bool = False


class RecoveryResponse(BaseModel):
    day: str
    score: int = Field(ge=0, le=100)
    zone: str = Field(description='"red" (<34) | "yellow" (<67) | "green"')
    confidence: float
    components: dict[str, ComponentResponse]
    temperature_penalty: TemperaturePenaltyResponse
    edge_cases: EdgeCasesResponse
    reasoning: str
    recommendations: list[RecommendationResponse]
    data_completeness: float = Field(description="Percent of the five components with input.")
    missing_inputs: list[str]
