"""
Minimum Viable Day schemas.
"""
from typing import Optional
from pydantic import BaseModel, Field


class MVDStatusResponse(BaseModel):
    active: bool
    mvd_type: Optional[str] = None
    trigger: Optional[str] = None
    activated_at: Optional[str] = None
    exit_condition: Optional[str] = None
    last_checked_at: Optional[str] = None
    approved_protocols: list[str] = Field(default_factory=list)
    summary: str


class MVDDeactivateRequest(BaseModel):
    reason: str = Field(default="Manual deactivation", min_length=1, max_length=128)


class MVDCheckRequest(BaseModel):
    device_timezone: Optional[str] = Field(
        default=None, description="IANA zone reported by the device, e.g. Europe/Madrid."
    )
    meeting_hours_today: Optional[float] = Field(default=None, ge=0, le=24)


class MVDCheckResponse(BaseModel):
    action: str = Field(description='"activated" | "deactivated" | "unchanged"')
    reason: str
    recovery_score: Optional[int] = None
    status: MVDStatusResponse


class MVDHistoryResponse(BaseModel):
    id: int
    mvd_type: str
    trigger: str
    activated_at: str
    deactivated_at: Optional[str] = None
    duration_hours: Optional[float] = None
    deactivation_reason: Optional[str] = None


class MVDHistoryListResponse(BaseModel):
    total: int
    items: list[MVDHistoryResponse]
