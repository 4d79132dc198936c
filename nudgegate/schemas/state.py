"""
User delivery preference schemas.

GET /state/preferences -> PreferencesResponse
PUT /state/preferences PreferencesUpdateRequest -> PreferencesResponse
"""
from typing import Literal, Optional
from pydantic import BaseModel, Field

PrimaryGoal = Literal["better_sleep", "more_energy", "sharper_focus", "faster_recovery"]


class PreferencesUpdateRequest(BaseModel):
    timezone: Optional[str] = Field(default=None, description="Home IANA timezone.")
    quiet_hours_start: Optional[int] = Field(default=None, ge=0, le=23)
    quiet_hours_end: Optional[int] = Field(default=None, ge=0, le=23)
    primary_goal: Optional[PrimaryGoal] = None


class PreferencesResponse(BaseModel):
    timezone: str
    quiet_hours_start: int
    quiet_hours_end: int
    primary_goal: Optional[str] = None
