"""
Metrics ingest and baseline schemas.

POST /metrics/daily          DailyMetricsRequest -> MetricsIngestResponse
GET  /baseline               -> BaselineResponse
PUT  /baseline/cycle-tracking CycleTrackingRequest -> BaselineResponse
"""
from datetime import date
from typing import Optional
from pydantic import BaseModel, Field

from nudgegate.schemas.recovery import RecoveryResponse


class DailyMetricsRequest(BaseModel):
    day: date = Field(description="Calendar day the metrics summarize.")
    hrv_avg: Optional[float] = Field(default=None, ge=0, description="Average HRV in ms.")
    rhr_avg: Optional[float] = Field(default=None, ge=0, description="Resting heart rate, bpm.")
    sleep_hours: Optional[float] = Field(default=None, ge=0, le=24)
    sleep_efficiency: Optional[float] = Field(default=None, ge=0, le=100)
    deep_pct: Optional[float] = Field(default=None, ge=0, le=100)
    rem_pct: Optional[float] = Field(default=None, ge=0, le=100)
    respiratory_rate: Optional[float] = Field(default=None, ge=0, description="Breaths per minute.")
    temperature_deviation: Optional[float] = Field(
        default=None, ge=-5, le=5, description="Deviation from personal baseline, Celsius."
    )
    steps: Optional[int] = Field(default=None, ge=0)
    active_energy: Optional[float] = Field(default=None, ge=0)


class CycleTrackingRequest(BaseModel):
    enabled: bool
    cycle_day: Optional[int] = Field(default=None, ge=1, le=45)


class BaselineStatusResponse(BaseModel):
    ready: bool
    sample_count: int
    days_needed: int
    confidence_level: str
    message: str


class BaselineResponse(BaseModel):
    hrv_ln_mean: Optional[float] = None
    hrv_ln_std_dev: Optional[float] = None
    hrv_coefficient_of_variation: Optional[float] = None
    rhr_mean: Optional[float] = None
    rhr_std_dev: Optional[float] = None
    respiratory_rate_mean: Optional[float] = None
    respiratory_rate_std_dev: Optional[float] = None
    sleep_duration_target_minutes: float
    temperature_baseline_celsius: float
    sample_count: int
    confidence_level: str
    menstrual_cycle_tracking: bool
    cycle_day: Optional[int] = None
    status: BaselineStatusResponse


class MetricsIngestResponse(BaseModel):
    day: str
    baseline: BaselineResponse
    recovery: Optional[RecoveryResponse] = Field(
        default=None, description="Null while the baseline is still building."
    )
