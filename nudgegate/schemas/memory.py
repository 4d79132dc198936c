"""
Memory store schemas.
"""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field

from nudgegate.models.user_memory import MemoryType


class MemoryCreateRequest(BaseModel):
    memory_type: MemoryType
    content: str = Field(min_length=1, max_length=2000)
    context: Optional[dict[str, Any]] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    decay_rate: Optional[float] = Field(default=None, ge=0.01, le=0.1)
    source_protocol_id: Optional[str] = Field(default=None, max_length=128)
    source_nudge_id: Optional[str] = Field(default=None, max_length=128)


class MemoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    memory_type: str
    content: str
    context: Optional[dict[str, Any]] = None
    confidence: float
    evidence_count: int
    decay_rate: float
    source_protocol_id: Optional[str] = None
    source_nudge_id: Optional[str] = None
    created_at: str
    last_used_at: Optional[str] = None
    last_decayed_at: Optional[str] = None
    expires_at: Optional[str] = None
    reinforced: bool = Field(
        default=False,
        description="True when the write matched an existing memory and reinforced it.",
    )


class MemoryListResponse(BaseModel):
    total: int
    items: list[MemoryResponse]


class MemoryStatsResponse(BaseModel):
    total: int
    by_type: dict[str, int]
    avg_confidence: float
    oldest_memory: Optional[datetime] = None
    newest_memory: Optional[datetime] = None
