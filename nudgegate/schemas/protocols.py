from datetime import date
from pydantic import BaseModel, ConfigDict, Field

from nudgegate.models.protocol_log import ProtocolLogStatus


class ProtocolLogRequest(BaseModel):
    protocol_id: str = Field(min_length=1, max_length=128)
    day: date
    status: ProtocolLogStatus = ProtocolLogStatus.completed


class ProtocolLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    protocol_id: str
    day: date
    status: ProtocolLogStatus
    current_streak: int
