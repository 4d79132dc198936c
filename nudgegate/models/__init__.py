from .user_baseline import UserBaseline
from .daily_metric import DailyMetric
from .recovery_score import RecoveryScore
from .user_memory import UserMemory, MemoryType
from .user_state import UserState
from .mvd_history import MVDHistory
from .protocol_log import ProtocolLog, ProtocolLogStatus
from .nudge_log import NudgeLog

__all__ = [
    "UserBaseline",
    "DailyMetric",
    "RecoveryScore",
    "UserMemory",
    "MemoryType",
    "UserState",
    "MVDHistory",
    "ProtocolLog",
    "ProtocolLogStatus",
    "NudgeLog",
]
