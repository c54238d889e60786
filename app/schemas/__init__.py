from .match import MatchRead, MatchSummary, MatchListResponse
from .decision import DecisionCreate, DecisionRead, SwipeOutcome, RewindResponse, RewindStatus
from .message import MessageCreate, MessageRead, MessageHistoryResponse, MarkMessagesReadRequest, ReadReceipt
from .notification import NotificationResponse, NotificationListResponse, MarkReadResponse
from .presence import PresenceResponse

__all__ = [
    "MatchRead", "MatchSummary", "MatchListResponse",
    "DecisionCreate", "DecisionRead", "SwipeOutcome", "RewindResponse", "RewindStatus",
    "MessageCreate", "MessageRead", "MessageHistoryResponse", "MarkMessagesReadRequest", "ReadReceipt",
    "NotificationResponse", "NotificationListResponse", "MarkReadResponse",
    "PresenceResponse",
]
