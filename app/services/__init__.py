from .notification_service import NotificationDispatcher
from .decision_service import DecisionLedger
from .match_service import MatchDetector, MatchFormed, MatchOutcome
from .conversation_service import ConversationChannel, MessageSubscription
from .presence_service import PresenceTracker, is_online_at, format_last_active
from .rewind_service import RewindController, RewindEntry, RewindResult, CandidateQueue
from .swipe_service import SwipeService, SwipeSession, SwipeSessionRegistry, swipe_sessions
from .rate_limit_service import RateLimitService, rate_limit_service

__all__ = [
    "NotificationDispatcher",
    "DecisionLedger",
    "MatchDetector",
    "MatchFormed",
    "MatchOutcome",
    "ConversationChannel",
    "MessageSubscription",
    "PresenceTracker",
    "is_online_at",
    "format_last_active",
    "RewindController",
    "RewindEntry",
    "RewindResult",
    "CandidateQueue",
    "SwipeService",
    "SwipeSession",
    "SwipeSessionRegistry",
    "swipe_sessions",
    "RateLimitService",
    "rate_limit_service",
]
