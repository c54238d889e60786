# Repositories package
from .base import BaseRepository
from .decision_repository import DecisionRepository
from .match_repository import MatchRepository
from .message_repository import MessageRepository
from .presence_repository import PresenceRepository
from .notification_repository import NotificationRepository

__all__ = [
    "BaseRepository",
    "DecisionRepository",
    "MatchRepository",
    "MessageRepository",
    "PresenceRepository",
    "NotificationRepository",
]
