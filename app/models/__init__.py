from .user import User
from .decision import Decision, DecisionKind
from .match import Match, DeactivationReason
from .message import Message
from .presence import PresenceSample
from .notification import Notification, NotificationType

__all__ = [
    "User", "Decision", "DecisionKind", "Match", "DeactivationReason",
    "Message", "PresenceSample", "Notification", "NotificationType"
]
