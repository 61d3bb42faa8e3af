"""
Models package for Amparo.

Importing this package registers every table with ``Base.metadata``.
"""

from amparo.models.analytics import AnalyticsEvent
from amparo.models.base import Base
from amparo.models.consent import SecurityLog, UserConsent
from amparo.models.conversation import DEFAULT_TITLE, Conversation, Message
from amparo.models.goal import Goal, ProgressCheckin
from amparo.models.pattern import IdentifiedPattern
from amparo.models.resource import LocalResource
from amparo.models.user import User

__all__ = [
    "DEFAULT_TITLE",
    "AnalyticsEvent",
    "Base",
    "Conversation",
    "Goal",
    "IdentifiedPattern",
    "LocalResource",
    "Message",
    "ProgressCheckin",
    "SecurityLog",
    "User",
    "UserConsent",
]
