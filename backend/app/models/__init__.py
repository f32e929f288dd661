from backend.app.models.cohort import (
    ACTIVE_ENROLLMENT_STATUSES,
    Cohort,
    Enrollment,
    WeeklySession,
)
from backend.app.models.conversation import (
    ChatNotificationPreference,
    Conversation,
    ConversationParticipant,
    DirectMessage,
)
from backend.app.models.message import CohortMessage, Message, MessageAttachment, MessageRead
from backend.app.models.user import ADMIN_ROLES, Student, Teacher, User

__all__ = [
    "ACTIVE_ENROLLMENT_STATUSES",
    "ADMIN_ROLES",
    "ChatNotificationPreference",
    "Cohort",
    "CohortMessage",
    "Conversation",
    "ConversationParticipant",
    "DirectMessage",
    "Enrollment",
    "Message",
    "MessageAttachment",
    "MessageRead",
    "Student",
    "Teacher",
    "User",
    "WeeklySession",
]
