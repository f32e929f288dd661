from __future__ import annotations

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db import Base


class Conversation(Base):
    """A direct-message thread between a fixed set of participants."""

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    student_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("students.id"), nullable=True
    )
    created_at: Mapped[str] = mapped_column(String, nullable=False)
    last_message_at: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    deleted_at: Mapped[str | None] = mapped_column(String, nullable=True)

    participants: Mapped[list[ConversationParticipant]] = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        order_by="ConversationParticipant.joined_at",
    )


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"
    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id", name="uq_participants_conversation_user"),
        Index("idx_participants_user", "user_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    conversation_id: Mapped[str] = mapped_column(
        String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False, default="student")
    joined_at: Mapped[str] = mapped_column(String, nullable=False)

    conversation: Mapped[Conversation] = relationship(
        "Conversation", back_populates="participants"
    )
    user: Mapped[User] = relationship("User")


class DirectMessage(Base):
    __tablename__ = "direct_messages"

    message_id: Mapped[str] = mapped_column(
        String, ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True
    )
    conversation_id: Mapped[str] = mapped_column(
        String, ForeignKey("conversations.id"), nullable=False
    )
    created_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        Index("idx_direct_messages_conversation_created", "conversation_id", "created_at"),
    )

    message: Mapped[Message] = relationship("Message")


class ChatNotificationPreference(Base):
    __tablename__ = "chat_notification_preferences"

    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), primary_key=True)
    email_notifications_enabled: Mapped[bool] = mapped_column(nullable=False, default=False)
