from __future__ import annotations

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db import Base

VALID_FILE_TYPES = ("image", "document")


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    content: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[str] = mapped_column(String, nullable=False)
    edited_at: Mapped[str | None] = mapped_column(String, nullable=True)
    deleted_at: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("idx_messages_user", "user_id"),
        Index("idx_messages_deleted", "deleted_at"),
    )

    # Relationships
    author: Mapped[User] = relationship("User")
    attachments: Mapped[list[MessageAttachment]] = relationship(
        "MessageAttachment",
        back_populates="message",
        order_by="MessageAttachment.created_at",
    )


class MessageAttachment(Base):
    __tablename__ = "message_attachments"
    __table_args__ = (
        CheckConstraint("file_type IN ('image', 'document')", name="ck_attachments_file_type"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    message_id: Mapped[str] = mapped_column(
        String, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_name: Mapped[str] = mapped_column(String, nullable=False)
    file_url: Mapped[str] = mapped_column(String, nullable=False)
    file_type: Mapped[str] = mapped_column(String, nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[str] = mapped_column(String, nullable=False)

    message: Mapped[Message] = relationship("Message", back_populates="attachments")


class MessageRead(Base):
    """Presence of a row means the user has read the message; absence means unread."""

    __tablename__ = "message_reads"

    message_id: Mapped[str] = mapped_column(
        String, ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), primary_key=True)
    read_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (Index("idx_message_reads_user", "user_id"),)


class CohortMessage(Base):
    __tablename__ = "cohort_messages"

    message_id: Mapped[str] = mapped_column(
        String, ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True
    )
    cohort_id: Mapped[str] = mapped_column(String, ForeignKey("cohorts.id"), nullable=False)
    created_at: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (Index("idx_cohort_messages_cohort_created", "cohort_id", "created_at"),)

    message: Mapped[Message] = relationship("Message")
