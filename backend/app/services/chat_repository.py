"""Narrow data-access layer for the chat module.

Each method issues one or two statements against the caller's
``AsyncSession`` and never commits on its own; services decide where the
commit boundaries are. Message-id lists are returned in delivery order
(oldest link first) so callers can diff them against read sets without
losing ordering.
"""

import uuid
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

from fastapi import Depends
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.app.db import get_db
from backend.app.models.cohort import ACTIVE_ENROLLMENT_STATUSES, Cohort, Enrollment, WeeklySession
from backend.app.models.conversation import (
    ChatNotificationPreference,
    Conversation,
    ConversationParticipant,
    DirectMessage,
)
from backend.app.models.message import CohortMessage, Message, MessageAttachment, MessageRead
from backend.app.models.user import ADMIN_ROLES, Student, Teacher, User
from backend.app.schemas.message import AttachmentIn
from backend.app.services.auth import CallerSession


def utcnow() -> str:
    return datetime.now(UTC).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


class ChatRepository:
    """Chat queries and writes over a single database session."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    # ------------------------------------------------------------------
    # Directory lookups
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> User | None:
        return await self.db.get(User, user_id)

    async def get_users(self, user_ids: Iterable[str]) -> dict[str, User]:
        ids = list(user_ids)
        if not ids:
            return {}
        result = await self.db.execute(select(User).where(User.id.in_(ids)))
        return {user.id: user for user in result.scalars().all()}

    async def student_id_for_user(self, user_id: str) -> str | None:
        result = await self.db.execute(select(Student.id).where(Student.user_id == user_id))
        return result.scalar_one_or_none()

    async def teacher_id_for_user(self, user_id: str) -> str | None:
        result = await self.db.execute(select(Teacher.id).where(Teacher.user_id == user_id))
        return result.scalar_one_or_none()

    async def admin_user_ids(self) -> list[str]:
        result = await self.db.execute(select(User.id).where(User.role.in_(ADMIN_ROLES)))
        return list(result.scalars().all())

    async def enrolled_teacher_user_ids(self, student_id: str) -> list[str]:
        """User ids of every teacher running a session in the student's active cohorts."""
        result = await self.db.execute(
            select(Teacher.user_id)
            .join(WeeklySession, WeeklySession.teacher_id == Teacher.id)
            .join(Enrollment, Enrollment.cohort_id == WeeklySession.cohort_id)
            .where(
                Enrollment.student_id == student_id,
                Enrollment.status.in_(ACTIVE_ENROLLMENT_STATUSES),
                Teacher.user_id.is_not(None),
            )
            .distinct()
        )
        return list(result.scalars().all())

    async def student_user_ids_for_teacher(self, teacher_id: str) -> set[str]:
        result = await self.db.execute(
            select(Student.user_id)
            .join(Enrollment, Enrollment.student_id == Student.id)
            .join(WeeklySession, WeeklySession.cohort_id == Enrollment.cohort_id)
            .where(
                WeeklySession.teacher_id == teacher_id,
                Enrollment.status.in_(ACTIVE_ENROLLMENT_STATUSES),
                Student.user_id.is_not(None),
            )
        )
        return set(result.scalars().all())

    # ------------------------------------------------------------------
    # Cohort access
    # ------------------------------------------------------------------

    async def enrolled_cohort_ids(self, student_id: str) -> list[str]:
        result = await self.db.execute(
            select(Enrollment.cohort_id)
            .where(
                Enrollment.student_id == student_id,
                Enrollment.status.in_(ACTIVE_ENROLLMENT_STATUSES),
            )
            .distinct()
        )
        return list(result.scalars().all())

    async def taught_cohort_ids(self, teacher_id: str) -> list[str]:
        result = await self.db.execute(
            select(WeeklySession.cohort_id).where(WeeklySession.teacher_id == teacher_id).distinct()
        )
        return list(result.scalars().all())

    async def accessible_cohort_ids(self, session: CallerSession) -> list[str]:
        """Cohorts the caller may chat in: all for admins, taught or enrolled otherwise."""
        if session.is_admin:
            result = await self.db.execute(select(Cohort.id).order_by(Cohort.created_at.desc()))
            return list(result.scalars().all())

        teacher_id = await self.teacher_id_for_user(session.user_id)
        if teacher_id:
            return await self.taught_cohort_ids(teacher_id)

        student_id = await self.student_id_for_user(session.user_id)
        if student_id:
            return await self.enrolled_cohort_ids(student_id)
        return []

    async def can_access_cohort(self, session: CallerSession, cohort_id: str) -> bool:
        return cohort_id in await self.accessible_cohort_ids(session)

    async def get_cohorts(self, cohort_ids: Sequence[str]) -> list[Cohort]:
        if not cohort_ids:
            return []
        result = await self.db.execute(
            select(Cohort).where(Cohort.id.in_(cohort_ids)).order_by(Cohort.created_at.desc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Conversation membership
    # ------------------------------------------------------------------

    async def is_participant(self, conversation_id: str, user_id: str) -> bool:
        result = await self.db.execute(
            select(ConversationParticipant.id).where(
                ConversationParticipant.conversation_id == conversation_id,
                ConversationParticipant.user_id == user_id,
            )
        )
        return result.first() is not None

    async def conversation_ids_for_user(self, user_id: str) -> list[str]:
        result = await self.db.execute(
            select(Conversation.id)
            .join(
                ConversationParticipant,
                ConversationParticipant.conversation_id == Conversation.id,
            )
            .where(
                ConversationParticipant.user_id == user_id,
                Conversation.deleted_at.is_(None),
            )
            .order_by(Conversation.created_at)
        )
        return list(result.scalars().all())

    async def participant_sets_for_user(self, user_id: str) -> dict[str, set[str]]:
        """Map each of the user's live conversations to its full participant-id set."""
        conversation_ids = await self.conversation_ids_for_user(user_id)
        if not conversation_ids:
            return {}

        result = await self.db.execute(
            select(ConversationParticipant.conversation_id, ConversationParticipant.user_id).where(
                ConversationParticipant.conversation_id.in_(conversation_ids)
            )
        )
        sets: dict[str, set[str]] = {cid: set() for cid in conversation_ids}
        for conversation_id, participant_id in result.all():
            sets[conversation_id].add(participant_id)
        return sets

    async def create_conversation(self, *, student_id: str | None = None) -> Conversation:
        now = utcnow()
        conversation = Conversation(
            id=new_id(),
            student_id=student_id,
            created_at=now,
            last_message_at=now,
        )
        self.db.add(conversation)
        await self.db.flush()
        return conversation

    async def add_participants(
        self, conversation_id: str, participants: Sequence[tuple[str, str]]
    ) -> None:
        """Insert ``(user_id, role)`` participant rows for a conversation."""
        now = utcnow()
        for user_id, role in participants:
            self.db.add(
                ConversationParticipant(
                    id=new_id(),
                    conversation_id=conversation_id,
                    user_id=user_id,
                    role=role,
                    joined_at=now,
                )
            )
        await self.db.flush()

    async def delete_conversation_row(self, conversation_id: str) -> None:
        await self.db.execute(delete(Conversation).where(Conversation.id == conversation_id))

    async def get_participants(self, conversation_id: str) -> list[ConversationParticipant]:
        result = await self.db.execute(
            select(ConversationParticipant)
            .options(selectinload(ConversationParticipant.user))
            .where(ConversationParticipant.conversation_id == conversation_id)
            .order_by(ConversationParticipant.joined_at)
        )
        return list(result.scalars().all())

    async def page_conversations(
        self, user_id: str, *, page: int, limit: int
    ) -> tuple[list[Conversation], int]:
        membership = (
            select(Conversation.id)
            .join(
                ConversationParticipant,
                ConversationParticipant.conversation_id == Conversation.id,
            )
            .where(
                ConversationParticipant.user_id == user_id,
                Conversation.deleted_at.is_(None),
            )
        )
        total = await self.db.scalar(select(func.count()).select_from(membership.subquery()))

        result = await self.db.execute(
            select(Conversation)
            .options(
                selectinload(Conversation.participants).selectinload(ConversationParticipant.user)
            )
            .where(Conversation.id.in_(membership))
            .order_by(Conversation.last_message_at.desc().nulls_last())
            .offset((page - 1) * limit)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all()), total or 0

    # ------------------------------------------------------------------
    # Visible message ids and read tracking
    # ------------------------------------------------------------------

    async def live_cohort_message_ids(self, cohort_ids: Sequence[str]) -> list[str]:
        if not cohort_ids:
            return []
        result = await self.db.execute(
            select(CohortMessage.message_id)
            .join(Message, Message.id == CohortMessage.message_id)
            .where(CohortMessage.cohort_id.in_(cohort_ids), Message.deleted_at.is_(None))
            .order_by(CohortMessage.created_at)
        )
        return list(result.scalars().all())

    async def live_direct_message_ids(
        self, conversation_ids: Sequence[str], *, exclude_author_id: str | None = None
    ) -> list[str]:
        if not conversation_ids:
            return []
        query = (
            select(DirectMessage.message_id)
            .join(Message, Message.id == DirectMessage.message_id)
            .where(
                DirectMessage.conversation_id.in_(conversation_ids),
                Message.deleted_at.is_(None),
            )
            .order_by(DirectMessage.created_at)
        )
        if exclude_author_id is not None:
            query = query.where(Message.user_id != exclude_author_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def find_unread_message_ids(self, user_id: str, message_ids: Sequence[str]) -> list[str]:
        """Return the subset of ``message_ids`` the user has no read record for."""
        if not message_ids:
            return []
        result = await self.db.execute(
            select(MessageRead.message_id).where(
                MessageRead.user_id == user_id,
                MessageRead.message_id.in_(message_ids),
            )
        )
        read_ids = set(result.scalars().all())
        return [message_id for message_id in message_ids if message_id not in read_ids]

    async def insert_read_records(self, user_id: str, message_ids: Sequence[str]) -> None:
        if not message_ids:
            return
        now = utcnow()
        # A concurrent mark-as-read may have inserted some of these already.
        stmt = (
            sqlite_insert(MessageRead)
            .values(
                [
                    {"message_id": message_id, "user_id": user_id, "read_at": now}
                    for message_id in message_ids
                ]
            )
            .on_conflict_do_nothing(index_elements=["message_id", "user_id"])
        )
        await self.db.execute(stmt)

    # ------------------------------------------------------------------
    # Message writes
    # ------------------------------------------------------------------

    async def insert_message(self, author_id: str, content: str | None) -> Message:
        msg = Message(id=new_id(), user_id=author_id, content=content, created_at=utcnow())
        self.db.add(msg)
        await self.db.flush()
        return msg

    async def link_to_cohort(self, message_id: str, cohort_id: str) -> None:
        self.db.add(CohortMessage(message_id=message_id, cohort_id=cohort_id, created_at=utcnow()))
        await self.db.flush()

    async def link_to_conversation(self, message_id: str, conversation_id: str) -> None:
        now = utcnow()
        self.db.add(
            DirectMessage(message_id=message_id, conversation_id=conversation_id, created_at=now)
        )
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(last_message_at=now)
        )
        await self.db.flush()

    async def insert_attachments(
        self, message_id: str, attachments: Sequence[AttachmentIn]
    ) -> list[MessageAttachment]:
        now = utcnow()
        rows = [
            MessageAttachment(
                id=new_id(),
                message_id=message_id,
                file_name=att.file_name,
                file_url=att.file_url,
                file_type=att.file_type,
                file_size=att.file_size,
                created_at=now,
            )
            for att in attachments
        ]
        self.db.add_all(rows)
        await self.db.flush()
        return rows

    async def delete_attachments(
        self, message_id: str, attachment_ids: Sequence[str]
    ) -> list[MessageAttachment]:
        """Delete the given attachments of a message and return the removed rows."""
        if not attachment_ids:
            return []
        result = await self.db.execute(
            select(MessageAttachment).where(
                MessageAttachment.message_id == message_id,
                MessageAttachment.id.in_(attachment_ids),
            )
        )
        rows = list(result.scalars().all())
        for row in rows:
            await self.db.delete(row)
        await self.db.flush()
        return rows

    async def update_attachment_url(self, attachment_id: str, file_url: str) -> None:
        await self.db.execute(
            update(MessageAttachment)
            .where(MessageAttachment.id == attachment_id)
            .values(file_url=file_url)
        )

    async def get_message(self, message_id: str) -> Message | None:
        result = await self.db.execute(
            select(Message)
            .options(selectinload(Message.attachments), selectinload(Message.author))
            .where(Message.id == message_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_message(self, message_id: str, **values: object) -> None:
        await self.db.execute(update(Message).where(Message.id == message_id).values(**values))

    async def delete_message_row(self, message_id: str) -> None:
        await self.db.execute(delete(Message).where(Message.id == message_id))

    async def message_context(self, message_id: str) -> tuple[str, str] | None:
        """Return ``("cohort", id)`` or ``("conversation", id)`` for a linked message."""
        cohort_id = await self.db.scalar(
            select(CohortMessage.cohort_id).where(CohortMessage.message_id == message_id)
        )
        if cohort_id:
            return "cohort", cohort_id
        conversation_id = await self.db.scalar(
            select(DirectMessage.conversation_id).where(DirectMessage.message_id == message_id)
        )
        if conversation_id:
            return "conversation", conversation_id
        return None

    # ------------------------------------------------------------------
    # Message pages
    # ------------------------------------------------------------------

    async def _live_messages_in_order(self, message_ids: Sequence[str]) -> list[Message]:
        if not message_ids:
            return []
        result = await self.db.execute(
            select(Message)
            .options(selectinload(Message.attachments), selectinload(Message.author))
            .where(Message.id.in_(message_ids), Message.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )
        by_id = {msg.id: msg for msg in result.scalars().all()}
        return [by_id[mid] for mid in message_ids if mid in by_id]

    async def page_cohort_messages(
        self, cohort_id: str, *, page: int, limit: int
    ) -> tuple[list[Message], int]:
        """Newest-first page of a cohort's messages, plus the total link count."""
        total = await self.db.scalar(
            select(func.count())
            .select_from(CohortMessage)
            .where(CohortMessage.cohort_id == cohort_id)
        )
        result = await self.db.execute(
            select(CohortMessage.message_id)
            .where(CohortMessage.cohort_id == cohort_id)
            .order_by(CohortMessage.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        messages = await self._live_messages_in_order(list(result.scalars().all()))
        return messages, total or 0

    async def page_direct_messages(
        self, conversation_id: str, *, page: int, limit: int
    ) -> tuple[list[Message], int]:
        total = await self.db.scalar(
            select(func.count())
            .select_from(DirectMessage)
            .where(DirectMessage.conversation_id == conversation_id)
        )
        result = await self.db.execute(
            select(DirectMessage.message_id)
            .where(DirectMessage.conversation_id == conversation_id)
            .order_by(DirectMessage.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        messages = await self._live_messages_in_order(list(result.scalars().all()))
        return messages, total or 0

    async def last_live_cohort_message(self, cohort_id: str) -> Message | None:
        result = await self.db.execute(
            select(Message)
            .join(CohortMessage, CohortMessage.message_id == Message.id)
            .where(CohortMessage.cohort_id == cohort_id, Message.deleted_at.is_(None))
            .order_by(CohortMessage.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def last_live_direct_message(self, conversation_id: str) -> Message | None:
        result = await self.db.execute(
            select(Message)
            .options(selectinload(Message.author))
            .join(DirectMessage, DirectMessage.message_id == Message.id)
            .where(DirectMessage.conversation_id == conversation_id, Message.deleted_at.is_(None))
            .order_by(DirectMessage.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Notification preferences
    # ------------------------------------------------------------------

    async def notification_preferences(self, user_ids: Iterable[str]) -> dict[str, bool]:
        ids = list(user_ids)
        if not ids:
            return {}
        result = await self.db.execute(
            select(
                ChatNotificationPreference.user_id,
                ChatNotificationPreference.email_notifications_enabled,
            ).where(ChatNotificationPreference.user_id.in_(ids))
        )
        return {user_id: enabled for user_id, enabled in result.all()}

    async def upsert_notification_preference(self, user_id: str, enabled: bool) -> None:
        stmt = sqlite_insert(ChatNotificationPreference).values(
            user_id=user_id, email_notifications_enabled=enabled
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={"email_notifications_enabled": enabled},
        )
        await self.db.execute(stmt)


def get_repo(db: AsyncSession = Depends(get_db)) -> ChatRepository:
    """FastAPI dependency wrapping the request's session in a repository."""
    return ChatRepository(db)
