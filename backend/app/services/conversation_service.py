"""Direct conversations: create-or-get resolution and listings.

A conversation is identified by its exact participant set. Resolving a
set first scans the caller's live conversations for one whose members are
exactly that set (a superset never matches); only when none exists is a
new conversation created.
"""

from collections.abc import Iterable, Mapping, Set

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from backend.app.errors import DeliveryFailed, Forbidden, InvalidInput
from backend.app.models.conversation import ConversationParticipant
from backend.app.models.user import ADMIN_ROLES, User
from backend.app.schemas.cohort import CohortChatSummary
from backend.app.schemas.conversation import (
    ConversationPage,
    ConversationResolution,
    ConversationSummary,
    LastMessage,
    ParticipantResponse,
)
from backend.app.services.auth import CallerSession
from backend.app.services.chat_repository import ChatRepository
from backend.app.services.message_service import ensure_participant
from backend.app.services.read_tracker import cohort_unread_count, direct_unread_count


def match_participant_set(
    candidates: Mapping[str, Set[str]], expected: Iterable[str]
) -> str | None:
    """Return the first conversation id whose participants are exactly ``expected``."""
    target = frozenset(expected)
    for conversation_id, members in candidates.items():
        if members == target:
            return conversation_id
    return None


def participant_role(user: User) -> str:
    return "admin" if user.role in ADMIN_ROLES else user.role


async def _resolve(
    repo: ChatRepository,
    session: CallerSession,
    expected: set[str],
    users: Mapping[str, User],
    *,
    student_id: str | None = None,
) -> ConversationResolution:
    candidates = await repo.participant_sets_for_user(session.user_id)
    existing = match_participant_set(candidates, expected)
    if existing:
        logger.debug("Reusing conversation {} for {} participants", existing, len(expected))
        return ConversationResolution(conversation_id=existing, is_new=False)

    try:
        conversation = await repo.create_conversation(student_id=student_id)
        conversation_id = conversation.id
        await repo.commit()
    except SQLAlchemyError as exc:
        await repo.rollback()
        raise DeliveryFailed(f"Failed to create conversation: {exc}") from exc

    # Caller first, then everyone else in a stable order
    ordered = [session.user_id, *sorted(expected - {session.user_id})]
    try:
        await repo.add_participants(
            conversation_id, [(uid, participant_role(users[uid])) for uid in ordered]
        )
        await repo.commit()
    except SQLAlchemyError as exc:
        await repo.rollback()
        try:
            await repo.delete_conversation_row(conversation_id)
            await repo.commit()
        except SQLAlchemyError:
            await repo.rollback()
            logger.exception(
                "Failed to delete conversation {} after a failed create", conversation_id
            )
        raise DeliveryFailed(f"Failed to add participants: {exc}") from exc

    logger.info(
        "Created conversation {} with {} participants (by {})",
        conversation_id,
        len(expected),
        session.user_id,
    )
    return ConversationResolution(conversation_id=conversation_id, is_new=True)


async def create_or_get_for_student(
    repo: ChatRepository,
    session: CallerSession,
    teacher_user_ids: list[str] | None = None,
) -> ConversationResolution:
    """Find or open the calling student's conversation with their teachers.

    Without ``teacher_user_ids`` the conversation includes every teacher of
    the student's active cohorts plus all admins. With it, only the named
    teachers, each of whom must teach one of those cohorts.
    """
    student_id = await repo.student_id_for_user(session.user_id)
    if student_id is None:
        raise Forbidden("Only students can start a conversation with their teachers")

    if not await repo.enrolled_cohort_ids(student_id):
        raise InvalidInput("You have no active enrollments")

    enrolled_teachers = set(await repo.enrolled_teacher_user_ids(student_id))
    if teacher_user_ids is not None:
        requested = set(teacher_user_ids)
        if not requested:
            raise InvalidInput("Select at least one teacher")
        if not requested <= enrolled_teachers:
            raise Forbidden("You can only message teachers of your cohorts")
        expected = {session.user_id} | requested
    else:
        admins = set(await repo.admin_user_ids())
        expected = {session.user_id} | enrolled_teachers | admins

    if len(expected) < 2:
        raise InvalidInput("No teachers or admins are available to message")

    users = await repo.get_users(expected)
    return await _resolve(repo, session, expected, users, student_id=student_id)


async def create_conversation_as_admin(
    repo: ChatRepository, session: CallerSession, participant_ids: list[str]
) -> ConversationResolution:
    """Find or open a conversation started by staff. The caller is always a member."""
    expected = set(participant_ids) | {session.user_id}
    if len(expected) < 2:
        raise InvalidInput("A conversation needs at least one other participant")

    users = await repo.get_users(expected)
    unknown = expected - users.keys()
    if unknown:
        raise Forbidden(f"Unknown participant: {sorted(unknown)[0]}")

    if session.is_teacher:
        teacher_id = await repo.teacher_id_for_user(session.user_id)
        students = await repo.student_user_ids_for_teacher(teacher_id) if teacher_id else set()
        for uid in expected - {session.user_id}:
            if users[uid].role != "teacher" and uid not in students:
                raise Forbidden(
                    "Teachers can only message other teachers and students of their cohorts"
                )
    elif not session.is_admin:
        raise Forbidden("Only teachers and admins can start conversations")

    return await _resolve(repo, session, expected, users)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


def _participant_response(participant: ConversationParticipant) -> ParticipantResponse:
    return ParticipantResponse(
        user_id=participant.user_id,
        name=participant.user.display_name,
        email=participant.user.email,
        role=participant.role,
        joined_at=participant.joined_at,
    )


async def list_accessible_cohorts(
    repo: ChatRepository, session: CallerSession
) -> list[CohortChatSummary]:
    """Cohort chats the caller can see, most recently active first."""
    cohorts = await repo.get_cohorts(await repo.accessible_cohort_ids(session))

    summaries = []
    for cohort in cohorts:
        last = await repo.last_live_cohort_message(cohort.id)
        summaries.append(
            CohortChatSummary(
                id=cohort.id,
                name=cohort.display_name,
                start_date=cohort.start_date,
                status=cohort.cohort_status,
                last_message=last.content if last else None,
                last_message_at=last.created_at if last else None,
                unread_count=await cohort_unread_count(repo, session, [cohort.id]),
            )
        )

    # Cohorts with messages first; the rest keep their newest-created order
    summaries.sort(key=lambda s: s.last_message_at or "", reverse=True)
    return summaries


async def list_conversations(
    repo: ChatRepository, session: CallerSession, page: int = 1, limit: int = 20
) -> ConversationPage:
    if page < 1 or not 1 <= limit <= 100:
        raise InvalidInput("page must be at least 1 and limit between 1 and 100")

    conversations, total = await repo.page_conversations(session.user_id, page=page, limit=limit)

    items = []
    for conversation in conversations:
        last = await repo.last_live_direct_message(conversation.id)
        items.append(
            ConversationSummary(
                id=conversation.id,
                student_id=conversation.student_id,
                created_at=conversation.created_at,
                last_message_at=conversation.last_message_at,
                participants=[_participant_response(p) for p in conversation.participants],
                last_message=(
                    LastMessage(
                        content=last.content,
                        created_at=last.created_at,
                        author_name=last.author.display_name,
                    )
                    if last
                    else None
                ),
                unread_count=await direct_unread_count(repo, session, [conversation.id]),
            )
        )
    return ConversationPage(conversations=items, has_more=page * limit < total, total=total)


async def get_participants(
    repo: ChatRepository, session: CallerSession, conversation_id: str
) -> list[ParticipantResponse]:
    await ensure_participant(repo, session, conversation_id)
    return [_participant_response(p) for p in await repo.get_participants(conversation_id)]
