"""Read receipts and unread counts.

A ``message_reads`` row means "this user has read this message"; its
absence means unread. Counts are recomputed from the tables on every call.
"""

from loguru import logger

from backend.app.schemas.message import MarkReadResult, UnreadCount
from backend.app.services.auth import CallerSession
from backend.app.services.chat_repository import ChatRepository
from backend.app.services.message_service import ensure_cohort_access, ensure_participant


async def _mark(repo: ChatRepository, session: CallerSession, message_ids: list[str]) -> int:
    unread = await repo.find_unread_message_ids(session.user_id, message_ids)
    if not unread:
        return 0
    await repo.insert_read_records(session.user_id, unread)
    await repo.commit()
    return len(unread)


async def mark_cohort_read(
    repo: ChatRepository, session: CallerSession, cohort_id: str
) -> MarkReadResult:
    """Mark every live message of a cohort as read by the caller."""
    await ensure_cohort_access(repo, session, cohort_id)
    message_ids = await repo.live_cohort_message_ids([cohort_id])
    marked = await _mark(repo, session, message_ids)
    logger.debug("Marked {} cohort messages read for {} in {}", marked, session.user_id, cohort_id)
    return MarkReadResult(marked_count=marked)


async def mark_conversation_read(
    repo: ChatRepository, session: CallerSession, conversation_id: str
) -> MarkReadResult:
    """Mark every live message of a conversation as read by the caller."""
    await ensure_participant(repo, session, conversation_id)
    message_ids = await repo.live_direct_message_ids([conversation_id])
    marked = await _mark(repo, session, message_ids)
    logger.debug(
        "Marked {} direct messages read for {} in {}", marked, session.user_id, conversation_id
    )
    return MarkReadResult(marked_count=marked)


async def cohort_unread_count(
    repo: ChatRepository, session: CallerSession, cohort_ids: list[str]
) -> int:
    message_ids = await repo.live_cohort_message_ids(cohort_ids)
    return len(await repo.find_unread_message_ids(session.user_id, message_ids))


async def direct_unread_count(
    repo: ChatRepository, session: CallerSession, conversation_ids: list[str]
) -> int:
    # Own messages never count as unread in direct conversations
    message_ids = await repo.live_direct_message_ids(
        conversation_ids, exclude_author_id=session.user_id
    )
    return len(await repo.find_unread_message_ids(session.user_id, message_ids))


async def unread_count(repo: ChatRepository, session: CallerSession) -> UnreadCount:
    """Unread totals across every cohort and conversation the caller can see."""
    cohort_ids = await repo.accessible_cohort_ids(session)
    conversation_ids = await repo.conversation_ids_for_user(session.user_id)

    cohort = await cohort_unread_count(repo, session, cohort_ids)
    direct = await direct_unread_count(repo, session, conversation_ids)
    return UnreadCount(cohort=cohort, direct=direct, total=cohort + direct)
