"""Message service: send, edit, soft-delete and page chat messages.

A send is a sequence of separate writes (message row, delivery link,
attachment rows, file moves). The message row is committed first; if any
later step fails, the row is deleted again and every uploaded file is
removed before ``DeliveryFailed`` is raised. Compensation is best effort:
a failure while compensating is logged, and the original cause is what
the caller sees.
"""

from collections.abc import Awaitable, Callable

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from backend.app.errors import DeliveryFailed, Forbidden, InvalidInput, NotFound
from backend.app.models.message import Message
from backend.app.schemas.message import (
    AttachmentIn,
    AttachmentResponse,
    MessageCreate,
    MessageEdit,
    MessagePage,
    MessageResponse,
    SendResult,
)
from backend.app.services.auth import CallerSession
from backend.app.services.broadcaster import (
    broadcast_event,
    message_deleted_event,
    message_updated_event,
    new_message_event,
)
from backend.app.services.chat_repository import ChatRepository, utcnow
from backend.app.services.notifier import Mailer, notify_direct_message
from backend.app.services.storage import (
    Storage,
    discard_uploads,
    ensure_own_uploads,
    finalize_attachments,
)
from backend.app.services.ws_manager import cohort_room, conversation_room

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


# ---------------------------------------------------------------------------
# Access checks
# ---------------------------------------------------------------------------


async def ensure_cohort_access(
    repo: ChatRepository, session: CallerSession, cohort_id: str
) -> None:
    if not await repo.can_access_cohort(session, cohort_id):
        raise Forbidden("You don't have access to this cohort")


async def ensure_participant(
    repo: ChatRepository, session: CallerSession, conversation_id: str
) -> None:
    if not await repo.is_participant(conversation_id, session.user_id):
        raise Forbidden("You are not a participant in this conversation")


def _room_for(context: tuple[str, str] | None) -> str | None:
    if context is None:
        return None
    kind, target_id = context
    return cohort_room(target_id) if kind == "cohort" else conversation_room(target_id)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def to_response(msg: Message) -> MessageResponse:
    return MessageResponse(
        id=msg.id,
        user_id=msg.user_id,
        author_name=msg.author.display_name if msg.author else None,
        author_role=msg.author.role if msg.author else None,
        content=msg.content,
        created_at=msg.created_at,
        edited_at=msg.edited_at,
        attachments=[
            AttachmentResponse(
                id=att.id,
                file_name=att.file_name,
                file_url=att.file_url,
                file_type=att.file_type,
                file_size=att.file_size,
                created_at=att.created_at,
            )
            for att in msg.attachments
        ],
    )


def _uploaded_paths(attachments: list[AttachmentIn]) -> list[str]:
    return [att.storage_path for att in attachments if att.storage_path]


# ---------------------------------------------------------------------------
# Send
# ---------------------------------------------------------------------------


async def _compensate(
    repo: ChatRepository, storage: Storage, message_id: str, attachments: list[AttachmentIn]
) -> None:
    try:
        await repo.delete_message_row(message_id)
        await repo.commit()
    except SQLAlchemyError:
        await repo.rollback()
        logger.exception("Failed to delete message {} after a failed send", message_id)
    await discard_uploads(storage, _uploaded_paths(attachments))


async def _apply_finalized_urls(
    repo: ChatRepository, attachment_ids: list[str], moved_urls: list[str | None]
) -> None:
    if not any(moved_urls):
        return
    for attachment_id, url in zip(attachment_ids, moved_urls, strict=True):
        if url:
            await repo.update_attachment_url(attachment_id, url)
    await repo.commit()


async def _deliver(
    repo: ChatRepository,
    storage: Storage,
    session: CallerSession,
    data: MessageCreate,
    link: Callable[[str], Awaitable[None]],
) -> str:
    """Write a message, its link and its attachments; return the message id."""
    attachments = data.attachments or []
    ensure_own_uploads(storage, session, attachments)

    try:
        msg = await repo.insert_message(session.user_id, data.clean_content)
        message_id = msg.id
        await repo.commit()
    except SQLAlchemyError as exc:
        await repo.rollback()
        await discard_uploads(storage, _uploaded_paths(attachments))
        raise DeliveryFailed(f"Failed to send message: {exc}") from exc

    try:
        await link(message_id)
        rows = await repo.insert_attachments(message_id, attachments) if attachments else []
        attachment_ids = [row.id for row in rows]
        await repo.commit()
    except SQLAlchemyError as exc:
        await repo.rollback()
        logger.error("Send of message {} failed, compensating: {}", message_id, exc)
        await _compensate(repo, storage, message_id, attachments)
        raise DeliveryFailed(f"Failed to send message: {exc}") from exc

    if attachments:
        moved_urls = await finalize_attachments(storage, message_id, attachments)
        try:
            await _apply_finalized_urls(repo, attachment_ids, moved_urls)
        except SQLAlchemyError:
            await repo.rollback()
            logger.exception("Failed to record moved attachment URLs for {}", message_id)

    return message_id


async def send_cohort_message(
    repo: ChatRepository,
    storage: Storage,
    session: CallerSession,
    cohort_id: str,
    data: MessageCreate,
) -> SendResult:
    """Post a message to a cohort chat."""
    await ensure_cohort_access(repo, session, cohort_id)

    async def _link(message_id: str) -> None:
        await repo.link_to_cohort(message_id, cohort_id)

    message_id = await _deliver(repo, storage, session, data, _link)
    logger.info("Message {} sent to cohort {} by {}", message_id, cohort_id, session.user_id)

    msg = await repo.get_message(message_id)
    room = cohort_room(cohort_id)
    await broadcast_event(room, new_message_event(room, msg, msg.author.display_name))

    return SendResult(id=msg.id, content=msg.content, attachments_count=len(msg.attachments))


async def send_direct_message(
    repo: ChatRepository,
    storage: Storage,
    session: CallerSession,
    conversation_id: str,
    data: MessageCreate,
    mailer: Mailer | None = None,
) -> SendResult:
    """Post a message to a conversation and notify the other participants."""
    await ensure_participant(repo, session, conversation_id)

    async def _link(message_id: str) -> None:
        await repo.link_to_conversation(message_id, conversation_id)

    message_id = await _deliver(repo, storage, session, data, _link)
    logger.info(
        "Message {} sent to conversation {} by {}", message_id, conversation_id, session.user_id
    )

    msg = await repo.get_message(message_id)
    sender_name = msg.author.display_name
    room = conversation_room(conversation_id)
    await broadcast_event(room, new_message_event(room, msg, sender_name))

    if mailer is not None:
        await notify_direct_message(
            repo,
            mailer,
            conversation_id=conversation_id,
            sender_id=session.user_id,
            sender_name=sender_name,
            content=msg.content,
            attachments_count=len(msg.attachments),
        )

    return SendResult(id=msg.id, content=msg.content, attachments_count=len(msg.attachments))


# ---------------------------------------------------------------------------
# Edit / delete
# ---------------------------------------------------------------------------


async def _live_message(repo: ChatRepository, message_id: str) -> Message:
    msg = await repo.get_message(message_id)
    if msg is None or msg.deleted_at is not None:
        raise NotFound("Message not found")
    return msg


async def edit_message(
    repo: ChatRepository,
    storage: Storage,
    session: CallerSession,
    message_id: str,
    data: MessageEdit,
) -> MessageResponse:
    """Edit a message's content and attachments. Only the author may edit."""
    msg = await _live_message(repo, message_id)
    if msg.user_id != session.user_id:
        raise Forbidden("You can only edit your own messages")

    to_remove = set(data.attachments_to_remove or [])
    to_add = data.attachments_to_add or []
    ensure_own_uploads(storage, session, to_add)
    new_content = msg.content if data.content is None else data.clean_content
    remaining = [att for att in msg.attachments if att.id not in to_remove]
    if not new_content and not remaining and not to_add:
        raise InvalidInput("Message must have content or at least one attachment")

    try:
        removed = await repo.delete_attachments(message_id, list(to_remove))
        removed_urls = [att.file_url for att in removed]
        rows = await repo.insert_attachments(message_id, to_add) if to_add else []
        added_ids = [row.id for row in rows]
        await repo.update_message(message_id, content=new_content, edited_at=utcnow())
        await repo.commit()
    except SQLAlchemyError as exc:
        await repo.rollback()
        await discard_uploads(storage, _uploaded_paths(to_add))
        raise DeliveryFailed(f"Failed to edit message: {exc}") from exc

    own_prefix = f"{session.user_id}/"
    removed_paths = [
        path
        for path in (storage.path_for_url(url) for url in removed_urls)
        if path and path.startswith(own_prefix)
    ]
    await discard_uploads(storage, removed_paths)

    if to_add:
        moved_urls = await finalize_attachments(storage, message_id, to_add)
        try:
            await _apply_finalized_urls(repo, added_ids, moved_urls)
        except SQLAlchemyError:
            await repo.rollback()
            logger.exception("Failed to record moved attachment URLs for {}", message_id)

    logger.info(
        "Message {} edited by {} (+{} / -{} attachments)",
        message_id,
        session.user_id,
        len(to_add),
        len(removed_urls),
    )

    updated = await repo.get_message(message_id)
    room = _room_for(await repo.message_context(message_id))
    if room:
        await broadcast_event(
            room, message_updated_event(room, updated, updated.author.display_name)
        )
    return to_response(updated)


async def delete_message(repo: ChatRepository, session: CallerSession, message_id: str) -> None:
    """Soft-delete a message. Authors may delete their own; admins any."""
    msg = await _live_message(repo, message_id)
    if msg.user_id != session.user_id and not session.is_admin:
        raise Forbidden("You can only delete your own messages")

    deleted_at = utcnow()
    await repo.update_message(message_id, deleted_at=deleted_at)
    await repo.commit()
    logger.info("Message {} deleted by {}", message_id, session.user_id)

    room = _room_for(await repo.message_context(message_id))
    if room:
        await broadcast_event(room, message_deleted_event(room, message_id, deleted_at))


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def _page(messages: list[Message], total: int, page: int, limit: int) -> MessagePage:
    # Pages are fetched newest first and displayed oldest first
    return MessagePage(
        messages=[to_response(msg) for msg in reversed(messages)],
        has_more=page * limit < total,
        total=total,
    )


def _check_paging(page: int, limit: int) -> None:
    if page < 1:
        raise InvalidInput("page must be at least 1")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise InvalidInput(f"limit must be between 1 and {MAX_PAGE_SIZE}")


async def list_cohort_messages(
    repo: ChatRepository,
    session: CallerSession,
    cohort_id: str,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> MessagePage:
    _check_paging(page, limit)
    await ensure_cohort_access(repo, session, cohort_id)
    messages, total = await repo.page_cohort_messages(cohort_id, page=page, limit=limit)
    return _page(messages, total, page, limit)


async def list_direct_messages(
    repo: ChatRepository,
    session: CallerSession,
    conversation_id: str,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> MessagePage:
    _check_paging(page, limit)
    await ensure_participant(repo, session, conversation_id)
    messages, total = await repo.page_direct_messages(conversation_id, page=page, limit=limit)
    return _page(messages, total, page, limit)
