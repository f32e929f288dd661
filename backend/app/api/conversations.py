"""Direct conversation endpoints."""

from fastapi import APIRouter, Depends, Query, Response

from backend.app.schemas.conversation import (
    ConversationCreate,
    ConversationPage,
    ConversationResolution,
    ParticipantResponse,
    StudentConversationCreate,
)
from backend.app.schemas.message import MarkReadResult, MessageCreate, MessagePage, SendResult
from backend.app.services import conversation_service, message_service, read_tracker
from backend.app.services.auth import CallerSession, get_current_session
from backend.app.services.chat_repository import ChatRepository, get_repo
from backend.app.services.notifier import Mailer, get_mailer
from backend.app.services.storage import Storage, get_storage

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("", response_model=ConversationPage)
async def list_conversations(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
) -> ConversationPage:
    return await conversation_service.list_conversations(repo, session, page, limit)


@router.post("", response_model=ConversationResolution)
async def create_conversation(
    data: ConversationCreate,
    response: Response,
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
) -> ConversationResolution:
    """Find or open a conversation with the given participants (staff only)."""
    result = await conversation_service.create_conversation_as_admin(
        repo, session, data.participant_ids
    )
    response.status_code = 201 if result.is_new else 200
    return result


@router.post("/student", response_model=ConversationResolution)
async def create_student_conversation(
    response: Response,
    data: StudentConversationCreate | None = None,
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
) -> ConversationResolution:
    """Find or open the calling student's conversation with their teachers."""
    teacher_user_ids = data.teacher_user_ids if data else None
    result = await conversation_service.create_or_get_for_student(repo, session, teacher_user_ids)
    response.status_code = 201 if result.is_new else 200
    return result


@router.get("/{conversation_id}/participants", response_model=list[ParticipantResponse])
async def get_participants(
    conversation_id: str,
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
) -> list[ParticipantResponse]:
    return await conversation_service.get_participants(repo, session, conversation_id)


@router.get("/{conversation_id}/messages", response_model=MessagePage)
async def get_direct_messages(
    conversation_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=message_service.DEFAULT_PAGE_SIZE, ge=1, le=100),
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
) -> MessagePage:
    return await message_service.list_direct_messages(repo, session, conversation_id, page, limit)


@router.post("/{conversation_id}/messages", response_model=SendResult, status_code=201)
async def send_direct_message(
    conversation_id: str,
    data: MessageCreate,
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
    storage: Storage = Depends(get_storage),
    mailer: Mailer = Depends(get_mailer),
) -> SendResult:
    return await message_service.send_direct_message(
        repo, storage, session, conversation_id, data, mailer
    )


@router.post("/{conversation_id}/read", response_model=MarkReadResult)
async def mark_conversation_read(
    conversation_id: str,
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
) -> MarkReadResult:
    return await read_tracker.mark_conversation_read(repo, session, conversation_id)
