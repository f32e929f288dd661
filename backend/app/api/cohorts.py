"""Cohort chat endpoints."""

from fastapi import APIRouter, Depends, Query

from backend.app.schemas.cohort import CohortChatSummary
from backend.app.schemas.message import MarkReadResult, MessageCreate, MessagePage, SendResult
from backend.app.services import conversation_service, message_service, read_tracker
from backend.app.services.auth import CallerSession, get_current_session
from backend.app.services.chat_repository import ChatRepository, get_repo
from backend.app.services.storage import Storage, get_storage

router = APIRouter(prefix="/cohorts", tags=["cohorts"])


@router.get("", response_model=list[CohortChatSummary])
async def list_cohorts(
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
) -> list[CohortChatSummary]:
    return await conversation_service.list_accessible_cohorts(repo, session)


@router.get("/{cohort_id}/messages", response_model=MessagePage)
async def get_cohort_messages(
    cohort_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=message_service.DEFAULT_PAGE_SIZE, ge=1, le=100),
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
) -> MessagePage:
    return await message_service.list_cohort_messages(repo, session, cohort_id, page, limit)


@router.post("/{cohort_id}/messages", response_model=SendResult, status_code=201)
async def send_cohort_message(
    cohort_id: str,
    data: MessageCreate,
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
    storage: Storage = Depends(get_storage),
) -> SendResult:
    return await message_service.send_cohort_message(repo, storage, session, cohort_id, data)


@router.post("/{cohort_id}/read", response_model=MarkReadResult)
async def mark_cohort_read(
    cohort_id: str,
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
) -> MarkReadResult:
    return await read_tracker.mark_cohort_read(repo, session, cohort_id)
