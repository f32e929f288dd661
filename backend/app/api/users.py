"""Per-user chat endpoints: unread counters and notification preferences."""

from fastapi import APIRouter, Depends

from backend.app.schemas.message import UnreadCount
from backend.app.schemas.user import NotificationPreferences
from backend.app.services import read_tracker
from backend.app.services.auth import CallerSession, get_current_session
from backend.app.services.chat_repository import ChatRepository, get_repo
from backend.app.services.notifier import (
    get_notification_preferences,
    update_notification_preferences,
)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me/unread-count", response_model=UnreadCount)
async def get_unread_count(
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
) -> UnreadCount:
    return await read_tracker.unread_count(repo, session)


@router.get("/me/notification-preferences", response_model=NotificationPreferences)
async def get_preferences(
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
) -> NotificationPreferences:
    return await get_notification_preferences(repo, session)


@router.put("/me/notification-preferences", response_model=NotificationPreferences)
async def put_preferences(
    data: NotificationPreferences,
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
) -> NotificationPreferences:
    return await update_notification_preferences(repo, session, data.email_notifications_enabled)
