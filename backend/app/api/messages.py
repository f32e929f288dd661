"""Message edit and delete endpoints."""

from fastapi import APIRouter, Depends

from backend.app.schemas.message import MessageEdit, MessageResponse
from backend.app.services import message_service
from backend.app.services.auth import CallerSession, get_current_session
from backend.app.services.chat_repository import ChatRepository, get_repo
from backend.app.services.storage import Storage, get_storage

router = APIRouter(prefix="/messages", tags=["messages"])


@router.patch("/{message_id}", response_model=MessageResponse)
async def edit_message(
    message_id: str,
    data: MessageEdit,
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
    storage: Storage = Depends(get_storage),
) -> MessageResponse:
    return await message_service.edit_message(repo, storage, session, message_id, data)


@router.delete("/{message_id}", status_code=204)
async def delete_message(
    message_id: str,
    session: CallerSession = Depends(get_current_session),
    repo: ChatRepository = Depends(get_repo),
) -> None:
    await message_service.delete_message(repo, session, message_id)
