"""Attachment upload endpoint.

Files are staged in the caller's temp area; the returned object is passed
back verbatim in a message's ``attachments`` list.
"""

from fastapi import APIRouter, Depends, File, UploadFile

from backend.app.schemas.message import AttachmentIn
from backend.app.services.auth import CallerSession, get_current_session
from backend.app.services.storage import Storage, get_storage, stage_upload

router = APIRouter(prefix="/attachments", tags=["attachments"])


@router.post("", response_model=AttachmentIn, status_code=201)
async def upload_attachment(
    file: UploadFile = File(...),
    session: CallerSession = Depends(get_current_session),
    storage: Storage = Depends(get_storage),
) -> AttachmentIn:
    data = await file.read()
    return await stage_upload(
        storage,
        session,
        file.filename or "upload",
        file.content_type or "application/octet-stream",
        data,
    )
