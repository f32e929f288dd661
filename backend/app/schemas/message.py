from typing import Literal

from pydantic import BaseModel, Field, model_validator

MAX_CONTENT_LENGTH = 5000
MAX_ATTACHMENTS = 10

FileType = Literal["image", "document"]


class AttachmentIn(BaseModel):
    file_name: str = Field(min_length=1, max_length=255)
    file_url: str = Field(min_length=1, description="Public URL of the uploaded file")
    file_type: FileType
    file_size: int = Field(gt=0)
    storage_path: str | None = Field(
        default=None, description="Bucket path of the staged upload, used to finalize or clean up"
    )


class MessageCreate(BaseModel):
    content: str | None = Field(default=None, max_length=MAX_CONTENT_LENGTH)
    attachments: list[AttachmentIn] | None = Field(default=None, max_length=MAX_ATTACHMENTS)

    @model_validator(mode="after")
    def _require_content_or_attachment(self) -> "MessageCreate":
        has_content = bool(self.content and self.content.strip())
        if not has_content and not self.attachments:
            raise ValueError("Message must have content or at least one attachment")
        return self

    @property
    def clean_content(self) -> str | None:
        """Stripped content, or None when blank."""
        if self.content is None:
            return None
        return self.content.strip() or None


class MessageEdit(BaseModel):
    content: str | None = Field(default=None, max_length=MAX_CONTENT_LENGTH)
    attachments_to_add: list[AttachmentIn] | None = Field(default=None, max_length=MAX_ATTACHMENTS)
    attachments_to_remove: list[str] | None = None

    @property
    def clean_content(self) -> str | None:
        if self.content is None:
            return None
        return self.content.strip() or None


class AttachmentResponse(BaseModel):
    id: str
    file_name: str
    file_url: str
    file_type: str
    file_size: int
    created_at: str


class MessageResponse(BaseModel):
    id: str
    user_id: str
    author_name: str | None = None
    author_role: str | None = None
    content: str | None = None
    created_at: str
    edited_at: str | None = None
    attachments: list[AttachmentResponse] = []


class SendResult(BaseModel):
    id: str
    content: str | None = None
    attachments_count: int


class MessagePage(BaseModel):
    messages: list[MessageResponse]
    has_more: bool
    total: int


class MarkReadResult(BaseModel):
    marked_count: int


class UnreadCount(BaseModel):
    cohort: int
    direct: int
    total: int
