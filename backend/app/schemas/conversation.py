from pydantic import BaseModel, Field


class StudentConversationCreate(BaseModel):
    teacher_user_ids: list[str] | None = Field(
        default=None,
        max_length=50,
        description="Limit the conversation to these enrolled teachers (admins are then left out)",
    )


class ConversationCreate(BaseModel):
    participant_ids: list[str] = Field(
        min_length=1, max_length=50, description="User ids to add; the caller is always included"
    )


class ConversationResolution(BaseModel):
    conversation_id: str
    is_new: bool


class ParticipantResponse(BaseModel):
    user_id: str
    name: str | None = None
    email: str
    role: str
    joined_at: str


class LastMessage(BaseModel):
    content: str | None = None
    created_at: str
    author_name: str | None = None


class ConversationSummary(BaseModel):
    id: str
    student_id: str | None = None
    created_at: str
    last_message_at: str | None = None
    participants: list[ParticipantResponse]
    last_message: LastMessage | None = None
    unread_count: int = 0


class ConversationPage(BaseModel):
    conversations: list[ConversationSummary]
    has_more: bool
    total: int
