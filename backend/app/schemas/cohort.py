from pydantic import BaseModel


class CohortChatSummary(BaseModel):
    id: str
    name: str
    start_date: str | None = None
    status: str | None = None
    last_message: str | None = None
    last_message_at: str | None = None
    unread_count: int = 0
