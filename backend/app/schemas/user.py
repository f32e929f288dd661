from pydantic import BaseModel


class NotificationPreferences(BaseModel):
    email_notifications_enabled: bool
