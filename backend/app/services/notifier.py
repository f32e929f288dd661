"""E-mail notifications for direct messages.

Recipients are resolved inside the request (same session as the send);
the HTTP calls to the mail provider run as tracked background tasks so a
slow or failing provider never delays or fails the send itself.
"""

import asyncio
import html
from dataclasses import dataclass

import httpx
from loguru import logger

from backend.app.config import settings
from backend.app.models.user import ADMIN_ROLES
from backend.app.schemas.user import NotificationPreferences
from backend.app.services.auth import CallerSession
from backend.app.services.chat_repository import ChatRepository

PREVIEW_LENGTH = 100

_background_tasks: set[asyncio.Task] = set()  # type: ignore[type-arg]


def spawn_background_task(coro) -> asyncio.Task:
    """Create a tracked background task that won't be garbage collected.

    The task is removed from the tracking set when it completes.
    """
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


@dataclass(frozen=True)
class Recipient:
    email: str
    name: str


class Mailer:
    """Minimal client for the Resend e-mail API."""

    def __init__(self, api_key: str, api_url: str, sender: str) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.sender = sender

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def send(self, to: str, subject: str, body_html: str) -> None:
        if not self.enabled:
            logger.info("E-mail disabled (no API key); skipping '{}' to {}", subject, to)
            return

        async with httpx.AsyncClient() as client:
            resp = await client.post(
                self.api_url,
                json={"from": self.sender, "to": [to], "subject": subject, "html": body_html},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=10.0,
            )
        resp.raise_for_status()


_mailer = Mailer(settings.resend_api_key, settings.resend_api_url, settings.email_from)


def get_mailer() -> Mailer:
    """FastAPI dependency returning the process-wide mailer."""
    return _mailer


def default_email_notifications(role: str) -> bool:
    """Effective preference for users who never saved one: staff are notified."""
    return role == "teacher" or role in ADMIN_ROLES


async def get_notification_preferences(
    repo: ChatRepository, session: CallerSession
) -> NotificationPreferences:
    prefs = await repo.notification_preferences([session.user_id])
    enabled = prefs.get(session.user_id)
    if enabled is None:
        enabled = default_email_notifications(session.role)
    return NotificationPreferences(email_notifications_enabled=enabled)


async def update_notification_preferences(
    repo: ChatRepository, session: CallerSession, enabled: bool
) -> NotificationPreferences:
    await repo.upsert_notification_preference(session.user_id, enabled)
    await repo.commit()
    state = "enabled" if enabled else "disabled"
    logger.info("E-mail notifications {} for {}", state, session.user_id)
    return NotificationPreferences(email_notifications_enabled=enabled)


def message_preview(content: str | None, attachments_count: int) -> str:
    if content:
        return content[:PREVIEW_LENGTH]
    return f"Sent {attachments_count} attachment(s)"


def conversation_url(conversation_id: str) -> str:
    return f"{settings.student_portal_url.rstrip('/')}/chats/{conversation_id}"


def render_direct_message_email(
    recipient_name: str, sender_name: str, preview: str, url: str
) -> str:
    preferences_url = f"{settings.student_portal_url.rstrip('/')}/settings"
    return (
        f"<p>Hi {html.escape(recipient_name)},</p>"
        f"<p><strong>{html.escape(sender_name)}</strong> sent you a new message:</p>"
        f"<blockquote>{html.escape(preview)}</blockquote>"
        f'<p><a href="{url}">View conversation</a></p>'
        f'<p style="color:#888;font-size:12px">'
        f'<a href="{preferences_url}">Manage notification preferences</a></p>'
    )


async def resolve_recipients(
    repo: ChatRepository, conversation_id: str, sender_id: str
) -> list[Recipient]:
    """Participants other than the sender who should get an e-mail.

    An explicit preference row decides; without one, only teachers and
    admins are notified.
    """
    participants = await repo.get_participants(conversation_id)
    others = [p for p in participants if p.user_id != sender_id]
    prefs = await repo.notification_preferences(p.user_id for p in others)

    recipients = []
    for participant in others:
        user = participant.user
        enabled = prefs.get(user.id)
        if enabled is None:
            enabled = default_email_notifications(user.role)
        if enabled:
            recipients.append(Recipient(email=user.email, name=user.display_name))
    return recipients


async def send_direct_message_notifications(
    mailer: Mailer,
    recipients: list[Recipient],
    sender_name: str,
    preview: str,
    url: str,
) -> tuple[int, int]:
    """Send one e-mail per recipient; returns (successful, failed)."""
    results = await asyncio.gather(
        *(
            mailer.send(
                r.email,
                f"New message from {sender_name}",
                render_direct_message_email(r.name, sender_name, preview, url),
            )
            for r in recipients
        ),
        return_exceptions=True,
    )
    failed = [r for r in results if isinstance(r, BaseException)]
    for exc in failed:
        logger.error("Direct message notification failed: {}", exc)
    logger.info(
        "Direct message notifications sent: {} successful, {} failed",
        len(results) - len(failed),
        len(failed),
    )
    return len(results) - len(failed), len(failed)


async def notify_direct_message(
    repo: ChatRepository,
    mailer: Mailer,
    *,
    conversation_id: str,
    sender_id: str,
    sender_name: str,
    content: str | None,
    attachments_count: int,
) -> asyncio.Task | None:
    """Queue e-mail notifications for a new direct message."""
    recipients = await resolve_recipients(repo, conversation_id, sender_id)
    if not recipients:
        logger.debug("No recipients to notify for conversation {}", conversation_id)
        return None

    return spawn_background_task(
        send_direct_message_notifications(
            mailer,
            recipients,
            sender_name,
            message_preview(content, attachments_count),
            conversation_url(conversation_id),
        )
    )
