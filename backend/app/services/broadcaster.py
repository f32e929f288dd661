"""Realtime event helpers.

Services call ``broadcast_event(room, event)`` after a write has been
committed; delivery goes through the in-process ``ws_manager``. A failed
broadcast is logged and never fails the write that triggered it.
"""

from __future__ import annotations

import logging
from typing import Any

from backend.app.models.message import Message
from backend.app.services.ws_manager import ws_manager

logger = logging.getLogger(__name__)


async def broadcast_event(room: str, event: dict[str, Any]) -> None:
    try:
        await ws_manager.publish(room, event)
    except Exception:
        logger.exception("Failed to broadcast %s to %s", event.get("type"), room)


# --- Event factory helpers ---


def message_payload(msg: Message, author_name: str | None = None) -> dict[str, Any]:
    return {
        "id": msg.id,
        "user_id": msg.user_id,
        "author_name": author_name,
        "content": msg.content,
        "created_at": msg.created_at,
        "edited_at": msg.edited_at,
        "attachments": [
            {
                "id": att.id,
                "file_name": att.file_name,
                "file_url": att.file_url,
                "file_type": att.file_type,
                "file_size": att.file_size,
                "created_at": att.created_at,
            }
            for att in msg.attachments
        ],
    }


def new_message_event(room: str, msg: Message, author_name: str | None = None) -> dict[str, Any]:
    """Create a new_message WebSocket event."""
    return {"type": "new_message", "room": room, "data": message_payload(msg, author_name)}


def message_updated_event(
    room: str, msg: Message, author_name: str | None = None
) -> dict[str, Any]:
    return {"type": "message_updated", "room": room, "data": message_payload(msg, author_name)}


def message_deleted_event(room: str, message_id: str, deleted_at: str) -> dict[str, Any]:
    return {
        "type": "message_deleted",
        "room": room,
        "data": {"id": message_id, "deleted_at": deleted_at},
    }
