"""WebSocket endpoint for real-time chat updates.

Clients connect at /ws?user_id=<id> and subscribe to rooms they may read:
``cohort:<id>`` (cohort access required) or ``conversation:<id>``
(participants only).

Protocol:
  Client -> Server (JSON):
    {"action": "subscribe", "rooms": ["cohort:abc", "conversation:def"]}
    {"action": "unsubscribe", "rooms": ["cohort:abc"]}
    {"action": "ping"}

  Server -> Client (JSON):
    {"type": "new_message", "room": "...", "data": {...message fields...}}
    {"type": "message_updated", "room": "...", "data": {...message fields...}}
    {"type": "message_deleted", "room": "...", "data": {"id": "...", "deleted_at": "..."}}
    {"type": "subscribed", "data": {"rooms": [...], "denied": [...]}}
    {"type": "pong"}
    {"type": "error", "data": {"message": "..."}}
"""

import json
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from loguru import logger

from backend.app.db import async_session
from backend.app.services.auth import CallerSession
from backend.app.services.chat_repository import ChatRepository
from backend.app.services.ws_manager import ws_manager

router = APIRouter()

RoomChecker = Callable[[str, str], Awaitable[bool]]


async def can_join_room(user_id: str, room: str) -> bool:
    """Whether ``user_id`` may receive events published to ``room``."""
    kind, _, target_id = room.partition(":")
    if not target_id:
        return False

    async with async_session() as db:
        repo = ChatRepository(db)
        user = await repo.get_user(user_id)
        if user is None:
            return False
        if kind == "cohort":
            return await repo.can_access_cohort(CallerSession(user.id, user.role), target_id)
        if kind == "conversation":
            return await repo.is_participant(target_id, user_id)
    return False


def get_room_checker() -> RoomChecker:
    return can_join_room


def _event(event_type: str, **data: object) -> str:
    return json.dumps({"type": event_type, "data": data})


def _room_names(msg: dict) -> list[str] | None:
    """Room names from a subscribe/unsubscribe frame; non-string entries are ignored."""
    rooms = msg.get("rooms", [])
    if not isinstance(rooms, list):
        return None
    return [room for room in rooms if isinstance(room, str)]


@router.websocket("/ws")
async def websocket_endpoint(
    ws: WebSocket,
    user_id: str | None = Query(default=None),
    can_join: RoomChecker = Depends(get_room_checker),
) -> None:
    """Realtime feed for the chat UIs."""
    if not user_id:
        await ws.close(code=4401, reason="Not authenticated")
        return

    conn_id = await ws_manager.accept(ws, user_id=user_id)

    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await ws.send_text(_event("error", message="Invalid JSON"))
                continue
            if not isinstance(msg, dict):
                await ws.send_text(_event("error", message="Expected a JSON object"))
                continue

            action = msg.get("action", "")

            if action in ("subscribe", "unsubscribe"):
                rooms = _room_names(msg)
                if rooms is None:
                    await ws.send_text(_event("error", message="rooms must be a list"))
                    continue

            if action == "subscribe":
                allowed = [room for room in rooms if await can_join(user_id, room)]
                denied = [room for room in rooms if room not in allowed]
                ws_manager.subscribe(ws, allowed)
                await ws.send_text(_event("subscribed", rooms=allowed, denied=denied))

            elif action == "unsubscribe":
                ws_manager.unsubscribe(ws, rooms)
                await ws.send_text(_event("unsubscribed", rooms=rooms))

            elif action == "ping":
                await ws.send_text(json.dumps({"type": "pong"}))

            else:
                await ws.send_text(_event("error", message=f"Unknown action: {action}"))

    except WebSocketDisconnect:
        logger.info("WS client {} disconnected normally", conn_id)
    except Exception:
        logger.exception("WS error for client {}", conn_id)
    finally:
        ws_manager.disconnect(ws)
