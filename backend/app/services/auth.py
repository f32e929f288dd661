"""Caller identity.

Authentication happens upstream (the portal's auth proxy); requests reach
this service with a trusted ``X-User-Id`` header. This module turns that
header into an explicit :class:`CallerSession` that every service receives.
"""

from dataclasses import dataclass

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db import get_db
from backend.app.errors import Unauthenticated
from backend.app.models.user import ADMIN_ROLES, User


@dataclass(frozen=True)
class CallerSession:
    """The authenticated caller of a chat operation."""

    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_teacher(self) -> bool:
        return self.role == "teacher"


async def get_current_session(
    x_user_id: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> CallerSession:
    """FastAPI dependency resolving the caller from the ``X-User-Id`` header."""
    if not x_user_id:
        raise Unauthenticated()

    user = await db.get(User, x_user_id)
    if user is None:
        raise Unauthenticated()
    return CallerSession(user_id=user.id, role=user.role)
