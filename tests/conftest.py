"""Shared test fixtures for the cohort chat backend.

Provides an isolated in-memory SQLite database per test, factory functions
for the directory and chat tables, a filesystem storage rooted in the
test's tmp_path, a mailer that records instead of sending, and an async
HTTP client wired to the real ASGI app with those injected.
"""

import asyncio
import os
import tempfile
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime

# Keep log files and attachment directories out of the working tree
os.environ.setdefault("COHORTCHAT_DATA_DIR", tempfile.mkdtemp(prefix="cohortchat-test-"))

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from backend.app.db import Base, get_db  # noqa: E402
from backend.app.main import app  # noqa: E402
from backend.app.models import (  # noqa: E402
    Cohort,
    CohortMessage,
    Conversation,
    ConversationParticipant,
    DirectMessage,
    Enrollment,
    Message,
    MessageAttachment,
    MessageRead,
    Student,
    Teacher,
    User,
    WeeklySession,
)
from backend.app.services import notifier  # noqa: E402
from backend.app.services.auth import CallerSession  # noqa: E402
from backend.app.services.chat_repository import ChatRepository  # noqa: E402
from backend.app.services.notifier import Mailer, get_mailer  # noqa: E402
from backend.app.services.storage import LocalStorage, get_storage  # noqa: E402

# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


def _set_test_pragmas(dbapi_conn, connection_record):  # noqa: ARG001
    """Set SQLite PRAGMAs on every test connection (mirrors production behavior)."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.execute("PRAGMA busy_timeout = 5000")
    cursor.close()


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """A fresh in-memory database with all tables, disposed after the test."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(test_engine.sync_engine, "connect", _set_test_pragmas)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
async def db(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a clean async database session for a test."""
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@pytest.fixture
def repo(db: AsyncSession) -> ChatRepository:
    return ChatRepository(db)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class RecordingMailer(Mailer):
    """Mailer that keeps sent e-mails in memory."""

    def __init__(self) -> None:
        super().__init__(
            api_key="test-key", api_url="http://mail.invalid", sender="test@example.com"
        )
        self.sent: list[dict[str, str]] = []

    async def send(self, to: str, subject: str, body_html: str) -> None:
        self.sent.append({"to": to, "subject": subject, "html": body_html})


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(tmp_path / "storage", "chat-attachments", "http://test")


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


async def drain_background_tasks() -> None:
    """Wait for fire-and-forget work (e-mail sends) spawned during the test."""
    while notifier._background_tasks:
        await asyncio.gather(*list(notifier._background_tasks))


@pytest.fixture
async def client(
    db: AsyncSession, storage: LocalStorage, mailer: RecordingMailer
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client with the test DB, storage and mailer injected into the app."""

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        # Reuse the same session so test data is visible to the app
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_mailer] = lambda: mailer

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth(user: User) -> dict[str, str]:
    """Request headers identifying ``user`` as the caller."""
    return {"X-User-Id": user.id}


def caller(user: User) -> CallerSession:
    return CallerSession(user_id=user.id, role=user.role)


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _id() -> str:
    return str(uuid.uuid4())


async def create_user(
    db: AsyncSession,
    *,
    role: str = "student",
    name: str | None = None,
    email: str | None = None,
) -> User:
    """Create and persist a User."""
    user_id = _id()
    user = User(
        id=user_id,
        name=name,
        email=email or f"{role}-{user_id[:8]}@example.com",
        role=role,
        created_at=_now(),
    )
    db.add(user)
    await db.flush()
    return user


async def create_student(db: AsyncSession, *, name: str = "Test Student") -> tuple[User, Student]:
    """Create a student-role User and its Student record."""
    user = await create_user(db, role="student", name=name)
    student = Student(id=_id(), user_id=user.id, full_name=name)
    db.add(student)
    await db.flush()
    return user, student


async def create_teacher(db: AsyncSession, *, name: str = "Test Teacher") -> tuple[User, Teacher]:
    """Create a teacher-role User and its Teacher record."""
    user = await create_user(db, role="teacher", name=name)
    first, _, last = name.partition(" ")
    teacher = Teacher(id=_id(), user_id=user.id, first_name=first, last_name=last)
    db.add(teacher)
    await db.flush()
    return user, teacher


async def create_cohort(
    db: AsyncSession,
    *,
    nickname: str | None = "Test Cohort",
    created_at: str | None = None,
) -> Cohort:
    cohort = Cohort(
        id=_id(),
        nickname=nickname,
        start_date="2026-01-12",
        cohort_status="class_ongoing",
        created_at=created_at or _now(),
    )
    db.add(cohort)
    await db.flush()
    return cohort


async def enroll(
    db: AsyncSession, student: Student, cohort: Cohort, *, status: str = "paid"
) -> Enrollment:
    enrollment = Enrollment(id=_id(), student_id=student.id, cohort_id=cohort.id, status=status)
    db.add(enrollment)
    await db.flush()
    return enrollment


async def assign_teacher(db: AsyncSession, teacher: Teacher, cohort: Cohort) -> WeeklySession:
    """Schedule ``teacher`` on a weekly session of ``cohort``."""
    session = WeeklySession(id=_id(), cohort_id=cohort.id, teacher_id=teacher.id)
    db.add(session)
    await db.flush()
    return session


async def create_message(
    db: AsyncSession,
    *,
    author: User,
    content: str | None = "Hello, world!",
    created_at: str | None = None,
    deleted: bool = False,
) -> Message:
    """Create and persist an unlinked Message."""
    created_at = created_at or _now()
    msg = Message(
        id=_id(),
        user_id=author.id,
        content=content,
        created_at=created_at,
        deleted_at=_now() if deleted else None,
    )
    db.add(msg)
    await db.flush()
    return msg


async def create_cohort_message(
    db: AsyncSession, cohort: Cohort, author: User, **kwargs
) -> Message:
    """Create a Message linked to a cohort."""
    msg = await create_message(db, author=author, **kwargs)
    db.add(CohortMessage(message_id=msg.id, cohort_id=cohort.id, created_at=msg.created_at))
    await db.flush()
    return msg


async def create_conversation(
    db: AsyncSession,
    participants: list[User],
    *,
    student_id: str | None = None,
    deleted: bool = False,
) -> Conversation:
    """Create a Conversation with the given participants."""
    now = _now()
    conversation = Conversation(
        id=_id(),
        student_id=student_id,
        created_at=now,
        last_message_at=now,
        deleted_at=now if deleted else None,
    )
    db.add(conversation)
    await db.flush()
    for user in participants:
        db.add(
            ConversationParticipant(
                id=_id(),
                conversation_id=conversation.id,
                user_id=user.id,
                role="admin" if user.role == "super_admin" else user.role,
                joined_at=now,
            )
        )
    await db.flush()
    return conversation


async def create_direct_message(
    db: AsyncSession, conversation: Conversation, author: User, **kwargs
) -> Message:
    """Create a Message linked to a conversation."""
    msg = await create_message(db, author=author, **kwargs)
    db.add(
        DirectMessage(
            message_id=msg.id, conversation_id=conversation.id, created_at=msg.created_at
        )
    )
    await db.flush()
    return msg


async def create_attachment(
    db: AsyncSession, msg: Message, *, file_url: str = "http://test/files/x.png"
) -> MessageAttachment:
    att = MessageAttachment(
        id=_id(),
        message_id=msg.id,
        file_name="x.png",
        file_url=file_url,
        file_type="image",
        file_size=10,
        created_at=_now(),
    )
    db.add(att)
    await db.flush()
    return att


async def mark_read(db: AsyncSession, msg: Message, user: User) -> MessageRead:
    read = MessageRead(message_id=msg.id, user_id=user.id, read_at=_now())
    db.add(read)
    await db.flush()
    return read
