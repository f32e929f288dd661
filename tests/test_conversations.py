"""Tests for conversation resolution and listings."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from backend.app.errors import DeliveryFailed, Forbidden, InvalidInput
from backend.app.models import Conversation, ConversationParticipant
from backend.app.services import conversation_service
from backend.app.services.chat_repository import ChatRepository
from backend.app.services.conversation_service import match_participant_set
from tests.conftest import (
    assign_teacher,
    auth,
    caller,
    create_cohort,
    create_cohort_message,
    create_conversation,
    create_direct_message,
    create_student,
    create_teacher,
    create_user,
    enroll,
)

# ---------------------------------------------------------------------------
# Exact-set matching
# ---------------------------------------------------------------------------


def test_match_requires_exact_set():
    candidates = {"c1": {"a", "b", "c"}, "c2": {"a", "b"}}

    assert match_participant_set(candidates, {"a", "b"}) == "c2"
    assert match_participant_set(candidates, ["c", "b", "a"]) == "c1"


def test_match_rejects_subsets_and_supersets():
    candidates = {"c1": {"a", "b", "c"}}

    assert match_participant_set(candidates, {"a", "b"}) is None
    assert match_participant_set(candidates, {"a", "b", "c", "d"}) is None
    assert match_participant_set({}, {"a"}) is None


def test_match_returns_first_candidate():
    candidates = {"older": {"a", "b"}, "newer": {"a", "b"}}
    assert match_participant_set(candidates, {"a", "b"}) == "older"


# ---------------------------------------------------------------------------
# Student resolution
# ---------------------------------------------------------------------------


async def _student_with_teachers(db, teachers: int = 2):
    student_user, student = await create_student(db)
    cohort = await create_cohort(db)
    await enroll(db, student, cohort)
    teacher_users = []
    for i in range(teachers):
        teacher_user, teacher = await create_teacher(db, name=f"Teacher {i}")
        await assign_teacher(db, teacher, cohort)
        teacher_users.append(teacher_user)
    return student_user, student, teacher_users


async def test_student_conversation_is_created_once(repo, db):
    student_user, student, teachers = await _student_with_teachers(db)
    admin = await create_user(db, role="admin")

    first = await conversation_service.create_or_get_for_student(repo, caller(student_user))
    second = await conversation_service.create_or_get_for_student(repo, caller(student_user))

    assert first.is_new is True
    assert second.is_new is False
    assert second.conversation_id == first.conversation_id

    rows = await db.execute(
        select(ConversationParticipant.user_id, ConversationParticipant.role).where(
            ConversationParticipant.conversation_id == first.conversation_id
        )
    )
    members = dict(rows.all())
    assert members == {
        student_user.id: "student",
        teachers[0].id: "teacher",
        teachers[1].id: "teacher",
        admin.id: "admin",
    }

    conversation = await db.get(Conversation, first.conversation_id)
    assert conversation.student_id == student.id


async def test_student_conversation_with_selected_teacher(repo, db):
    student_user, _, teachers = await _student_with_teachers(db)
    await create_user(db, role="admin")
    session = caller(student_user)

    everyone = await conversation_service.create_or_get_for_student(repo, session)
    just_one = await conversation_service.create_or_get_for_student(
        repo, session, [teachers[0].id]
    )
    again = await conversation_service.create_or_get_for_student(repo, session, [teachers[0].id])

    # {student, t0} is a subset of the first conversation and must not reuse it
    assert just_one.is_new is True
    assert just_one.conversation_id != everyone.conversation_id
    assert again.conversation_id == just_one.conversation_id


async def test_student_cannot_pick_foreign_teacher(repo, db):
    student_user, _, _ = await _student_with_teachers(db)
    stranger, _ = await create_teacher(db, name="Not Mine")

    with pytest.raises(Forbidden):
        await conversation_service.create_or_get_for_student(
            repo, caller(student_user), [stranger.id]
        )


async def test_student_without_enrollment(repo, db):
    student_user, _ = await create_student(db)
    teacher_user, _ = await create_teacher(db)

    with pytest.raises(InvalidInput):
        await conversation_service.create_or_get_for_student(repo, caller(student_user))
    with pytest.raises(Forbidden):
        await conversation_service.create_or_get_for_student(repo, caller(teacher_user))


async def test_student_endpoint_status_codes(client, db):
    student_user, _, _ = await _student_with_teachers(db, teachers=1)

    resp = await client.post("/api/conversations/student", headers=auth(student_user))
    assert resp.status_code == 201
    conversation_id = resp.json()["conversation_id"]

    resp = await client.post("/api/conversations/student", json={}, headers=auth(student_user))
    assert resp.status_code == 200
    assert resp.json() == {"conversation_id": conversation_id, "is_new": False}


# ---------------------------------------------------------------------------
# Staff resolution
# ---------------------------------------------------------------------------


async def test_admin_distinguishes_participant_sets(repo, db):
    admin = await create_user(db, role="admin")
    b = await create_user(db, role="teacher")
    c = await create_user(db, role="student")
    session = caller(admin)

    pair = await conversation_service.create_conversation_as_admin(repo, session, [b.id])
    trio = await conversation_service.create_conversation_as_admin(repo, session, [b.id, c.id])
    pair_again = await conversation_service.create_conversation_as_admin(
        repo, session, [b.id, admin.id]
    )

    assert pair.conversation_id != trio.conversation_id
    assert pair_again.conversation_id == pair.conversation_id
    assert pair_again.is_new is False


async def test_deleted_conversation_is_not_reused(repo, db):
    admin = await create_user(db, role="admin")
    other = await create_user(db, role="teacher")
    old = await create_conversation(db, [admin, other], deleted=True)

    result = await conversation_service.create_conversation_as_admin(
        repo, caller(admin), [other.id]
    )

    assert result.is_new is True
    assert result.conversation_id != old.id


async def test_teacher_may_only_reach_own_students(repo, db):
    student_user, _, teachers = await _student_with_teachers(db, teachers=2)
    outsider, _ = await create_student(db, name="Outsider")
    session = caller(teachers[0])

    ok = await conversation_service.create_conversation_as_admin(
        repo, session, [student_user.id, teachers[1].id]
    )
    assert ok.is_new is True

    with pytest.raises(Forbidden):
        await conversation_service.create_conversation_as_admin(repo, session, [outsider.id])


async def test_students_cannot_use_staff_create(client, db):
    student_user, _ = await create_student(db)
    teacher_user, _ = await create_teacher(db)

    resp = await client.post(
        "/api/conversations",
        json={"participant_ids": [teacher_user.id]},
        headers=auth(student_user),
    )
    assert resp.status_code == 403


async def test_unknown_participant_is_rejected(repo, db):
    admin = await create_user(db, role="admin")

    with pytest.raises(Forbidden, match="Unknown participant"):
        await conversation_service.create_conversation_as_admin(repo, caller(admin), ["ghost"])


async def test_participant_failure_removes_conversation(db, monkeypatch):
    admin = await create_user(db, role="admin")
    other = await create_user(db, role="teacher")

    async def _failing_add(self, conversation_id, participants):
        raise IntegrityError("INSERT INTO conversation_participants", {}, Exception("constraint"))

    monkeypatch.setattr(ChatRepository, "add_participants", _failing_add)

    with pytest.raises(DeliveryFailed, match="Failed to add participants"):
        await conversation_service.create_conversation_as_admin(
            ChatRepository(db), caller(admin), [other.id]
        )

    assert await db.scalar(select(func.count()).select_from(Conversation)) == 0


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


async def test_list_conversations_with_unread_and_last_message(client, db):
    student_user, _ = await create_student(db, name="Ana")
    teacher_user, _ = await create_teacher(db, name="Paul Martin")
    quiet = await create_conversation(db, [student_user, teacher_user])
    busy = await create_conversation(db, [student_user, teacher_user])
    quiet.last_message_at = "2026-01-01T00:00:00+00:00"
    busy.last_message_at = "2026-02-01T00:00:00+00:00"
    await create_direct_message(db, busy, teacher_user, content="first")
    await create_direct_message(db, busy, student_user, content="reply")
    await create_direct_message(db, busy, teacher_user, content="removed", deleted=True)

    resp = await client.get("/api/conversations", headers=auth(student_user))
    assert resp.status_code == 200
    data = resp.json()

    assert data["total"] == 2
    assert [c["id"] for c in data["conversations"]] == [busy.id, quiet.id]
    top = data["conversations"][0]
    assert top["last_message"]["content"] == "reply"
    assert top["last_message"]["author_name"] == "Ana"
    assert top["unread_count"] == 1
    assert {p["name"] for p in top["participants"]} == {"Ana", "Paul Martin"}


async def test_get_participants_requires_membership(client, db):
    a, _ = await create_student(db)
    b, _ = await create_teacher(db)
    outsider, _ = await create_student(db, name="Outsider")
    conversation = await create_conversation(db, [a, b])

    resp = await client.get(
        f"/api/conversations/{conversation.id}/participants", headers=auth(a)
    )
    assert resp.status_code == 200
    assert {p["user_id"] for p in resp.json()} == {a.id, b.id}

    resp = await client.get(
        f"/api/conversations/{conversation.id}/participants", headers=auth(outsider)
    )
    assert resp.status_code == 403


async def test_list_cohorts_orders_active_first(client, db):
    student_user, student = await create_student(db)
    quiet = await create_cohort(db, nickname=None, created_at="2026-02-01T00:00:00+00:00")
    active = await create_cohort(db, nickname="Morning A1", created_at="2026-01-01T00:00:00+00:00")
    for cohort in (quiet, active):
        await enroll(db, student, cohort)
    teacher_user, _ = await create_teacher(db)
    await create_cohort_message(db, active, teacher_user, content="Welcome!")

    resp = await client.get("/api/cohorts", headers=auth(student_user))
    assert resp.status_code == 200
    cohorts = resp.json()

    assert [c["id"] for c in cohorts] == [active.id, quiet.id]
    assert cohorts[0]["name"] == "Morning A1"
    assert cohorts[0]["last_message"] == "Welcome!"
    assert cohorts[0]["unread_count"] == 1
    assert cohorts[1]["name"] == f"Cohort {quiet.id[:8]}"
    assert cohorts[1]["last_message"] is None
