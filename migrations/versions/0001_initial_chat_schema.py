"""initial chat schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Directory tables (owned by the back-office, read here for access rules)
    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("created_at", sa.String(), nullable=False),
        sa.CheckConstraint(
            "role IN ('student', 'teacher', 'admin', 'super_admin')", name="ck_users_role"
        ),
    )
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "students",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=True, unique=True),
        sa.Column("full_name", sa.String(), nullable=True),
    )
    op.create_table(
        "teachers",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=True, unique=True),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
    )
    op.create_table(
        "cohorts",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("nickname", sa.String(), nullable=True),
        sa.Column("start_date", sa.String(), nullable=True),
        sa.Column("cohort_status", sa.String(), nullable=True),
        sa.Column("created_at", sa.String(), nullable=False),
    )
    op.create_table(
        "enrollments",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("student_id", sa.String(), sa.ForeignKey("students.id"), nullable=False),
        sa.Column("cohort_id", sa.String(), sa.ForeignKey("cohorts.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
    )
    op.create_index("idx_enrollments_student_status", "enrollments", ["student_id", "status"])

    op.create_table(
        "weekly_sessions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("cohort_id", sa.String(), sa.ForeignKey("cohorts.id"), nullable=False),
        sa.Column("teacher_id", sa.String(), sa.ForeignKey("teachers.id"), nullable=False),
    )
    op.create_index("ix_weekly_sessions_cohort_id", "weekly_sessions", ["cohort_id"])
    op.create_index("ix_weekly_sessions_teacher_id", "weekly_sessions", ["teacher_id"])

    # Messages
    op.create_table(
        "messages",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.String(), nullable=True),
        sa.Column("created_at", sa.String(), nullable=False),
        sa.Column("edited_at", sa.String(), nullable=True),
        sa.Column("deleted_at", sa.String(), nullable=True),
    )
    op.create_index("idx_messages_user", "messages", ["user_id"])
    op.create_index("idx_messages_deleted", "messages", ["deleted_at"])

    op.create_table(
        "message_attachments",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "message_id",
            sa.String(),
            sa.ForeignKey("messages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("file_name", sa.String(), nullable=False),
        sa.Column("file_url", sa.String(), nullable=False),
        sa.Column("file_type", sa.String(), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.String(), nullable=False),
        sa.CheckConstraint("file_type IN ('image', 'document')", name="ck_attachments_file_type"),
    )
    op.create_index("ix_message_attachments_message_id", "message_attachments", ["message_id"])

    op.create_table(
        "message_reads",
        sa.Column(
            "message_id",
            sa.String(),
            sa.ForeignKey("messages.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("read_at", sa.String(), nullable=False),
    )
    op.create_index("idx_message_reads_user", "message_reads", ["user_id"])

    op.create_table(
        "cohort_messages",
        sa.Column(
            "message_id",
            sa.String(),
            sa.ForeignKey("messages.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("cohort_id", sa.String(), sa.ForeignKey("cohorts.id"), nullable=False),
        sa.Column("created_at", sa.String(), nullable=False),
    )
    op.create_index(
        "idx_cohort_messages_cohort_created", "cohort_messages", ["cohort_id", "created_at"]
    )

    # Direct conversations
    op.create_table(
        "conversations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("student_id", sa.String(), sa.ForeignKey("students.id"), nullable=True),
        sa.Column("created_at", sa.String(), nullable=False),
        sa.Column("last_message_at", sa.String(), nullable=True),
        sa.Column("deleted_at", sa.String(), nullable=True),
    )
    op.create_index("ix_conversations_last_message_at", "conversations", ["last_message_at"])

    op.create_table(
        "conversation_participants",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "conversation_id",
            sa.String(),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("joined_at", sa.String(), nullable=False),
        sa.UniqueConstraint(
            "conversation_id", "user_id", name="uq_participants_conversation_user"
        ),
    )
    op.create_index("idx_participants_user", "conversation_participants", ["user_id"])

    op.create_table(
        "direct_messages",
        sa.Column(
            "message_id",
            sa.String(),
            sa.ForeignKey("messages.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "conversation_id", sa.String(), sa.ForeignKey("conversations.id"), nullable=False
        ),
        sa.Column("created_at", sa.String(), nullable=False),
    )
    op.create_index(
        "idx_direct_messages_conversation_created",
        "direct_messages",
        ["conversation_id", "created_at"],
    )

    op.create_table(
        "chat_notification_preferences",
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("email_notifications_enabled", sa.Boolean(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("chat_notification_preferences")
    op.drop_index("idx_direct_messages_conversation_created", table_name="direct_messages")
    op.drop_table("direct_messages")
    op.drop_index("idx_participants_user", table_name="conversation_participants")
    op.drop_table("conversation_participants")
    op.drop_index("ix_conversations_last_message_at", table_name="conversations")
    op.drop_table("conversations")
    op.drop_index("idx_cohort_messages_cohort_created", table_name="cohort_messages")
    op.drop_table("cohort_messages")
    op.drop_index("idx_message_reads_user", table_name="message_reads")
    op.drop_table("message_reads")
    op.drop_index("ix_message_attachments_message_id", table_name="message_attachments")
    op.drop_table("message_attachments")
    op.drop_index("idx_messages_deleted", table_name="messages")
    op.drop_index("idx_messages_user", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_weekly_sessions_teacher_id", table_name="weekly_sessions")
    op.drop_index("ix_weekly_sessions_cohort_id", table_name="weekly_sessions")
    op.drop_table("weekly_sessions")
    op.drop_index("idx_enrollments_student_status", table_name="enrollments")
    op.drop_table("enrollments")
    op.drop_table("cohorts")
    op.drop_table("teachers")
    op.drop_table("students")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_table("users")
