from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db import Base

# Enrollment statuses that grant access to the cohort chat
ACTIVE_ENROLLMENT_STATUSES = ("paid", "welcome_package_sent", "transitioning", "offboarding")


class Cohort(Base):
    __tablename__ = "cohorts"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    nickname: Mapped[str | None] = mapped_column(String, nullable=True)
    start_date: Mapped[str | None] = mapped_column(String, nullable=True)
    cohort_status: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[str] = mapped_column(String, nullable=False)

    @property
    def display_name(self) -> str:
        return self.nickname or f"Cohort {self.id[:8]}"


class Enrollment(Base):
    __tablename__ = "enrollments"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    student_id: Mapped[str] = mapped_column(String, ForeignKey("students.id"), nullable=False)
    cohort_id: Mapped[str] = mapped_column(String, ForeignKey("cohorts.id"), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (Index("idx_enrollments_student_status", "student_id", "status"),)


class WeeklySession(Base):
    """A recurring class slot; links a teacher to a cohort they teach."""

    __tablename__ = "weekly_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    cohort_id: Mapped[str] = mapped_column(
        String, ForeignKey("cohorts.id"), nullable=False, index=True
    )
    teacher_id: Mapped[str] = mapped_column(
        String, ForeignKey("teachers.id"), nullable=False, index=True
    )
