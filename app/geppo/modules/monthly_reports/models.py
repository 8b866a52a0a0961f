from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.geppo.models import Base
from app.geppo import workflow
from app.geppo.workflow import ReportState, Shipped

if TYPE_CHECKING:
    from app.geppo.models import User
    from app.geppo.modules.tags.models import Tag


REPORT_TEXT_FIELDS = ("business_content", "looking_back", "project_summary", "next_month_goals")

# Column name -> label shown on the checklist.
WORKING_PROCESS_LABELS = {
    "requirement_definition": "Requirement definition",
    "basic_design": "Basic design",
    "detailed_design": "Detailed design",
    "implementation": "Implementation",
    "unit_test": "Unit test",
    "integration_test": "Integration test",
    "operation": "Operation",
    "maintenance": "Maintenance",
    "other": "Other",
}
WORKING_PROCESS_FIELDS = tuple(WORKING_PROCESS_LABELS)


class MonthlyReport(Base):
    __tablename__ = "monthly_reports"
    __table_args__ = (
        UniqueConstraint("user_id", "target_month", name="uq_monthly_reports_user_month"),
        Index("idx_monthly_reports_target_month", "target_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # Always the first day of the month.
    target_month: Mapped[date] = mapped_column(Date, nullable=False)
    # NULL while wip
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    business_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    looking_back: Mapped[str | None] = mapped_column(Text, nullable=True)
    project_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_month_goals: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    user: Mapped["User"] = relationship(lazy="selectin")
    tags: Mapped[list["Tag"]] = relationship(
        secondary="monthly_report_tags",
        order_by="Tag.id",
        lazy="selectin",
    )
    working_process: Mapped["MonthlyWorkingProcess | None"] = relationship(
        back_populates="monthly_report",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
    )
    comments: Mapped[list["MonthlyReportComment"]] = relationship(
        back_populates="monthly_report",
        cascade="all, delete-orphan",
        order_by="MonthlyReportComment.id",
        lazy="selectin",
    )
    likes: Mapped[list["MonthlyReportLike"]] = relationship(
        back_populates="monthly_report",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def state(self) -> ReportState:
        return workflow.state_of(self)

    @property
    def shipped(self) -> bool:
        return isinstance(self.state, Shipped)

    def ship(self) -> bool:
        return workflow.ship(self)

    def browseable(self, viewer: "User | None") -> bool:
        return workflow.is_browseable(self, viewer.id if viewer else None)

    def liked_by(self, user: "User | None") -> bool:
        return bool(user) and any(like.user_id == user.id for like in self.likes)


class MonthlyReportTag(Base):
    __tablename__ = "monthly_report_tags"
    __table_args__ = (
        UniqueConstraint("monthly_report_id", "tag_id", name="uq_monthly_report_tags_report_tag"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    monthly_report_id: Mapped[int] = mapped_column(
        ForeignKey("monthly_reports.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tag_id: Mapped[int] = mapped_column(ForeignKey("tags.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, server_default=func.current_timestamp()
    )


class MonthlyWorkingProcess(Base):
    __tablename__ = "monthly_working_processes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    monthly_report_id: Mapped[int] = mapped_column(
        ForeignKey("monthly_reports.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    requirement_definition: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    basic_design: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    detailed_design: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    implementation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    unit_test: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    integration_test: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    operation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    maintenance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    other: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    monthly_report: Mapped[MonthlyReport] = relationship(back_populates="working_process", lazy="selectin")

    @property
    def processes(self) -> dict[str, bool]:
        return {name: bool(getattr(self, name)) for name in WORKING_PROCESS_FIELDS}

    def assign(self, flags: dict[str, bool]) -> None:
        for name in WORKING_PROCESS_FIELDS:
            setattr(self, name, bool(flags.get(name, False)))


class MonthlyReportComment(Base):
    __tablename__ = "monthly_report_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    monthly_report_id: Mapped[int] = mapped_column(
        ForeignKey("monthly_reports.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    monthly_report: Mapped[MonthlyReport] = relationship(back_populates="comments", lazy="selectin")
    user: Mapped["User"] = relationship(lazy="selectin")


class MonthlyReportLike(Base):
    __tablename__ = "monthly_report_likes"
    __table_args__ = (
        UniqueConstraint("monthly_report_id", "user_id", name="uq_monthly_report_likes_report_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    monthly_report_id: Mapped[int] = mapped_column(
        ForeignKey("monthly_reports.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    monthly_report: Mapped[MonthlyReport] = relationship(back_populates="likes", lazy="selectin")
