"""
Agency back-office — Project and delivery Schedule models.
"""

from datetime import date as date_type, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from agency.database import Base
from agency.models.common import new_id, utcnow


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    complexity: Mapped[str] = mapped_column(String(20), default="medium")
    timeline: Mapped[str] = mapped_column(String(20), default="normal")

    # planning → development_20/50/70/100 → waiting_final_payment → completed
    status: Mapped[str] = mapped_column(String(30), default="planning", index=True)
    progress: Mapped[int] = mapped_column(Integer, default=0)

    budget: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    client_id: Mapped[str] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    client_name: Mapped[str] = mapped_column(String(200), default="")
    created_by_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    start_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description or "",
            "type": self.type,
            "complexity": self.complexity,
            "timeline": self.timeline,
            "status": self.status,
            "progress": self.progress or 0,
            "budget": self.budget,
            "client_id": self.client_id,
            "client_name": self.client_name or "",
            "created_by_id": self.created_by_id,
            "start_date": self.start_date,
            "due_date": self.due_date,
            "completed_at": self.completed_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self):
        return f"<Project {self.name} ({self.status}, {self.progress}%)>"


class Schedule(Base):
    """Delivery meeting for a finished project (one per project)."""
    __tablename__ = "schedules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), unique=True, nullable=False)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM
    type: Mapped[str] = mapped_column(String(10), default="video")  # video, audio
    # scheduled, rescheduled, pending_reschedule
    status: Mapped[str] = mapped_column(String(20), default="scheduled")
    meeting_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reschedule_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "date": self.date,
            "time": self.time,
            "type": self.type,
            "status": self.status,
            "meeting_link": self.meeting_link,
            "notes": self.notes,
            "reschedule_reason": self.reschedule_reason,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
