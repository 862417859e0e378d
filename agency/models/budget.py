"""
Agency back-office — Budget (quote) model.

A budget is the root record before a project exists. ``project_id`` is
unique and is claimed exactly once by the conversion orchestrator.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, JSON, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from agency.database import Base
from agency.models.common import new_id, utcnow


class Budget(Base):
    __tablename__ = "budgets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    # Client contact
    client_name: Mapped[str] = mapped_column(String(200), nullable=False)
    client_email: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    client_phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    company: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Scope
    project_type: Mapped[str] = mapped_column(String(100), nullable=False)
    complexity: Mapped[str] = mapped_column(String(30), default="medium")
    timeline: Mapped[str] = mapped_column(String(30), default="normal")
    features: Mapped[list | None] = mapped_column(JSON, default=list)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Pricing
    estimated_min: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    estimated_max: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    final_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    # Snapshot of final_value at the first money event; both payment shares derive from it
    agreed_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    status: Mapped[str] = mapped_column(String(30), default="pending", index=True)
    project_id: Mapped[str | None] = mapped_column(
        ForeignKey("projects.id"), unique=True, nullable=True
    )

    # Client approval
    approval_token: Mapped[str | None] = mapped_column(String(120), unique=True, nullable=True)
    approval_token_expires: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    client_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Internal review
    accepted_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    declined_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decline_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "client_phone": self.client_phone,
            "company": self.company,
            "project_type": self.project_type,
            "complexity": self.complexity,
            "timeline": self.timeline,
            "features": self.features or [],
            "details": self.details,
            "estimated_min": self.estimated_min or 0,
            "estimated_max": self.estimated_max or 0,
            "final_value": self.final_value,
            "agreed_value": self.agreed_value,
            "status": self.status,
            "project_id": self.project_id,
            "client_approved_at": self.client_approved_at,
            "accepted_by": self.accepted_by,
            "accepted_at": self.accepted_at,
            "declined_by": self.declined_by,
            "declined_at": self.declined_at,
            "decline_reason": self.decline_reason,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self):
        return f"<Budget {self.id[:8]} – {self.client_name} ({self.status})>"
