"""
Agency back-office — Payment model.

At most one row per (budget_id, type); the unique constraint backs the
find-then-create upsert in the payment ledger.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from agency.database import Base
from agency.models.common import new_id, utcnow


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("budget_id", "type", name="uq_payments_budget_type"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    budget_id: Mapped[str] = mapped_column(ForeignKey("budgets.id"), nullable=False, index=True)
    project_id: Mapped[str | None] = mapped_column(ForeignKey("projects.id"), nullable=True, index=True)

    type: Mapped[str] = mapped_column(String(20), nullable=False)  # down_payment, final_payment
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending, paid
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Payment provider references
    stripe_payment_link_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    stripe_payment_link_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    stripe_payment_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "budget_id": self.budget_id,
            "project_id": self.project_id,
            "type": self.type,
            "amount": self.amount,
            "description": self.description or "",
            "status": self.status,
            "paid_at": self.paid_at,
            "due_date": self.due_date,
            "payment_link_id": self.stripe_payment_link_id,
            "payment_link_url": self.stripe_payment_link_url,
            "created_at": self.created_at,
        }

    def __repr__(self):
        return f"<Payment {self.type} {self.amount} ({self.status})>"
