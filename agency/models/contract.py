"""
Agency back-office — Contract model (one per budget).
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from agency.database import Base
from agency.models.common import new_id, utcnow


class Contract(Base):
    __tablename__ = "contracts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    budget_id: Mapped[str] = mapped_column(ForeignKey("budgets.id"), unique=True, nullable=False)
    # Annexed once the project exists
    project_id: Mapped[str | None] = mapped_column(ForeignKey("projects.id"), nullable=True, index=True)

    content: Mapped[str] = mapped_column(Text, default="")

    # pending, sent, signed_by_client, signed
    status: Mapped[str] = mapped_column(String(20), default="pending")
    confirmed: Mapped[bool] = mapped_column(Boolean, default=False)

    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    signed_by_client_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    signer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    document_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    extra_data: Mapped[dict | None] = mapped_column("metadata", JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "budget_id": self.budget_id,
            "project_id": self.project_id,
            "content": self.content or "",
            "status": self.status,
            "confirmed": bool(self.confirmed),
            "sent_at": self.sent_at,
            "signed_at": self.signed_at,
            "signed_by_client_at": self.signed_by_client_at,
            "signer_name": self.signer_name,
            "document_url": self.document_url,
            "metadata": self.extra_data or {},
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self):
        return f"<Contract {self.id[:8]} budget={self.budget_id[:8]} ({self.status})>"
