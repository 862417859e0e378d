"""
Agency back-office — Activity Log model.
Tracks every meaningful action on budgets, contracts, payments and projects.
"""

import uuid

from sqlalchemy import Column, String, Text, DateTime, JSON

from agency.database import Base
from agency.models.common import utcnow


class ActivityLog(Base):
    """Immutable audit trail for workflow actions."""
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    entity_type = Column(String(20), nullable=False)   # "budget", "contract", "payment", "project", "client"
    entity_id = Column(String(40), nullable=False, index=True)

    action = Column(String(50), nullable=False)          # e.g. "created", "sent", "signed", "paid"
    description = Column(Text, default="")
    icon = Column(String(10), default="📋")

    actor = Column(String(200), default="system")        # "system", "user:<id>", "client:<name>", "webhook"

    extra_data = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<ActivityLog {self.entity_type}/{self.entity_id} — {self.action}>"
