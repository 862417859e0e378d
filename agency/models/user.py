"""
Agency back-office — Staff user model.
"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from agency.database import Base
from agency.models.common import new_id, utcnow

ROLE_ADMIN = "ADMIN"
ROLE_TEAM_MEMBER = "TEAM_MEMBER"
ROLE_USER = "USER"

PROJECT_MANAGER = "Project Manager"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(String(20), default=ROLE_USER, index=True)
    team_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    api_token: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def is_manager(self) -> bool:
        if self.role == ROLE_ADMIN:
            return True
        return self.role == ROLE_TEAM_MEMBER and self.team_role == PROJECT_MANAGER

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
