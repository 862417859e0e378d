"""
Agency back-office — Client model.

Contact lists (emails, phones) are stored JSON-encoded as
``[{id, value, type, isPrimary}]``.
"""

import json
from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from agency.database import Base
from agency.models.common import new_id, utcnow


def decode_contacts(raw: str | None) -> list[dict]:
    """Parse a JSON-encoded contact list; malformed data yields an empty list."""
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return data if isinstance(data, list) else []


def encode_contacts(entries: list[dict] | None) -> str | None:
    if not entries:
        return None
    return json.dumps(entries, ensure_ascii=False)


def primary_value(entries: list[dict]) -> str | None:
    """Primary entry value, falling back to the first entry."""
    for entry in entries:
        if entry.get("isPrimary"):
            return entry.get("value")
    return entries[0].get("value") if entries else None


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), default="")
    last_name: Mapped[str] = mapped_column(String(150), default="")

    document_type: Mapped[str] = mapped_column(String(10), default="cpf")  # cpf, cnpj
    document: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)

    emails: Mapped[str | None] = mapped_column(Text, nullable=True)
    phones: Mapped[str | None] = mapped_column(Text, nullable=True)
    company: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="active")  # active, inactive

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def email_list(self) -> list[dict]:
        return decode_contacts(self.emails)

    @property
    def phone_list(self) -> list[dict]:
        return decode_contacts(self.phones)

    @property
    def primary_email(self) -> str | None:
        return primary_value(self.email_list)

    @property
    def primary_phone(self) -> str | None:
        return primary_value(self.phone_list)

    def has_email(self, email: str) -> bool:
        wanted = email.strip().lower()
        return any(
            str(e.get("value", "")).strip().lower() == wanted for e in self.email_list
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "document_type": self.document_type,
            "document": self.document,
            "emails": self.email_list,
            "phones": self.phone_list,
            "company": self.company,
            "notes": self.notes,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self):
        return f"<Client {self.name} ({self.document_type}:{self.document})>"
