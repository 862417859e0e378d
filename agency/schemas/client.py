"""
Agency back-office — Client schemas.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class ContactEntry(BaseModel):
    id: Optional[str] = None
    value: str
    type: str = "pessoal"
    isPrimary: bool = False


class ClientCreateRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    document_type: Literal["cpf", "cnpj"] = "cpf"
    document: str
    emails: list[ContactEntry] = []
    phones: list[ContactEntry] = []
    company: Optional[str] = None
    notes: Optional[str] = None
    status: Literal["active", "inactive"] = "active"


class ClientUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    document_type: Optional[Literal["cpf", "cnpj"]] = None
    document: Optional[str] = None
    emails: Optional[list[ContactEntry]] = None
    phones: Optional[list[ContactEntry]] = None
    company: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[Literal["active", "inactive"]] = None

    @field_validator("name", "first_name", "last_name", "document_type", "document", "status", mode="before")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v
