"""
Agency back-office — Budget, contract and payment schemas.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from agency.workflow.status import PaymentType


# ── Quote request / budget ─────────────────────────────
class BudgetCreateRequest(BaseModel):
    client_name: str = Field(..., min_length=2, max_length=200)
    client_email: EmailStr
    client_phone: Optional[str] = Field(None, max_length=30)
    company: Optional[str] = Field(None, max_length=200)
    project_type: str = Field(..., min_length=2, max_length=100)
    complexity: str = "medium"
    timeline: str = "normal"
    features: list[str] = []
    details: Optional[str] = Field(None, max_length=5000)
    estimated_min: Decimal = Field(Decimal("0"), ge=0)
    estimated_max: Decimal = Field(Decimal("0"), ge=0)


class BudgetUpdateRequest(BaseModel):
    client_name: Optional[str] = Field(None, min_length=2, max_length=200)
    client_email: Optional[EmailStr] = None
    client_phone: Optional[str] = None
    company: Optional[str] = None
    project_type: Optional[str] = None
    complexity: Optional[str] = None
    timeline: Optional[str] = None
    features: Optional[list[str]] = None
    details: Optional[str] = None
    estimated_min: Optional[Decimal] = Field(None, ge=0)
    estimated_max: Optional[Decimal] = Field(None, ge=0)
    final_value: Optional[Decimal] = Field(None, ge=0)

    @field_validator(
        "client_name", "client_email", "project_type", "complexity", "timeline",
        "estimated_min", "estimated_max",
        mode="before",
    )
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class SendProposalRequest(BaseModel):
    send_email: bool = True
    send_whatsapp: bool = False


class ProposalAnswerRequest(BaseModel):
    accepted: bool


class BudgetReviewRequest(BaseModel):
    action: Literal["accept", "decline"]
    reason: Optional[str] = Field(None, max_length=2000)


# ── Contract ────────────────────────────────────────────
class ContractCreateRequest(BaseModel):
    content: str = Field(..., min_length=1)
    final_value: Optional[Decimal] = Field(None, gt=0)
    send_email: bool = True
    send_whatsapp: bool = False


class ContractSignRequest(BaseModel):
    signer_name: str = Field(..., min_length=2, max_length=200)
    document_url: Optional[str] = Field(None, max_length=500)


# ── Payments ────────────────────────────────────────────
class PaymentConfirmRequest(BaseModel):
    budget_id: str
    type: PaymentType
    confirmed: bool = True
