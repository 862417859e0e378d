"""
Agency back-office — Public contract signing.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from agency.database import get_db
from agency.models.budget import Budget
from agency.models.common import utcnow
from agency.models.contract import Contract
from agency.routes.activity import log_activity
from agency.schemas.budget import ContractSignRequest
from agency.services.notifications import notify_managers
from agency.workflow.status import BudgetEvent, apply_budget_event, can_apply_budget_event

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/contracts", tags=["contracts"])

_SIGNED = ("signed_by_client", "signed")


@router.get("/{contract_id}")
async def get_contract_for_signing(contract_id: str, db: AsyncSession = Depends(get_db)):
    """Public endpoint: contract text for the signing page."""
    contract = await db.get(Contract, contract_id)
    if not contract:
        raise HTTPException(404, "Contract not found")
    budget = await db.get(Budget, contract.budget_id)
    return {
        "id": contract.id,
        "content": contract.content or "",
        "status": contract.status,
        "client_name": budget.client_name if budget else "",
        "project_type": budget.project_type if budget else "",
        "signed_by_client_at": contract.signed_by_client_at,
    }


@router.post("/{contract_id}/sign")
async def sign_contract(
    contract_id: str,
    req: ContractSignRequest,
    db: AsyncSession = Depends(get_db),
):
    """Public endpoint: the client signs the contract."""
    contract = await db.get(Contract, contract_id)
    if not contract:
        raise HTTPException(404, "Contract not found")
    if contract.status in _SIGNED:
        raise HTTPException(400, "This contract has already been signed")

    now = utcnow()
    contract.status = "signed_by_client"
    contract.signed_by_client_at = now
    contract.signer_name = req.signer_name
    if req.document_url:
        contract.document_url = req.document_url

    budget = await db.get(Budget, contract.budget_id)
    if budget and can_apply_budget_event(budget.status, BudgetEvent.CONTRACT_SIGNED):
        budget.status = apply_budget_event(budget.status, BudgetEvent.CONTRACT_SIGNED).value

    await log_activity(
        db, entity_type="contract", entity_id=contract.id,
        action="signed", icon="✍️",
        description=f"Contract signed by {req.signer_name}",
        actor=f"client:{req.signer_name}",
        metadata={"budget_id": contract.budget_id},
    )
    await db.commit()
    await db.refresh(contract)
    logger.info(f"✍️ Contract {contract.id} signed by {req.signer_name}")

    await notify_managers(
        db,
        title="Contract signed",
        message=f"{req.signer_name} signed the contract" + (f" for {budget.project_type}." if budget else "."),
        type="success",
        category="contract",
        link=f"/budgets/{contract.budget_id}",
        metadata={"contract_id": contract.id, "budget_id": contract.budget_id},
    )
    return {
        "success": True,
        "contract": contract.to_dict(),
        "budget_status": budget.status if budget else None,
    }
