"""
Agency back-office — Client API routes.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agency.auth import get_current_user
from agency.database import get_db
from agency.models.client import Client, encode_contacts
from agency.models.project import Project
from agency.models.user import User
from agency.routes.activity import log_activity
from agency.schemas.client import ClientCreateRequest, ClientUpdateRequest
from agency.services.validators import validate_contact_list, validate_document
from agency.workflow.errors import ConflictError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/clients", tags=["clients"], dependencies=[Depends(get_current_user)])

DUPLICATE_DOCUMENT = "A client with this document is already registered"


async def _get_client(db: AsyncSession, client_id: str) -> Client:
    client = await db.get(Client, client_id)
    if not client:
        raise HTTPException(404, f"Client {client_id} not found")
    return client


def _clean_fields(data: dict, document_type: str | None) -> dict:
    """Validate document and contact lists; ValueError becomes a 400."""
    try:
        if "document" in data and data["document"] is not None:
            data["document"] = validate_document(document_type or "cpf", data["document"])
        for kind, key in (("email", "emails"), ("phone", "phones")):
            if key in data and data[key] is not None:
                entries = [e.model_dump() if hasattr(e, "model_dump") else e for e in data[key]]
                data[key] = encode_contacts(validate_contact_list(entries, kind))
    except ValueError as e:
        raise HTTPException(400, str(e))
    return data


async def _commit_unique(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(DUPLICATE_DOCUMENT)


@router.get("")
async def list_clients(
    search: str | None = Query(None, description="Name or email fragment"),
    status: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Client).order_by(Client.name.asc()).limit(limit)
    if search:
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(or_(func.lower(Client.name).like(pattern), func.lower(Client.emails).like(pattern)))
    if status:
        stmt = stmt.where(Client.status == status)
    result = await db.execute(stmt)
    clients = result.scalars().all()
    return {"clients": [c.to_dict() for c in clients], "total": len(clients)}


@router.get("/{client_id}")
async def get_client(client_id: str, db: AsyncSession = Depends(get_db)):
    client = await _get_client(db, client_id)
    return client.to_dict()


@router.post("", status_code=201)
async def create_client(
    req: ClientCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = _clean_fields(req.model_dump(), req.document_type)
    first, _, rest = req.name.partition(" ")
    data["first_name"] = data.get("first_name") or first
    data["last_name"] = data.get("last_name") or rest

    existing = await db.execute(select(Client.id).where(Client.document == data["document"]))
    if existing.scalar_one_or_none():
        raise ConflictError(DUPLICATE_DOCUMENT)

    client = Client(**data)
    db.add(client)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(DUPLICATE_DOCUMENT)
    await log_activity(
        db, entity_type="client", entity_id=client.id,
        action="created", icon="👤",
        description=f"Client {client.name} registered",
        actor=f"user:{user.id}",
    )
    await _commit_unique(db)
    await db.refresh(client)
    logger.info(f"✅ Client created: {client.id} ({client.name})")
    return client.to_dict()


@router.patch("/{client_id}")
async def update_client(
    client_id: str,
    req: ClientUpdateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    client = await _get_client(db, client_id)
    update_data = req.model_dump(exclude_unset=True)
    document_type = update_data.get("document_type") or client.document_type
    if "document_type" in update_data and "document" not in update_data:
        update_data["document"] = client.document
    update_data = _clean_fields(update_data, document_type)

    for key, value in update_data.items():
        setattr(client, key, value)

    changed_fields = list(update_data.keys())
    await log_activity(
        db, entity_type="client", entity_id=client.id,
        action="updated", icon="✏️",
        description=f"Client updated — changed: {', '.join(changed_fields)}",
        actor=f"user:{user.id}",
        metadata={"changed_fields": changed_fields},
    )
    await _commit_unique(db)
    await db.refresh(client)
    return client.to_dict()


@router.delete("/{client_id}", status_code=204)
async def delete_client(
    client_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    client = await _get_client(db, client_id)
    count = await db.execute(select(func.count(Project.id)).where(Project.client_id == client.id))
    if count.scalar() or 0:
        raise HTTPException(400, "Cannot delete a client that owns projects")
    name = client.name
    await db.delete(client)
    await log_activity(
        db, entity_type="client", entity_id=client_id,
        action="deleted", icon="🗑️",
        description=f"Client {name} deleted",
        actor=f"user:{user.id}",
    )
    await db.commit()


@router.get("/{client_id}/projects")
async def list_client_projects(client_id: str, db: AsyncSession = Depends(get_db)):
    await _get_client(db, client_id)
    result = await db.execute(
        select(Project).where(Project.client_id == client_id).order_by(Project.created_at.desc())
    )
    projects = result.scalars().all()
    return {"projects": [p.to_dict() for p in projects], "total": len(projects)}
