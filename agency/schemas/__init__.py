"""
Agency back-office — Pydantic request/response schemas.
"""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "1.0.0"
    timestamp: str | None = None
    database: str = "connected"


class NotificationUpdateRequest(BaseModel):
    read: bool = True
