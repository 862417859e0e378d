"""
API Routes — health.
"""

from datetime import datetime, timezone

from fastapi import APIRouter

from agency import __version__
from agency.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health():
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
    )
