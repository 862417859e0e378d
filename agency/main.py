"""
FastAPI Application — entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agency import __version__
from agency.config import settings
from agency.database import Database
from agency.routes import router
from agency.routes.activity import activity_router
from agency.routes.budgets import router as budget_router
from agency.routes.clients import router as client_router
from agency.routes.contracts import router as contract_router
from agency.routes.notifications import router as notification_router
from agency.routes.payments import router as payment_router, webhook_router
from agency.routes.projects import router as project_router
from agency.services.email_service import EmailService
from agency.services.payment_links import PaymentLinkClient
from agency.workflow.errors import WorkflowError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hook."""
    logger.info(f"🚀 Starting {settings.company_name} back-office API v{__version__}")
    db = Database(settings.database_url)
    await db.create_all()
    app.state.db = db
    logger.info("✅ Database ready")

    app.state.email_service = EmailService.from_settings(settings)
    if not app.state.email_service.configured:
        logger.info("ℹ️ Email disabled (no SMTP credentials)")

    app.state.payment_links = PaymentLinkClient.from_settings(settings)
    if not app.state.payment_links.configured:
        logger.info("ℹ️ Payment links disabled (no Stripe key)")

    yield

    await db.dispose()
    logger.info("👋 Shutdown complete")


app = FastAPI(
    title="Agency Back-office API",
    description="Budgets, contracts, staged payments and project tracking.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    logger.warning(f"{request.method} {request.url.path} → {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(router, prefix="/api/v1")
app.include_router(budget_router, prefix="/api/v1")
app.include_router(contract_router, prefix="/api/v1")
app.include_router(payment_router, prefix="/api/v1")
app.include_router(webhook_router, prefix="/api/v1")
app.include_router(project_router, prefix="/api/v1")
app.include_router(client_router, prefix="/api/v1")
app.include_router(notification_router, prefix="/api/v1")
app.include_router(activity_router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Agency Back-office API",
        "version": __version__,
        "docs": "/docs",
    }
