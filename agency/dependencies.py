"""
Request-scoped access to the collaborators built in the app lifespan.
"""

from fastapi import Request

from agency.services.email_service import EmailService
from agency.services.payment_links import PaymentLinkClient


def get_email_service(request: Request) -> EmailService:
    return request.app.state.email_service


def get_payment_links(request: Request) -> PaymentLinkClient:
    return request.app.state.payment_links
