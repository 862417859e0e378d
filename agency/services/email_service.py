"""
Agency back-office — Email service (SMTP).

Setup:
1. Create an app password for the sending mailbox
2. Set SMTP_EMAIL and SMTP_APP_PASSWORD in .env / docker-compose

Sending is best-effort: ``send_email`` never raises, it reports
``{"success": bool, "message": str}`` so callers can surface the outcome
without rolling back their own writes.
"""

import asyncio
import logging
import re
import smtplib
from decimal import Decimal
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from agency.config import Settings

logger = logging.getLogger(__name__)


def format_money(value, currency: str = "brl") -> str:
    amount = Decimal(value or 0)
    symbol = "R$" if currency.lower() == "brl" else currency.upper()
    return f"{symbol} {amount:,.2f}"


def html_to_text(body_html: str) -> str:
    text = body_html.replace("<br>", "\n").replace("<br/>", "\n").replace("<br />", "\n")
    return re.sub(r"<[^>]+>", "", text)


class EmailService:
    """SMTP sender built once at startup from settings."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        sender: str,
        company_name: str = "Agency",
        timeout: int = 15,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.company_name = company_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailService":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_email,
            password=settings.smtp_app_password,
            sender=settings.sender,
            company_name=settings.company_name,
        )

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)

    async def send_email(
        self,
        to: str,
        subject: str,
        body_html: str,
        text: str | None = None,
        reply_to: str | None = None,
    ) -> dict:
        """
        Send an email via SMTP.
        Returns {"success": True/False, "message": "..."}
        """
        if not self.configured:
            logger.warning("SMTP not configured — skipping email send")
            return {"success": False, "message": "SMTP credentials not configured. Set SMTP_EMAIL and SMTP_APP_PASSWORD."}
        if not to:
            return {"success": False, "message": "No recipient address"}

        msg = MIMEMultipart("alternative")
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        if reply_to:
            msg["Reply-To"] = reply_to

        msg.attach(MIMEText(text or html_to_text(body_html), "plain"))
        msg.attach(MIMEText(body_html, "html"))

        try:
            await asyncio.to_thread(self._deliver, to, msg.as_string())
            logger.info(f"✅ Email sent to {to}: {subject}")
            return {"success": True, "message": f"Email sent to {to}"}

        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP auth failed: {e}")
            return {"success": False, "message": "SMTP authentication failed. Check your app password."}
        except Exception as e:
            logger.error(f"Email send failed: {e}")
            return {"success": False, "message": f"Email failed: {str(e)}"}

    def _deliver(self, to: str, raw: str) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.ehlo()
            server.starttls()
            server.ehlo()
            server.login(self.username, self.password)
            server.sendmail(self.username, [to], raw)


# ═══════════════════════════════════════════════════════
#  Templates: each returns (subject, html_body)
# ═══════════════════════════════════════════════════════

def _wrap(title: str, body: str, company_name: str) -> str:
    return f"""
    <div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 600px; margin: 0 auto; padding: 40px 20px;">
      <h1 style="color: #111; font-size: 22px; margin: 0 0 24px;">{title}</h1>
      {body}
      <hr style="border: none; border-top: 1px solid #e5e7eb; margin: 32px 0;" />
      <p style="color: #9ca3af; font-size: 12px;">{company_name}</p>
    </div>
    """


def _button(url: str, label: str) -> str:
    return (
        f'<div style="text-align: center; margin: 32px 0;">'
        f'<a href="{url}" style="display: inline-block; background: #2563eb; color: white; '
        f'text-decoration: none; padding: 12px 28px; border-radius: 6px; font-weight: 600;">{label}</a>'
        f"</div>"
    )


def build_proposal_email(
    client_name: str,
    project_type: str,
    value: str,
    approval_url: str,
    valid_days: int,
    company_name: str = "Agency",
) -> tuple[str, str]:
    subject = f"Commercial proposal - {project_type}"
    body = f"""
      <p>Hi <strong>{client_name}</strong>,</p>
      <p>Your proposal for <strong>{project_type}</strong> is ready. Total value: <strong>{value}</strong>.</p>
      {_button(approval_url, "Review proposal")}
      <p style="color: #6b7280; font-size: 13px;">This link is valid for {valid_days} days.</p>
    """
    return subject, _wrap("📄 Your proposal is ready", body, company_name)


def build_contract_email(
    client_name: str,
    project_type: str,
    sign_url: str,
    company_name: str = "Agency",
) -> tuple[str, str]:
    subject = f"Contract - {project_type}"
    body = f"""
      <p>Hi <strong>{client_name}</strong>,</p>
      <p>The contract for <strong>{project_type}</strong> is ready for review and signature.</p>
      {_button(sign_url, "Review & sign contract")}
    """
    return subject, _wrap("📝 Contract ready for signature", body, company_name)


def build_payment_link_email(
    client_name: str,
    project_name: str,
    label: str,
    amount: str,
    pay_url: str,
    company_name: str = "Agency",
) -> tuple[str, str]:
    subject = f"{label} - {project_name}"
    body = f"""
      <p>Hi <strong>{client_name}</strong>,</p>
      <p>The <strong>{label.lower()}</strong> for <strong>{project_name}</strong> is <strong>{amount}</strong>.</p>
      {_button(pay_url, "Pay now")}
    """
    return subject, _wrap(f"💳 {label}", body, company_name)


def build_down_payment_confirmed_email(
    client_name: str,
    project_type: str,
    total: str,
    paid: str,
    remaining: str,
    company_name: str = "Agency",
) -> tuple[str, str]:
    subject = "Payment confirmed - your project has started"
    body = f"""
      <p>Hi <strong>{client_name}</strong>,</p>
      <p>Your down payment was confirmed and your project <strong>{project_type}</strong> has started.</p>
      <div style="background: #f3f4f6; padding: 20px; border-radius: 8px; margin: 20px 0;">
        <p><strong>Total value:</strong> {total}</p>
        <p><strong>Down payment:</strong> {paid} ✅</p>
        <p><strong>Remaining balance:</strong> {remaining}</p>
      </div>
      <p>Our team will contact you shortly to kick things off.</p>
    """
    return subject, _wrap("🎉 Payment confirmed", body, company_name)


def build_progress_email(
    client_name: str,
    project_name: str,
    progress: int,
    message: str,
    company_name: str = "Agency",
) -> tuple[str, str]:
    subject = f"Project update - {progress}% complete"
    paragraphs = "".join(f"<p>{line}</p>" for line in message.split("\n") if line.strip())
    body = f"""
      <p>Hi <strong>{client_name}</strong>,</p>
      <p><strong>{project_name}</strong></p>
      <div style="background: #e5e7eb; border-radius: 999px; height: 12px; margin: 16px 0;">
        <div style="background: #2563eb; border-radius: 999px; height: 12px; width: {progress}%;"></div>
      </div>
      {paragraphs}
    """
    return subject, _wrap(f"🚀 {progress}% complete", body, company_name)


def build_final_payment_confirmed_email(
    client_name: str,
    project_name: str,
    total: str,
    paid: str,
    schedule_url: str,
    company_name: str = "Agency",
) -> tuple[str, str]:
    subject = "Final payment confirmed - schedule your delivery"
    body = f"""
      <p>Hi <strong>{client_name}</strong>,</p>
      <p>Your final payment was confirmed and <strong>{project_name}</strong> is 100% complete.</p>
      <div style="background: #f3f4f6; padding: 20px; border-radius: 8px; margin: 20px 0;">
        <p><strong>Total value:</strong> {total}</p>
        <p><strong>Final payment:</strong> {paid} ✅</p>
      </div>
      <p>Pick the best day and time for the delivery presentation by video or audio call.</p>
      {_button(schedule_url, "Schedule delivery")}
    """
    return subject, _wrap("🎉 Final payment confirmed", body, company_name)


def build_schedule_email(
    client_name: str,
    project_name: str,
    when: str,
    meeting_type: str,
    meeting_link: str | None,
    phone: str | None,
    company_name: str = "Agency",
) -> tuple[str, str]:
    label = "Video call" if meeting_type == "video" else "Audio call"
    subject = f"Project delivery scheduled - {label}"
    if meeting_type == "video":
        detail = f'<p><strong>Meeting link:</strong> <a href="{meeting_link}">{meeting_link}</a></p>'
    else:
        detail = f"<p>We will call you at <strong>{phone or 'your registered number'}</strong> at the scheduled time.</p>"
    body = f"""
      <p>Hi <strong>{client_name}</strong>,</p>
      <p>The delivery of <strong>{project_name}</strong> is scheduled for <strong>{when}</strong> ({label.lower()}).</p>
      {detail}
    """
    return subject, _wrap("📅 Delivery scheduled", body, company_name)
