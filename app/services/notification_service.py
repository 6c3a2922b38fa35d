# app/services/notification_service.py
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional

from app.core.clock import iso
from app.core.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignerNotice:
    to: str
    signer_name: str
    contract_title: str
    contract_number: str
    sign_token: str
    token_expires_at: datetime
    sender_name: Optional[str] = None
    reminder: bool = False


def signing_url(token: str) -> str:
    return f"{get_settings().public_base_url.rstrip('/')}/contracts/sign/{token}"


def send_email(to: str, subject: str, body: str, sender_name: Optional[str] = None) -> None:
    """
    SMTP delivery when credentials are configured; otherwise the message is
    only logged (local/dev).
    """
    settings = get_settings()
    display = (sender_name or settings.email_sender_name).strip()
    from_value = formataddr((display, settings.email_sender)) if display else settings.email_sender

    if not (settings.smtp_host and settings.smtp_user and settings.smtp_password):
        logger.info("email_stub", extra={"to": to, "subject": subject, "from": from_value})
        return

    msg = EmailMessage()
    msg["From"] = from_value
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)

    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
        smtp.starttls()
        smtp.login(settings.smtp_user, settings.smtp_password)
        smtp.send_message(msg)


class NotificationService:
    """Signer-facing email. Delivery failures are logged, never raised."""

    def notify_signer(self, notice: SignerNotice) -> bool:
        verb = "Reminder: please sign" if notice.reminder else "Please sign"
        subject = f"{verb} {notice.contract_title} ({notice.contract_number})"
        body = "\n".join(
            [
                f"Hello {notice.signer_name},",
                "",
                f"You have been asked to sign \"{notice.contract_title}\".",
                f"Review and sign here: {signing_url(notice.sign_token)}",
                "",
                f"This link expires at {iso(notice.token_expires_at)}.",
            ]
        )
        return self._deliver(notice.to, subject, body, notice.sender_name)

    def notify_decline(self, to: str, contract_title: str, signer_name: str, reason: Optional[str]) -> bool:
        subject = f"{signer_name} declined to sign {contract_title}"
        body = "\n".join(
            [
                f"{signer_name} declined to sign \"{contract_title}\".",
                f"Reason: {reason or '(none given)'}",
                "",
                "The contract has been voided. Create a revision to send it again.",
            ]
        )
        return self._deliver(to, subject, body, None)

    def _deliver(self, to: str, subject: str, body: str, sender_name: Optional[str]) -> bool:
        try:
            send_email(to, subject, body, sender_name=sender_name)
        except (smtplib.SMTPException, OSError):
            logger.exception("email_delivery_failed", extra={"to": to, "subject": subject})
            return False
        return True
