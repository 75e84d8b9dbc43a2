"""Notification emails sent when requests are submitted or decided."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Iterable, Optional

from packages.benefits_common import BenefitRequest, RequestStatus

from .accounts import UserAccount
from .config import MailConfig

logger = logging.getLogger(__name__)


def send_email(mail: MailConfig, to: str, subject: str, body: str) -> None:
    """Send a plain-text email through the configured SMTP server.

    Raises:
        smtplib.SMTPException: If the SMTP conversation fails.
        OSError: If the server cannot be reached.
    """

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = mail.default_sender
    msg["To"] = to
    msg.set_content(body)

    if mail.use_ssl:
        smtp_cls = smtplib.SMTP_SSL
        default_port = 465
    else:
        smtp_cls = smtplib.SMTP
        default_port = 587 if mail.use_tls else 25

    with smtp_cls(mail.server, mail.port or default_port) as smtp:
        if mail.use_tls and not mail.use_ssl:
            smtp.starttls()
        if mail.username and mail.password:
            smtp.login(mail.username, mail.password)
        smtp.send_message(msg)


def _deliver(mail: MailConfig, recipients: Iterable[str], subject: str, body: str) -> int:
    """Send one message per recipient and return how many were delivered.

    Delivery problems are logged; notifications never fail the caller.
    """

    if not mail.enabled:
        logger.debug("Mail disabled; skipping notification %r", subject)
        return 0
    delivered = 0
    for recipient in recipients:
        try:
            send_email(mail, recipient, subject, body)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email send failed for %s: %s", recipient, exc)
            continue
        delivered += 1
    return delivered


def format_amount(amount) -> str:
    return f"R$ {amount:.2f}"


def build_submission_body(request: BenefitRequest, requester: UserAccount) -> str:
    lines = [
        "A new benefit request is waiting for review.",
        "",
        f"Request: #{request.id}",
        f"Requester: {requester.name} <{requester.email}>",
        f"Work site: {request.polo}",
        f"Amount: {format_amount(request.amount)}",
        f"Dependents: {len(request.dependents)}",
        f"Invoices attached: {len(request.attachments)}",
    ]
    return "\n".join(lines)


def notify_request_submitted(
    mail: MailConfig,
    request: BenefitRequest,
    requester: UserAccount,
    manager_addresses: Iterable[str],
) -> int:
    recipients = list(manager_addresses)
    if mail.manager_address and mail.manager_address not in recipients:
        recipients.append(mail.manager_address)
    return _deliver(
        mail,
        recipients,
        f"New benefit request #{request.id}",
        build_submission_body(request, requester),
    )


def notify_request_decided(
    mail: MailConfig, request: BenefitRequest, requester: Optional[UserAccount]
) -> int:
    if requester is None:
        logger.warning("No requester account for request %s", request.id)
        return 0
    outcome = "approved" if request.status == RequestStatus.APPROVED else "rejected"
    body = [
        f"Hello {requester.name},",
        "",
        f"Your benefit request #{request.id} for {format_amount(request.amount)} "
        f"was {outcome}.",
    ]
    if request.decision_note:
        body.extend(["", f"Note: {request.decision_note}"])
    return _deliver(
        mail,
        [requester.email],
        f"Benefit request #{request.id} {outcome}",
        "\n".join(body),
    )
