"""Mail dispatch for rendered reports."""

import logging
import smtplib
from email.message import EmailMessage
from typing import Callable, Sequence

from sharebench.exceptions import NotificationError

logger = logging.getLogger("sharebench.notify")


def build_message(body_html: str, subject: str, sender: str, recipients: Sequence[str]) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    msg.set_content("This report is HTML; open it in a mail client that renders HTML.")
    msg.add_alternative(body_html, subtype="html")
    return msg


def send_report(
    body_html: str,
    subject: str,
    sender: str,
    recipients: Sequence[str],
    smtp_host: str,
    smtp_port: int = 25,
    timeout: float = 30.0,
    smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
) -> None:
    """Send the report through the relay. Raises NotificationError on any failure."""
    if not recipients:
        raise NotificationError("no recipients configured")
    msg = build_message(body_html, subject, sender, recipients)
    try:
        with smtp_factory(smtp_host, smtp_port, timeout=timeout) as smtp:
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        raise NotificationError(f"mail via {smtp_host}:{smtp_port} failed: {exc}") from exc
    logger.info(f"Report mailed to {len(recipients)} recipient(s) via {smtp_host}")
