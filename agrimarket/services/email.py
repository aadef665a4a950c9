import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from decimal import Decimal
from typing import Iterable

import structlog

from agrimarket.core.config import settings
from agrimarket.core.exceptions import DependencyError

logger = structlog.get_logger(__name__)

def send_email(to_email: str, subject: str, body: str):
    """Send a short HTML mail. Raises DependencyError when the SMTP exchange fails."""
    if not settings.MAIL_ENABLED:
        logger.debug("mail_disabled", to=to_email, subject=subject)
        return False

    msg = MIMEMultipart('alternative')
    msg['From'] = settings.MAIL_FROM
    msg['To'] = to_email
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'html'))

    smtp_class = smtplib.SMTP_SSL if settings.MAIL_SSL else smtplib.SMTP
    try:
        with smtp_class(settings.MAIL_SERVER, settings.MAIL_PORT) as server:
            if not settings.MAIL_SSL:
                server.starttls()
            if settings.MAIL_PASSWORD:
                server.login(settings.MAIL_USERNAME, settings.MAIL_PASSWORD)
            server.sendmail(settings.MAIL_FROM, to_email, msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        raise DependencyError("smtp", str(e)) from e

    logger.info("email_sent", to=to_email, subject=subject)
    return True

def _format_amount(amount: Decimal) -> str:
    return f"₹{amount:.2f}"

def send_order_placed_email(to_email: str, buyer_name: str, orders: Iterable[dict]):
    orders = list(orders)
    rows = "".join(
        f"<li>Order #{o['id']}: {o['itemCount']} item(s), {_format_amount(o['totalPrice'])}</li>"
        for o in orders
    )
    body = (
        f"<p>Hi {buyer_name},</p>"
        f"<p>We received your order{'s' if len(orders) > 1 else ''}:</p>"
        f"<ul>{rows}</ul>"
        "<p>Each farmer ships their part separately.</p>"
    )
    return send_email(to_email, "Your order has been placed", body)

def send_order_status_email(to_email: str, buyer_name: str, order_id: int, status: str, tracking_number: str = None):
    body = f"<p>Hi {buyer_name},</p><p>Your order #{order_id} is now <b>{status}</b>.</p>"
    if tracking_number:
        body += f"<p>Tracking number: {tracking_number}</p>"
    return send_email(to_email, f"Order #{order_id} {status}", body)
