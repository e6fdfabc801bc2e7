"""Transactional email over SMTP."""

from __future__ import annotations

from email.message import EmailMessage
from html import escape
from typing import Optional

import aiosmtplib
import structlog

from beatbloom.config import settings
from beatbloom.services.order_service import OrderResponse

log = structlog.get_logger()


class NotificationError(Exception):
    """Raised when the SMTP server refuses or drops a message."""


def _money(value) -> str:
    return f"${value:.2f}"


def render_purchase_confirmation(
    order: OrderResponse,
    name: Optional[str] = None,
) -> tuple[str, str, str]:
    """Return ``(subject, text_body, html_body)`` for a settled order."""
    greeting = name or order.email.split("@")[0]
    purchases_url = f"{settings.FRONTEND_URL}/purchases"
    subject = f"Order Confirmed #{order.order_number} - BeatBloom"

    text_lines = [
        f"Hi {greeting},",
        "",
        "Thank you for your purchase! Your beats are ready to download.",
        "",
        f"Order #{order.order_number}",
    ]
    for item in order.items:
        text_lines.append(
            f"  {item.beat_title} ({item.license_name} License)  {_money(item.price)}"
        )
    text_lines += [
        f"  Processing fee  {_money(order.processing_fee)}",
        f"  Total  {_money(order.total)}",
        "",
        f"Download your beats: {purchases_url}",
    ]

    rows = "".join(
        "<tr>"
        f"<td>{escape(item.beat_title)}<br><small>{escape(item.license_name)} License</small></td>"
        f"<td style=\"text-align:right\">{_money(item.price)}</td>"
        "</tr>"
        for item in order.items
    )
    html_body = (
        "<h2>Order Confirmed!</h2>"
        f"<p>Hi {escape(greeting)},<br>Thank you for your purchase! "
        "Your beats are ready to download.</p>"
        f"<p>Order #{escape(order.order_number)}</p>"
        f"<table width=\"100%\">{rows}"
        f"<tr><td>Processing fee</td><td style=\"text-align:right\">{_money(order.processing_fee)}</td></tr>"
        f"<tr><td><strong>Total</strong></td><td style=\"text-align:right\"><strong>{_money(order.total)}</strong></td></tr>"
        "</table>"
        f"<p><a href=\"{escape(purchases_url)}\">Download Beats</a></p>"
    )
    return subject, "\n".join(text_lines), html_body


async def send_email(to: str, subject: str, text_body: str, html_body: str) -> bool:
    """Send one message. Returns False when SMTP is not configured.

    Raises NotificationError when delivery fails.
    """
    if not settings.SMTP_HOST:
        log.info("email_skipped_unconfigured", to=to, subject=subject)
        return False

    message = EmailMessage()
    message["From"] = settings.SMTP_FROM
    message["To"] = to
    message["Subject"] = subject
    message.set_content(text_body)
    message.add_alternative(html_body, subtype="html")

    try:
        await aiosmtplib.send(
            message,
            hostname=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            start_tls=settings.SMTP_USE_TLS,
            username=settings.SMTP_USERNAME or None,
            password=settings.SMTP_PASSWORD or None,
        )
    except aiosmtplib.SMTPException as exc:
        raise NotificationError(f"SMTP delivery to {to} failed: {exc}") from exc
    log.info("email_sent", to=to, subject=subject)
    return True


async def send_purchase_confirmation(
    order: OrderResponse,
    name: Optional[str] = None,
) -> bool:
    subject, text_body, html_body = render_purchase_confirmation(order, name)
    return await send_email(order.email, subject, text_body, html_body)


async def notify_purchase_confirmation(
    order: OrderResponse,
    name: Optional[str] = None,
) -> None:
    """Best-effort confirmation run after the settlement has committed."""
    try:
        await send_purchase_confirmation(order, name)
    except Exception as exc:
        log.error(
            "purchase_confirmation_failed",
            order_id=order.order_id,
            email=order.email,
            error=str(exc),
        )
