"""Templated email dispatch.

Without SMTP_HOST configured, messages are written to the log instead of
being sent, so local setups and tests never need a mail server.
"""

import re
import smtplib
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from email.message import EmailMessage
from html import escape
from typing import List, Optional
from uuid import uuid4

from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MailMessage:
    to: str
    subject: str
    html: str
    text: Optional[str] = None
    sender: Optional[str] = None


@dataclass
class SendOutcome:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class LineItem:
    name: str
    quantity: int
    price: Decimal


def strip_html(html: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"<[^>]*>", "", html)).strip()


class ConsoleTransport:
    def send(self, message: MailMessage) -> str:
        message_id = f"<{uuid4().hex}@bizadmin.local>"
        logger.debug(
            "Email (dev mode, not sent)",
            to=message.to,
            subject=message.subject,
            preview=(message.text or "")[:200],
        )
        return message_id


class SmtpTransport:
    def __init__(self, host: str, port: int, user: Optional[str], password: Optional[str], starttls: bool = True):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.starttls = starttls

    def send(self, message: MailMessage) -> str:
        email = EmailMessage()
        email["From"] = message.sender
        email["To"] = message.to
        email["Subject"] = message.subject
        message_id = f"<{uuid4().hex}@{self.host}>"
        email["Message-ID"] = message_id
        email.set_content(message.text or strip_html(message.html))
        email.add_alternative(message.html, subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.starttls:
                server.starttls()
            if self.user:
                server.login(self.user, self.password or "")
            server.send_message(email)
        return message_id


class MailDispatcher:
    def __init__(self, transport, default_from: str):
        self.transport = transport
        self.default_from = default_from

    def send(self, message: MailMessage) -> SendOutcome:
        """Send a message; delivery errors are logged and reported, never raised."""
        message.sender = message.sender or self.default_from
        message.text = message.text or strip_html(message.html)
        try:
            message_id = self.transport.send(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email", to=message.to, subject=message.subject, error=str(e))
            return SendOutcome(success=False, error=str(e))

        logger.info("Email sent", to=message.to, subject=message.subject, message_id=message_id)
        return SendOutcome(success=True, message_id=message_id)


def order_confirmation(
    order_number: str,
    customer_name: str,
    customer_email: str,
    total: Decimal,
    items: List[LineItem],
) -> MailMessage:
    rows = "".join(
        f"<tr><td>{escape(item.name)}</td><td>{item.quantity}</td><td>${item.price:.2f}</td></tr>"
        for item in items
    )
    html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
          <h1 style="color: #333;">Thank you for your order!</h1>
          <p>Hi {escape(customer_name)},</p>
          <p>Your order <strong>{order_number}</strong> has been confirmed.</p>
          <h2 style="color: #666;">Order Details</h2>
          <table style="width: 100%; border-collapse: collapse;">
            <thead>
              <tr style="background: #f5f5f5;">
                <th style="padding: 10px; text-align: left;">Item</th>
                <th style="padding: 10px; text-align: left;">Qty</th>
                <th style="padding: 10px; text-align: left;">Price</th>
              </tr>
            </thead>
            <tbody>{rows}</tbody>
          </table>
          <p style="font-size: 18px; margin-top: 20px;"><strong>Total: ${total:.2f}</strong></p>
          <p style="color: #666; margin-top: 30px;">We'll notify you when your order ships.</p>
        </div>
    """
    return MailMessage(to=customer_email, subject=f"Order Confirmation - {order_number}", html=html)


def invoice_email(
    invoice_number: str,
    customer_name: str,
    customer_email: str,
    total: Decimal,
    due_date: datetime,
) -> MailMessage:
    html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
          <h1 style="color: #333;">Invoice {invoice_number}</h1>
          <p>Hi {escape(customer_name)},</p>
          <p>Please find your invoice details below.</p>
          <div style="background: #f5f5f5; padding: 20px; margin: 20px 0;">
            <p><strong>Amount Due:</strong> ${total:.2f}</p>
            <p><strong>Due Date:</strong> {due_date:%Y-%m-%d}</p>
          </div>
          <p style="color: #666;">Thank you for your business!</p>
        </div>
    """
    return MailMessage(to=customer_email, subject=f"Invoice {invoice_number}", html=html)


def build_dispatcher(settings) -> MailDispatcher:
    if settings.smtp_host:
        transport = SmtpTransport(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_pass,
            settings.smtp_starttls,
        )
        logger.info("Mail dispatcher configured with SMTP", host=settings.smtp_host)
    else:
        transport = ConsoleTransport()
        logger.info("Mail dispatcher in dev mode, emails will be logged, not sent")
    return MailDispatcher(transport, settings.mail_from)
