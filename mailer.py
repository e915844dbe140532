"""
Transactional email

``Mailer.send`` raises ``MailError`` on any failure. Callers on paths where
email is a side effect go through ``Mailer.send_quietly`` instead, which logs
the failure and carries on.
"""

import re
import smtplib
from email.message import EmailMessage
from html import escape

import structlog

from config import Settings

logger = structlog.get_logger(__name__)

SHOP_NAME = "MP Books & Stationery"
SHOP_CONTACT = "Phone: 985-5038599 / 056-534129 | Address: MCGP+37F, Bharatpur 44200 | Hours: 6:00 AM - 9:00 PM Daily"

TAG_RE = re.compile(r"<[^>]*>")


class MailError(Exception):
    pass


class Mailer:
    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, to: str, subject: str, html: str) -> None:
        s = self.settings
        if not s.email_host or not s.email_user:
            raise MailError("Email transport is not configured")

        msg = EmailMessage()
        msg["From"] = s.email_user
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(TAG_RE.sub("", html))
        msg.add_alternative(html, subtype="html")

        try:
            if s.email_secure:
                server = smtplib.SMTP_SSL(s.email_host, s.email_port, timeout=s.email_timeout)
            else:
                server = smtplib.SMTP(s.email_host, s.email_port, timeout=s.email_timeout)
            with server:
                if not s.email_secure:
                    server.starttls()
                if s.email_pass:
                    server.login(s.email_user, s.email_pass)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise MailError(str(e)) from e
        logger.info("email_sent", to=to, subject=subject)

    def send_quietly(self, to: str, subject: str, html: str) -> bool:
        try:
            self.send(to, subject, html)
        except MailError as e:
            logger.warning("email_failed", to=to, subject=subject, error=str(e))
            return False
        return True


# ----------------------- Templates -----------------------
def _layout(title: str, body: str) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<div style="background: #667eea; color: white; padding: 20px; text-align: center;">'
        f'<h1 style="margin: 0;">{SHOP_NAME}</h1><p style="margin: 10px 0 0 0;">{escape(title)}</p></div>'
        f'<div style="padding: 30px; background: #f8f9fa;">{body}'
        f"<p>Thank you for shopping with us!<br><strong>The {SHOP_NAME} Team</strong></p></div>"
        '<div style="background: #333; color: white; padding: 20px; text-align: center; font-size: 12px;">'
        f"<p style=\"margin: 0;\">{SHOP_CONTACT}</p></div></div>"
    )


def verification_email(name: str, url: str) -> str:
    return _layout(
        "Verify your email",
        f"<h2>Hello {escape(name)},</h2>"
        "<p>Thanks for registering. Please confirm your email address. The code expires in 10 minutes.</p>"
        f'<p><a href="{escape(url)}">Verify my email</a></p>',
    )


def password_reset_email(name: str, url: str) -> str:
    return _layout(
        "Password Reset",
        f"<h2>Hello {escape(name)},</h2>"
        "<p>We received a request to reset your password. The link expires in 30 minutes.</p>"
        f'<p><a href="{escape(url)}">Reset my password</a></p>'
        "<p>If you did not request this, you can ignore this email.</p>",
    )


def welcome_email(name: str) -> str:
    return _layout(
        "Welcome!",
        f"<h2>Welcome, {escape(name)}!</h2><p>Your email is verified and your account is ready.</p>",
    )


def order_confirmation_email(name: str, order_code: str, details: str, total: float) -> str:
    return _layout(
        "Order Confirmation",
        f"<h2>Hello {escape(name)},</h2>"
        f"<p>Your order <strong>#{escape(order_code)}</strong> has been placed.</p>"
        f"<p><strong>Items:</strong> {escape(details)}</p>"
        f"<p><strong>Total Amount:</strong> Rs. {total:.2f}</p>",
    )


def pickup_ready_email(name: str, order_code: str, total: float) -> str:
    return _layout(
        "Order Ready for Pickup",
        f"<h2>Hello {escape(name)},</h2>"
        "<p>Great news! Your order is now ready for pickup at our shop.</p>"
        f"<p><strong>Order Number:</strong> {escape(order_code)}<br>"
        f"<strong>Total Amount:</strong> Rs. {total:.2f}<br>"
        "<strong>Status:</strong> Ready for Pickup</p>"
        "<p>Please bring a valid ID for verification.</p>",
    )


def message_reply_email(name: str, original: str, reply: str) -> str:
    return _layout(
        "Reply to your message",
        f"<h2>Hello {escape(name)},</h2>"
        f"<p><strong>Your message:</strong><br>{escape(original)}</p>"
        f"<p><strong>Our reply:</strong><br>{escape(reply)}</p>",
    )
