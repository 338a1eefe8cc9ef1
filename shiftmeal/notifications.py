"""
Email notifications: templates and the SMTP mailer.
"""

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage

from starlette.concurrency import run_in_threadpool

from .config import BRAND_NAME, BRAND_URL, SENDER_EMAIL, SMTP_HOST, SMTP_PASSWORD, SMTP_PORT, SMTP_USERNAME

logger = logging.getLogger(__name__)


@dataclass
class Email:
    to: str
    subject: str
    html: str
    sender: str = SENDER_EMAIL


# ============================================
# TEMPLATES
# ============================================
def order_delivery_template(order) -> Email:
    customer = order.customer
    return Email(
        to=customer.email,
        subject="Your Meal Has Been Delivered! 🍽️",
        html=f"""
        <p>
        Hi {customer.first_name} {customer.last_name}, your {BRAND_NAME} order of {order.item.name} from {order.restaurant.name} has been delivered! Please be sure to take the meal that is labeled with your name.
        </p>

        <p>Enjoy! 😋 </p>

        <p>- The {BRAND_NAME} Team</p>
        """,
    )


def order_archive_template(order) -> Email:
    customer = order.customer
    return Email(
        to=customer.email,
        subject="Order Status Update",
        html=f"""
        <p>Hi {customer.first_name} {customer.last_name}, your {BRAND_NAME} order of {order.item.name} from {order.restaurant.name} is cancelled. You can reorder for this date now.</p>
        """,
    )


def _order_reminder_html(deadline: str) -> str:
    return f"""
        <p>Hey there!</p>

        <p>
          <strong>
            Have you placed your order for lunch next week?
          </strong>
        </p>

        <p>Make your meal selections at {BRAND_URL}</p>

        <p>You must complete your selections by <strong>{deadline}</strong> to lock in your order!</p>

        <p>Thanks!</p>

        <p>- The {BRAND_NAME} Team</p>
        """


def thursday_order_reminder_template(user) -> Email:
    return Email(
        to=user.email,
        subject="Have you placed your order for lunch next week?",
        html=_order_reminder_html("NOON Friday"),
    )


def friday_order_reminder_template(user) -> Email:
    return Email(
        to=user.email,
        subject="Have you placed your order for lunch next week?",
        html=_order_reminder_html("NOON TODAY"),
    )


# ============================================
# MAILER
# ============================================
class Mailer:
    """Sends emails over SMTP; without a host, emails are only logged"""

    def __init__(self, host=SMTP_HOST, port=SMTP_PORT, username=SMTP_USERNAME, password=SMTP_PASSWORD):
        self.host = host
        self.port = port
        self.username = username
        self.password = password

    def _send(self, email: Email):
        message = EmailMessage()
        message["From"] = email.sender
        message["To"] = email.to
        message["Subject"] = email.subject
        message.set_content(email.html, subtype="html")

        with smtplib.SMTP(self.host, self.port) as smtp:
            smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)

    async def send(self, email: Email):
        if not self.host:
            logger.info(f"SMTP not configured, skipped email to {email.to}: {email.subject}")
            return
        await run_in_threadpool(self._send, email)
        logger.info(f"Sent email to {email.to}: {email.subject}")
