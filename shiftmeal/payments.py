"""
Stripe payment gateway: checkout sessions, refunds and webhook parsing.

The Stripe SDK is synchronous, so every call runs in the threadpool.
"""

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

import stripe
from starlette.concurrency import run_in_threadpool

from .config import CLIENT_URL, CURRENCY, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from .errors import InvalidInput, PaymentProviderError
from .utils import to_decimal, to_minor_units

logger = logging.getLogger(__name__)

# Initialize Stripe
stripe.api_key = STRIPE_SECRET_KEY


@dataclass
class CheckoutLineItem:
    label: str
    description: str
    amount: Decimal


class StripeGateway:
    def __init__(self, currency: str = CURRENCY, client_url: str = CLIENT_URL,
                 webhook_secret: str = STRIPE_WEBHOOK_SECRET):
        self.currency = currency
        self.client_url = client_url
        self.webhook_secret = webhook_secret

    async def create_checkout_session(
        self,
        customer_email: str,
        correlation_id: str,
        discount_code_id: Optional[str],
        discount_amount: Decimal,
        line_items: List[CheckoutLineItem],
    ) -> str:
        """Create a checkout session and return its redirect url"""
        params = {
            "payment_method_types": ["card"],
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {
                            "name": line_item.label,
                            "description": line_item.description,
                        },
                        "unit_amount": to_minor_units(abs(line_item.amount)),
                    },
                    "quantity": 1,
                }
                for line_item in line_items
            ],
            "metadata": {
                "details": json.dumps(
                    {
                        "pendingOrderId": correlation_id,
                        "discountCodeId": discount_code_id,
                        "discountAmount": float(discount_amount),
                    }
                ),
            },
            "customer_email": customer_email,
            "success_url": f"{self.client_url}/success?session={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self.client_url}/dashboard",
        }
        try:
            session = await run_in_threadpool(stripe.checkout.Session.create, **params)
        except stripe.StripeError as e:
            logger.error(f"Checkout session failed for {correlation_id}: {e}")
            raise PaymentProviderError(f"Payment failed: {e.user_message or str(e)}")
        return session.url

    async def issue_refund(self, intent: str, amount) -> None:
        try:
            await run_in_threadpool(
                stripe.Refund.create,
                payment_intent=intent,
                amount=to_minor_units(amount),
            )
        except stripe.StripeError as e:
            logger.error(f"Refund of {amount} on {intent} failed: {e}")
            raise PaymentProviderError(f"Refund failed: {e.user_message or str(e)}")
        logger.info(f"Refunded {amount} on {intent}")

    async def sum_succeeded_refunds(self, intent: str) -> Decimal:
        """Total already refunded on a payment intent, in major units"""

        def total_refunded():
            refunds = stripe.Refund.list(payment_intent=intent, limit=100)
            return sum(
                refund.amount for refund in refunds.auto_paging_iter()
                if refund.status == "succeeded"
            )

        try:
            cents = await run_in_threadpool(total_refunded)
        except stripe.StripeError as e:
            logger.error(f"Could not list refunds of {intent}: {e}")
            raise PaymentProviderError(f"Refund lookup failed: {e.user_message or str(e)}")
        return to_decimal(cents) / 100

    def parse_webhook(self, payload: bytes, signature: Optional[str]):
        """Verify and decode a webhook event"""
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError:
            raise InvalidInput("Invalid webhook payload")
        except stripe.SignatureVerificationError:
            logger.warning("Webhook signature verification failed")
            raise InvalidInput("Invalid webhook signature")
