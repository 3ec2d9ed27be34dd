"""
Payment bridge - Stripe primitives used by the booking lifecycle.

The bridge only knows how to move money. Which primitive to call (charge,
refund, checkout, payment link) is decided by the booking service.
Amounts come in as Decimal pounds and are sent to Stripe as integer pence.
"""

import logging
from decimal import Decimal
from typing import Any, Optional

import stripe

from ..config import STRIPE_CURRENCY, STRIPE_SECRET_KEY
from ..domain.bookings.fees import to_money
from ..errors import PaymentFailed, ValidationFailed

logger = logging.getLogger(__name__)


def to_pence(amount) -> int:
    return int(to_money(amount) * 100)


def from_pence(pence: Optional[int]) -> Decimal:
    return to_money(Decimal(pence or 0) / 100)


def _stringify(metadata: Optional[dict[str, Any]]) -> dict[str, str]:
    # Stripe metadata values must be strings
    return {k: "" if v is None else str(v) for k, v in (metadata or {}).items()}


class PaymentBridge:
    """Thin wrapper over the stripe SDK"""

    def __init__(self, api_key: Optional[str] = None, currency: str = STRIPE_CURRENCY):
        self.api_key = api_key or STRIPE_SECRET_KEY
        self.currency = currency
        if not self.api_key:
            logger.warning("⚠️ STRIPE_SECRET_KEY not configured - payment calls will fail")
        stripe.api_key = self.api_key

    def charge(
        self,
        amount,
        payment_method_id: str,
        customer_id: str,
        description: str,
        metadata: Optional[dict[str, Any]] = None,
        receipt_email: Optional[str] = None,
    ) -> str:
        """Off-session charge against a saved card; returns the PaymentIntent id"""
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_pence(amount),
                currency=self.currency,
                customer=customer_id,
                payment_method=payment_method_id,
                off_session=True,
                confirm=True,
                description=description,
                receipt_email=receipt_email,
                metadata=_stringify(metadata),
            )
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe charge of £{to_money(amount)} failed: {e}")
            raise PaymentFailed("Payment failed", {"details": getattr(e, "user_message", None) or str(e)}) from e

        if intent.status != "succeeded":
            logger.error(f"❌ PaymentIntent {intent.id} ended in status {intent.status}")
            raise PaymentFailed("Payment not completed", {"status": intent.status, "paymentIntentId": intent.id})

        logger.info(f"✅ Charged £{to_money(amount)} ({intent.id})")
        return intent.id

    def refund(self, payment_intent_id: str, amount, metadata: Optional[dict[str, Any]] = None) -> str:
        """Partial or full refund against a captured PaymentIntent; returns the Refund id"""
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_intent_id,
                amount=to_pence(amount),
                reason="requested_by_customer",
                metadata=_stringify(metadata),
            )
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe refund of £{to_money(amount)} on {payment_intent_id} failed: {e}")
            raise PaymentFailed("Refund failed", {"details": str(e)}) from e

        logger.info(f"✅ Refunded £{to_money(amount)} on {payment_intent_id} ({refund.id})")
        return refund.id

    def line_item(self, name: str, amount, description: Optional[str] = None) -> dict[str, Any]:
        product = {"name": name}
        if description:
            product["description"] = description
        return {
            "price_data": {
                "currency": self.currency,
                "product_data": product,
                "unit_amount": to_pence(amount),
            },
            "quantity": 1,
        }

    def create_checkout_session(
        self,
        line_items: list[dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: Optional[dict[str, Any]] = None,
        client_reference_id: Optional[str] = None,
        customer_email: Optional[str] = None,
        save_card: bool = False,
    ) -> tuple[str, str]:
        """Hosted checkout page; returns (session id, url)"""
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": _stringify(metadata),
        }
        if client_reference_id:
            params["client_reference_id"] = client_reference_id
        if customer_email:
            params["customer_email"] = customer_email
        if save_card:
            # Keep the card on file for later service changes
            params["customer_creation"] = "always"
            params["payment_intent_data"] = {"setup_future_usage": "off_session"}

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe checkout session failed: {e}")
            raise PaymentFailed("Failed to create checkout session", {"details": str(e)}) from e

        logger.info(f"✅ Checkout session {session.id} created")
        return session.id, session.url

    def retrieve_checkout_session(self, session_id: str):
        try:
            session = stripe.checkout.Session.retrieve(session_id, expand=["payment_intent"])
        except stripe.InvalidRequestError as e:
            raise ValidationFailed("Invalid session ID") from e
        except stripe.StripeError as e:
            logger.error(f"❌ Could not retrieve checkout session {session_id}: {e}")
            raise PaymentFailed("Failed to retrieve checkout session") from e
        return session.to_dict()

    def create_payment_link(
        self,
        name: str,
        description: str,
        amount,
        redirect_url: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """One-off payment link for a fixed amount; returns its url"""
        try:
            price = stripe.Price.create(
                currency=self.currency,
                unit_amount=to_pence(amount),
                product_data={"name": name},
            )
            link = stripe.PaymentLink.create(
                line_items=[{"price": price.id, "quantity": 1}],
                after_completion={"type": "redirect", "redirect": {"url": redirect_url}},
                metadata=_stringify(metadata),
                payment_intent_data={"description": description, "metadata": _stringify(metadata)},
            )
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe payment link failed: {e}")
            raise PaymentFailed("Failed to create payment link", {"details": str(e)}) from e

        logger.info(f"✅ Payment link created for £{to_money(amount)}")
        return link.url

    def ensure_customer(
        self,
        email: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        payment_method_id: Optional[str] = None,
    ) -> str:
        """Reuse the Stripe customer with this email or create one"""
        try:
            existing = stripe.Customer.list(email=email, limit=1)
            if existing.data:
                customer_id = existing.data[0].id
            else:
                customer_id = stripe.Customer.create(email=email, name=name, phone=phone).id
                logger.info(f"✅ Created Stripe customer {customer_id}")

            if payment_method_id:
                stripe.PaymentMethod.attach(payment_method_id, customer=customer_id)
                stripe.Customer.modify(
                    customer_id, invoice_settings={"default_payment_method": payment_method_id}
                )
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe customer setup failed for {email}: {e}")
            raise PaymentFailed("Failed to set up payment customer", {"details": str(e)}) from e

        return customer_id

    @staticmethod
    def construct_event(payload: bytes, signature: str, secret: str):
        """Verify a webhook signature and parse the event into plain dicts"""
        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"⚠️ Invalid webhook signature: {e}")
            raise ValidationFailed("Invalid webhook signature") from e
        except ValueError as e:
            logger.warning(f"⚠️ Invalid webhook payload: {e}")
            raise ValidationFailed("Invalid webhook payload") from e
        return event.to_dict()


_bridge: Optional[PaymentBridge] = None


def get_payment_bridge() -> PaymentBridge:
    global _bridge
    if _bridge is None:
        _bridge = PaymentBridge()
    return _bridge
