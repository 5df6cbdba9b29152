# stripe_client.py
"""Thin wrapper around the Stripe SDK for subscriptions.

Every Stripe failure surfaces as ``BillingError``; callers map it to a
generic client-facing error.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import stripe

LOG = logging.getLogger("autopitch.billing")

ACTIVE_STATUSES = {"trialing", "active", "past_due"}
LIFECYCLE_EVENTS = {
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "invoice.payment_succeeded",
    "invoice.payment_failed",
}


class BillingError(RuntimeError):
    pass


class WebhookError(ValueError):
    pass


@dataclass(frozen=True)
class Subscription:
    status: Optional[str]
    plan: Optional[str]

    @property
    def active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class StripeBridge:
    def __init__(
        self,
        secret_key: str,
        *,
        base_url: str,
        standard_price_id: str,
        premium_price_id: str,
        promotion_code_id: Optional[str] = None,
        webhook_secret: Optional[str] = None,
    ):
        if not secret_key:
            raise BillingError("STRIPE_SECRET_KEY not configured")
        stripe.api_key = secret_key
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.standard_price_id = standard_price_id
        self.premium_price_id = premium_price_id
        self.promotion_code_id = promotion_code_id
        self.webhook_secret = webhook_secret

    @property
    def live(self) -> bool:
        return self.secret_key.startswith("sk_live_")

    @property
    def checkout_enabled(self) -> bool:
        return bool(self.standard_price_id and self.premium_price_id)

    def price_for(self, plan: Optional[str]) -> str:
        return self.premium_price_id if plan == "premium" else self.standard_price_id

    def plan_for_price(self, price_id: Optional[str]) -> str:
        return "premium" if price_id and price_id == self.premium_price_id else "standard"

    def create_checkout(self, plan: Optional[str]) -> str:
        params: Dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": self.price_for(plan), "quantity": 1}],
            "success_url": f"{self.base_url}/success.html?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self.base_url}/cancel.html",
        }
        # Stripe rejects allow_promotion_codes together with discounts
        if self.promotion_code_id:
            params["discounts"] = [{"promotion_code": self.promotion_code_id}]
        else:
            params["allow_promotion_codes"] = True
        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            raise BillingError(f"Stripe checkout session creation failed: {e}") from e
        return session.url

    def subscription_for_session(self, session_id: str) -> Subscription:
        try:
            session = stripe.checkout.Session.retrieve(session_id, expand=["subscription"])
        except stripe.StripeError as e:
            raise BillingError(f"Stripe session lookup failed: {e}") from e

        sub = getattr(session, "subscription", None)
        if not sub or isinstance(sub, str):
            return Subscription(status=None, plan=None)
        # sub.items can resolve to the dict method, hence the subscripting
        try:
            price_id = sub["items"]["data"][0]["price"]["id"]
        except (KeyError, IndexError, TypeError):
            price_id = None
        return Subscription(status=getattr(sub, "status", None), plan=self.plan_for_price(price_id))

    def _customer_id(self, email: Optional[str], session_id: Optional[str]) -> Optional[str]:
        if session_id:
            session = stripe.checkout.Session.retrieve(session_id)
            customer = getattr(session, "customer", None)
            return customer if isinstance(customer, str) or customer is None else customer.id
        customers = stripe.Customer.list(email=email, limit=1)
        return customers.data[0].id if customers.data else None

    def portal_url(self, *, email: Optional[str] = None, session_id: Optional[str] = None) -> Optional[str]:
        """Billing-portal URL for the customer, or None when there is none."""
        try:
            customer_id = self._customer_id(email, session_id)
            if not customer_id:
                return None
            portal = stripe.billing_portal.Session.create(customer=customer_id, return_url=self.base_url)
        except stripe.StripeError as e:
            raise BillingError(f"Stripe portal session creation failed: {e}") from e
        return portal.url

    def construct_event(self, payload: bytes, sig_header: Optional[str]):
        if not self.webhook_secret:
            raise WebhookError("STRIPE_WEBHOOK_SECRET not configured")
        if not sig_header:
            raise WebhookError("Missing stripe-signature header")
        try:
            return stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except ValueError as e:
            raise WebhookError(f"Invalid payload: {e}") from e
        except stripe.SignatureVerificationError as e:
            raise WebhookError(f"Invalid signature: {e}") from e
