"""
Billing through Stripe: portal sessions and subscription webhooks.

Only two things matter to the rest of the service: a customer can reach
the Stripe billing portal, and subscription events keep profiles.plan
in sync (active/trialing -> pro, cancelled/deleted -> free).
"""

import asyncio
import json

import stripe

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.repositories.profile_repository import ProfileRepository

logger = get_logger(__name__)

PRO_SUBSCRIPTION_STATUSES = {"active", "trialing"}


class BillingError(Exception):
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class BillingService:
    def __init__(self, profiles=ProfileRepository):
        self.profiles = profiles

    def _require_secret_key(self) -> str:
        if not settings.STRIPE_SECRET_KEY:
            raise BillingError("Billing not configured", status_code=503)
        return settings.STRIPE_SECRET_KEY

    async def create_portal_session(self, user_id: str) -> str:
        """Returns the portal URL for the caller's Stripe customer."""
        api_key = self._require_secret_key()

        profile = await self.profiles.get(user_id)
        customer_id = profile.get("stripe_customer_id") if profile else None
        if not customer_id:
            raise BillingError("No subscription found", status_code=404)

        try:
            session = await asyncio.to_thread(
                stripe.billing_portal.Session.create,
                customer=customer_id,
                return_url=settings.portal_return_url(),
                api_key=api_key,
            )
        except stripe.StripeError as e:
            logger.error("Stripe portal session failed", user_id=user_id, error=str(e))
            raise BillingError("Failed to create portal session", status_code=502) from e

        logger.info("Billing portal session created", user_id=user_id)
        return session.url

    def construct_event(self, payload: bytes, signature: str | None) -> dict:
        """Verify the Stripe-Signature header and return the event as a plain dict."""
        if not settings.STRIPE_WEBHOOK_SECRET:
            raise BillingError("Webhook not configured", status_code=500)
        if not signature:
            raise BillingError("No signature", status_code=400)

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), signature, settings.STRIPE_WEBHOOK_SECRET
            )
            return json.loads(payload)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("Stripe webhook signature verification failed", error=str(e))
            raise BillingError("Invalid signature", status_code=400) from e

    async def handle_event(self, event: dict) -> str | None:
        """
        Apply a verified webhook event to profiles.plan.

        Returns:
            The plan written, or None if the event was ignored
        """
        event_type = event["type"]
        obj = event["data"]["object"]

        if event_type == "checkout.session.completed":
            metadata = obj.get("metadata") or {}
            user_id = metadata.get("user_id") or obj.get("client_reference_id")
            if not user_id:
                logger.warning("Checkout session without user reference", session_id=obj.get("id"))
                return None
            await self.profiles.activate_subscription(
                user_id, obj.get("customer"), obj.get("subscription")
            )
            return "pro"

        if event_type in ("customer.subscription.created", "customer.subscription.updated"):
            plan = "pro" if obj.get("status") in PRO_SUBSCRIPTION_STATUSES else "free"
            await self.profiles.update_plan_for_customer(obj.get("customer"), plan)
            return plan

        if event_type == "customer.subscription.deleted":
            await self.profiles.update_plan_for_customer(obj.get("customer"), "free")
            return "free"

        logger.debug("Ignoring Stripe event", event_type=event_type)
        return None


billing_service = BillingService()
