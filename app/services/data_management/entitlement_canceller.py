"""
Entitlement Canceller - cancels a user's live subscription at the billing provider.

Runs before the deletion transaction opens, because the subscriptions row
(which holds the provider's subscription id) is one of the hard-deleted
tables.

Cancellation is best-effort: failures are logged and reported as
CancellationStatus.FAILED but never raised. Erasing the user's data does not
wait on billing cleanup.
"""

import httpx

from app.config import settings
from app.db.helpers import fetch_one
from app.infrastructure.observability.logging import get_logger
from app.models.domain.deletion_domain import CancellationStatus, EntitlementCancellation
from app.services.data_management.errors import EntitlementCancelError

logger = get_logger(__name__)

LIVE_SUBSCRIPTION_STATUSES = ("active", "trial", "trialing", "past_due")


class EntitlementCanceller:
    """Looks up the user's active subscription and cancels it with Stripe."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        # transport is injectable so tests can serve canned provider responses
        self._transport = transport

    async def cancel_for_user(self, user_id: str) -> EntitlementCancellation:
        """
        Cancel the user's live subscription, if any.

        Returns:
            EntitlementCancellation with status
            - CANCELLED: provider confirmed cancellation
            - NOT_APPLICABLE: no live subscription, or provider no longer has it
            - FAILED: lookup or provider call failed (logged, non-fatal)
        """
        user_id = str(user_id)

        try:
            reference = await self._find_subscription_reference(user_id)
        except Exception as e:
            logger.warning("Subscription lookup failed", user_id=user_id, error=str(e))
            return EntitlementCancellation(
                user_id=user_id, status=CancellationStatus.FAILED, error=str(e)
            )

        if not reference:
            logger.info("No active subscription to cancel", user_id=user_id)
            return EntitlementCancellation(user_id=user_id, status=CancellationStatus.NOT_APPLICABLE)

        try:
            status = await self._request_cancellation(reference)
        except EntitlementCancelError as e:
            logger.warning(
                "Failed to cancel subscription with billing provider",
                user_id=user_id,
                provider_reference=reference,
                error=str(e),
            )
            return EntitlementCancellation(
                user_id=user_id,
                status=CancellationStatus.FAILED,
                provider_reference=reference,
                error=str(e),
            )

        logger.info(
            "Subscription cancellation finished",
            user_id=user_id,
            provider_reference=reference,
            status=status.value,
        )
        return EntitlementCancellation(user_id=user_id, status=status, provider_reference=reference)

    # =======================================================================
    # PRIVATE METHODS
    # =======================================================================

    async def _find_subscription_reference(self, user_id: str) -> str | None:
        row = await fetch_one(
            """
            SELECT stripe_subscription_id
            FROM subscriptions
            WHERE user_id = %s
              AND stripe_subscription_id IS NOT NULL
              AND status = ANY(%s)
            LIMIT 1
            """,
            (user_id, list(LIVE_SUBSCRIPTION_STATUSES)),
        )
        if not row:
            return None
        return row["stripe_subscription_id"] or None

    async def _request_cancellation(self, reference: str) -> CancellationStatus:
        """Call the provider. Raises EntitlementCancelError on any failure."""
        if not settings.billing_configured():
            raise EntitlementCancelError("STRIPE_SECRET_KEY is not configured", reference)

        url = f"{settings.STRIPE_API_BASE.rstrip('/')}/v1/subscriptions/{reference}"

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=settings.BILLING_CANCEL_TIMEOUT_SECONDS,
            ) as client:
                response = await client.delete(
                    url,
                    headers={"Authorization": f"Bearer {settings.STRIPE_SECRET_KEY}"},
                )
        except httpx.HTTPError as e:
            raise EntitlementCancelError(
                f"Billing provider request failed: {type(e).__name__}: {e}", reference
            ) from e

        if response.is_success:
            return CancellationStatus.CANCELLED

        if response.status_code == 404:
            # Already cancelled or removed on the provider side
            return CancellationStatus.NOT_APPLICABLE

        raise EntitlementCancelError(
            f"Billing provider returned HTTP {response.status_code}", reference
        )


# Singleton instance
entitlement_canceller = EntitlementCanceller()
