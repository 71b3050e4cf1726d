"""
Subscription webhook handler.

Keeps each user's subscription columns and subscription role in step with
the billing provider:

- verify(): credentials, body, signature and decoding (503 / 400 on failure)
- resolve_profile(): billing customer -> user profile, as an explicit result
- reconcile(): created / updated / deleted transitions, run after the
  provider has been acknowledged; failures are logged and counted only

Every collaborator is passed to the constructor. The FastAPI wiring lives in
api/subscription.py.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Set

from subsync.core.config import Settings, stripe_configured
from subsync.core.logging import bind_request_id, get_request_id, log_event
from subsync.core.metrics import subscription_webhook_events_total
from subsync.features.billing.provider import (
    UNSET,
    BillingProviderError,
    EventPublisher,
    RoleAssigner,
    SubscriptionPlanRepository,
    UserProfileRepository,
    UserRepository,
    WebhookNotConfiguredError,
    WebhookRejectedError,
    WebhookVerifier,
)
from subsync.features.users.service import pack_me_detailed
from subsync.models.events import (
    TERMINAL_STATUSES,
    IncomingEvent,
    PreviousAttributes,
    SubscriptionCreatedEvent,
    SubscriptionDeletedEvent,
    SubscriptionEvent,
    SubscriptionSnapshot,
    SubscriptionStatus,
    SubscriptionUpdatedEvent,
)
from subsync.models.user import UserAccount, UserProfile

ME_UPDATED = "meUpdated"


@dataclass(frozen=True)
class ProfileLookup:
    """Outcome of resolving an event's billing customer to a user profile."""
    customer_id: str
    profile: Optional[UserProfile] = None

    @property
    def found(self) -> bool:
        return self.profile is not None


class SubscriptionWebhookHandler:
    def __init__(
        self,
        *,
        settings: Settings,
        verifier: WebhookVerifier,
        users: UserRepository,
        profiles: UserProfileRepository,
        plans: SubscriptionPlanRepository,
        roles: RoleAssigner,
        publisher: EventPublisher,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.verifier = verifier
        self.users = users
        self.profiles = profiles
        self.plans = plans
        self.roles = roles
        self.publisher = publisher
        self.logger = logger or logging.getLogger("subsync.subscription.webhook")

    # ------------------------------------------------------------------
    # Request validation
    # ------------------------------------------------------------------

    def verify(self, body: bytes, signature: Optional[str]) -> IncomingEvent:
        """
        Validate the request and decode the event.

        Failures are counted here and logged once by the AppError handler.

        Raises:
            WebhookNotConfiguredError: Stripe credentials are missing (nothing is parsed)
            WebhookRejectedError: Empty body, missing signature, bad signature or payload
        """
        try:
            if not stripe_configured(self.settings):
                raise WebhookNotConfiguredError("The Stripe webhook configuration is not set correctly")
            if not body:
                raise WebhookRejectedError("Request body from Stripe webhook is empty", code="empty_body")
            if not signature:
                raise WebhookRejectedError("Webhook does not contain a stripe-signature header", code="missing_signature")
            return self.verifier.verify(body, signature, self.settings.STRIPE_WEBHOOK_SECRET)
        except BillingProviderError:
            subscription_webhook_events_total.inc(labels={"event_type": "unknown", "outcome": "rejected"})
            raise

    # ------------------------------------------------------------------
    # Preprocessing
    # ------------------------------------------------------------------

    def resolve_profile(self, event: SubscriptionEvent) -> ProfileLookup:
        customer_id = event.subscription.customer
        profile = self.profiles.find_by_customer_id(customer_id)
        if profile is None:
            subscription_webhook_events_total.inc(labels={"event_type": event.type, "outcome": "profile_missing"})
            log_event(
                "warning",
                f'CustomerId: "{customer_id}" has no user profile.',
                event_type=event.type,
                error_code="profile_not_found",
                event_id=event.id,
                logger=self.logger,
            )
        return ProfileLookup(customer_id=customer_id, profile=profile)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self, event: SubscriptionEvent, profile: UserProfile, request_id: Optional[str] = None) -> bool:
        """
        Apply the event's transition for the profile's user.

        Runs after the provider was acknowledged, so errors are logged and
        counted instead of raised. Returns True when user state was written.
        """
        with bind_request_id(request_id):
            return await self._reconcile(event, profile.user_id)

    async def _reconcile(self, event: SubscriptionEvent, user_id: str) -> bool:
        try:
            if isinstance(event, SubscriptionCreatedEvent):
                changed = await self.apply_created(event.subscription, user_id)
            elif isinstance(event, SubscriptionUpdatedEvent):
                changed = await self.apply_updated(event.subscription, event.previous, user_id)
            elif isinstance(event, SubscriptionDeletedEvent):
                changed = await self.apply_deleted(event.subscription, user_id)
            else:
                raise TypeError(f"Cannot reconcile event of type {event.type}")
        except Exception as e:
            subscription_webhook_events_total.inc(labels={"event_type": event.type, "outcome": "failed"})
            self.logger.error(
                f"Subscription event {event.id} ({event.type}) for user {user_id} failed: {e}",
                exc_info=True,
                extra={
                    "request_id": get_request_id(),
                    "user_id": user_id,
                    "event_type": event.type,
                    "event_id": event.id,
                    "error_code": getattr(e, "code", "internal_error"),
                },
            )
            return False

        outcome = "applied" if changed else "skipped"
        subscription_webhook_events_total.inc(labels={"event_type": event.type, "outcome": outcome})
        log_event(
            "info",
            f"subscription.webhook.{outcome}",
            user_id=user_id,
            event_type=event.type,
            event_id=event.id,
            logger=self.logger,
        )
        return changed

    async def apply_created(self, subscription: SubscriptionSnapshot, user_id: str) -> bool:
        plan = self.plans.get_by_price_id(subscription.price_id)
        user = self.users.get(user_id)

        if user.stripe_subscription_id is not None:
            self.logger.info(f"Subscription already exists for user ID {user.user_id}. No processing is needed.")
            return False

        if subscription.is_active:
            held = self._held_role_ids(user_id)
            self._grant(user_id, plan.role_id, held, "creation")

        self.users.update_subscription(
            user_id,
            status=subscription.status,
            plan_id=plan.id,
            stripe_subscription_id=subscription.id,
        )
        await self._publish_me_updated(user_id)
        return True

    async def apply_updated(
        self,
        subscription: SubscriptionSnapshot,
        previous: Optional[PreviousAttributes],
        user_id: str,
    ) -> bool:
        user = self.users.get(user_id)
        plan = self.plans.get_by_price_id(subscription.price_id)

        if self._is_foreign(user, subscription):
            return False

        if subscription.is_active:
            held = self._held_role_ids(user_id)
            if not user.subscription_plan_id:
                # First plan for this user: drop any other plan-granted role
                catalog_role_ids = self.plans.list_role_ids()
                for role_id in sorted(held):
                    if role_id in catalog_role_ids and role_id != plan.role_id:
                        self._revoke(user_id, role_id, held, "update")
                self._grant(user_id, plan.role_id, held, "update")
            elif plan.id != user.subscription_plan_id:
                old_plan = self.plans.get(user.subscription_plan_id)
                if old_plan.role_id != plan.role_id:
                    self._revoke(user_id, old_plan.role_id, held, "update")
                self._grant(user_id, plan.role_id, held, "update")
            elif previous is not None and previous.status is not None:
                self._grant(user_id, plan.role_id, held, "update")
        elif subscription.cancel_at_period_end:
            self.logger.info(
                f"Subscription {subscription.id} is set to cancel at period end; "
                f"waiting for the deletion event."
            )
            return False

        if subscription.status == SubscriptionStatus.INCOMPLETE_EXPIRED:
            self._revoke(user_id, plan.role_id, self._held_role_ids(user_id), "update")
            self.users.update_subscription(
                user_id,
                status=subscription.status,
                plan_id=None,
                stripe_subscription_id=None,
            )
        else:
            self.users.update_subscription(
                user_id,
                status=subscription.status,
                plan_id=plan.id,
                stripe_subscription_id=UNSET if user.stripe_subscription_id else subscription.id,
            )
        await self._publish_me_updated(user_id)
        return True

    async def apply_deleted(self, subscription: SubscriptionSnapshot, user_id: str) -> bool:
        plan = self.plans.get_by_price_id(subscription.price_id)
        user = self.users.get(user_id)

        if self._is_foreign(user, subscription):
            return False

        self._revoke(user_id, plan.role_id, self._held_role_ids(user_id), "deletion")

        status = subscription.status if subscription.status in TERMINAL_STATUSES else SubscriptionStatus.CANCELED
        self.users.update_subscription(
            user_id,
            status=status,
            plan_id=None,
            stripe_subscription_id=None,
        )
        await self._publish_me_updated(user_id)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_foreign(self, user: UserAccount, subscription: SubscriptionSnapshot) -> bool:
        if user.stripe_subscription_id and user.stripe_subscription_id != subscription.id:
            self.logger.info(
                f"Ignoring subscription {subscription.id} for user {user.user_id}: "
                f"bound to {user.stripe_subscription_id}."
            )
            return True
        return False

    def _held_role_ids(self, user_id: str) -> Set[str]:
        return {role.id for role in self.roles.get_user_roles(user_id)}

    def _grant(self, user_id: str, role_id: str, held: Set[str], reason: str) -> None:
        if role_id in held:
            return
        self.roles.assign(user_id, role_id)
        held.add(role_id)
        self.logger.info(f'{user_id} has been assigned the role "{role_id}" by the subscription {reason} event.')

    def _revoke(self, user_id: str, role_id: str, held: Set[str], reason: str) -> None:
        if role_id not in held:
            return
        self.roles.unassign(user_id, role_id)
        held.discard(role_id)
        self.logger.info(f'{user_id} has been unassigned the role "{role_id}" by the subscription {reason} event.')

    async def _publish_me_updated(self, user_id: str) -> None:
        account = self.users.get(user_id)
        await self.publisher.publish(user_id, ME_UPDATED, pack_me_detailed(account))
