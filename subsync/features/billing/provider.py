"""
Billing provider and collaborator protocols.

Defines the narrow interfaces the subscription webhook handler depends on:
signature verification, user/profile/plan storage, role assignment and
notification publishing. Concrete implementations live in stripe_provider.py,
features/users, features/plans, features/roles and realtime/hub.py.
"""
import logging
from typing import Protocol, Dict, Any, Optional, List, Set, Union

from subsync.core.errors import AppError
from subsync.models.events import IncomingEvent, SubscriptionStatus
from subsync.models.plan import SubscriptionPlan
from subsync.models.role import Role
from subsync.models.user import UserAccount, UserProfile


class _Unset:
    """Sentinel for "leave this column as it is"."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


class WebhookVerifier(Protocol):
    """Verifies a webhook signature and decodes the event."""

    def verify(self, body: bytes, signature: str, secret: str) -> IncomingEvent:
        """
        Verify the signature header against the raw body and decode it.

        Raises:
            WebhookRejectedError: If the signature is invalid or the payload malformed
        """
        ...


class UserProfileRepository(Protocol):
    def find_by_customer_id(self, customer_id: str) -> Optional[UserProfile]:
        ...


class UserRepository(Protocol):
    def get(self, user_id: str) -> UserAccount:
        """Raises NotFoundError if the user does not exist."""
        ...

    def update_subscription(
        self,
        user_id: str,
        *,
        status: Union[SubscriptionStatus, Any] = UNSET,
        plan_id: Union[Optional[str], Any] = UNSET,
        stripe_subscription_id: Union[Optional[str], Any] = UNSET,
    ) -> None:
        ...


class SubscriptionPlanRepository(Protocol):
    def get(self, plan_id: str) -> SubscriptionPlan:
        """Raises NotFoundError if the plan does not exist."""
        ...

    def get_by_price_id(self, price_id: str) -> SubscriptionPlan:
        """Raises NotFoundError if no plan is bound to the price."""
        ...

    def list_role_ids(self) -> Set[str]:
        ...


class RoleAssigner(Protocol):
    def get_user_roles(self, user_id: str) -> List[Role]:
        ...

    def assign(self, user_id: str, role_id: str) -> None:
        ...

    def unassign(self, user_id: str, role_id: str) -> None:
        ...


class EventPublisher(Protocol):
    async def publish(self, user_id: str, event_name: str, payload: Dict[str, Any]) -> None:
        ...


class BillingProviderError(AppError):
    """Base exception for billing provider errors."""
    code = "billing_error"
    status_code = 500


class WebhookNotConfiguredError(BillingProviderError):
    """Provider credentials are missing; the webhook cannot be verified."""
    code = "billing_disabled"
    status_code = 503


class WebhookRejectedError(BillingProviderError):
    """Malformed or unverifiable webhook request."""
    code = "webhook_rejected"
    status_code = 400
    log_level = logging.ERROR
