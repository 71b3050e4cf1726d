"""
User account and profile storage.

- SqlUserRepository: point lookup + subscription column updates
- SqlUserProfileRepository: billing customer -> profile lookup
- pack_me_detailed(): payload of the meUpdated notification
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from sqlalchemy import select, insert, update

from subsync.core.database import get_db_session, users as app_users, user_profiles
from subsync.core.errors import NotFoundError
from subsync.features.billing.provider import UNSET
from subsync.models.events import SubscriptionStatus
from subsync.models.user import UserAccount, UserProfile


def _row_to_account(row) -> UserAccount:
    return UserAccount(
        user_id=row.user_id,
        username=row.username,
        subscription_status=row.subscription_status,
        subscription_plan_id=row.subscription_plan_id,
        stripe_subscription_id=row.stripe_subscription_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlUserRepository:
    """UserRepository over the app_users table."""

    def find(self, user_id: str) -> Optional[UserAccount]:
        with get_db_session() as session:
            row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
            return _row_to_account(row) if row else None

    def get(self, user_id: str) -> UserAccount:
        account = self.find(user_id)
        if account is None:
            raise NotFoundError(f"User {user_id} not found", code="user_not_found")
        return account

    def create(self, user_id: str, username: str) -> UserAccount:
        now = datetime.now(timezone.utc)
        with get_db_session() as session:
            session.execute(
                insert(app_users).values(
                    user_id=user_id,
                    username=username,
                    subscription_status=SubscriptionStatus.NONE.value,
                    created_at=now,
                    updated_at=now,
                )
            )
        return self.get(user_id)

    def update_subscription(
        self,
        user_id: str,
        *,
        status=UNSET,
        plan_id=UNSET,
        stripe_subscription_id=UNSET,
    ) -> None:
        """
        Update the subscription columns of one user.

        Columns passed as UNSET are left untouched; None clears them.
        """
        values: Dict[str, Any] = {}
        if status is not UNSET:
            values["subscription_status"] = SubscriptionStatus(status).value
        if plan_id is not UNSET:
            values["subscription_plan_id"] = plan_id
        if stripe_subscription_id is not UNSET:
            values["stripe_subscription_id"] = stripe_subscription_id
        if not values:
            return
        values["updated_at"] = datetime.now(timezone.utc)

        with get_db_session() as session:
            result = session.execute(
                update(app_users)
                .where(app_users.c.user_id == user_id)
                .values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"User {user_id} not found", code="user_not_found")


class SqlUserProfileRepository:
    """UserProfileRepository over the user_profiles table."""

    def find_by_customer_id(self, customer_id: str) -> Optional[UserProfile]:
        with get_db_session() as session:
            row = session.execute(
                select(user_profiles).where(user_profiles.c.stripe_customer_id == customer_id)
            ).first()
            if not row:
                return None
            return UserProfile(user_id=row.user_id, stripe_customer_id=row.stripe_customer_id)

    def link_customer(self, user_id: str, customer_id: Optional[str]) -> UserProfile:
        with get_db_session() as session:
            existing = session.execute(
                select(user_profiles.c.user_id).where(user_profiles.c.user_id == user_id)
            ).first()
            if existing:
                session.execute(
                    update(user_profiles)
                    .where(user_profiles.c.user_id == user_id)
                    .values(stripe_customer_id=customer_id)
                )
            else:
                session.execute(
                    insert(user_profiles).values(user_id=user_id, stripe_customer_id=customer_id)
                )
        return UserProfile(user_id=user_id, stripe_customer_id=customer_id)


def pack_me_detailed(account: UserAccount) -> Dict[str, Any]:
    """Serialize the account the way the client's own-profile stream expects it."""
    return {
        "id": account.user_id,
        "username": account.username,
        "subscriptionStatus": account.subscription_status.value,
        "subscriptionPlanId": account.subscription_plan_id,
        "stripeSubscriptionId": account.stripe_subscription_id,
        "updatedAt": account.updated_at.isoformat() if account.updated_at else None,
    }
