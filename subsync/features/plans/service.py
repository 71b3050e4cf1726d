"""
subsync/features/plans/service.py

Subscription plan catalog.

Handles:
- Plan lookups by id and by provider price id
- The set of roles granted by any plan (used to clear stale plan roles)
- Catalog seeding (roles + plans)
"""

from typing import Dict, Iterable, Set
from sqlalchemy import select, insert

from subsync.core.database import get_db_session, roles, subscription_plans
from subsync.core.errors import NotFoundError
from subsync.models.plan import SubscriptionPlan


def _row_to_plan(row) -> SubscriptionPlan:
    return SubscriptionPlan(
        id=row.id,
        name=row.name,
        stripe_price_id=row.stripe_price_id,
        role_id=row.role_id,
    )


class SqlSubscriptionPlanRepository:
    """SubscriptionPlanRepository over the subscription_plans table."""

    def get(self, plan_id: str) -> SubscriptionPlan:
        with get_db_session() as session:
            row = session.execute(
                select(subscription_plans).where(subscription_plans.c.id == plan_id)
            ).first()
        if not row:
            raise NotFoundError(f"Subscription plan {plan_id} not found", code="plan_not_found")
        return _row_to_plan(row)

    def get_by_price_id(self, price_id: str) -> SubscriptionPlan:
        with get_db_session() as session:
            row = session.execute(
                select(subscription_plans).where(subscription_plans.c.stripe_price_id == price_id)
            ).first()
        if not row:
            raise NotFoundError(f"No subscription plan for price {price_id}", code="plan_not_found")
        return _row_to_plan(row)

    def list_role_ids(self) -> Set[str]:
        with get_db_session() as session:
            rows = session.execute(select(subscription_plans.c.role_id)).fetchall()
        return {row.role_id for row in rows}


def seed_plans(catalog: Iterable[Dict[str, str]]) -> None:
    """
    Seed roles and subscription plans (idempotent).

    Each entry needs: id, name, stripe_price_id, role_id and optionally
    role_name. Existing roles and plans are left unchanged.
    """
    with get_db_session() as session:
        for entry in catalog:
            role_exists = session.execute(
                select(roles.c.id).where(roles.c.id == entry["role_id"])
            ).first()
            if not role_exists:
                session.execute(
                    insert(roles).values(
                        id=entry["role_id"],
                        name=entry.get("role_name", entry["role_id"]),
                    )
                )

            plan_exists = session.execute(
                select(subscription_plans.c.id).where(subscription_plans.c.id == entry["id"])
            ).first()
            if not plan_exists:
                session.execute(
                    insert(subscription_plans).values(
                        id=entry["id"],
                        name=entry["name"],
                        stripe_price_id=entry["stripe_price_id"],
                        role_id=entry["role_id"],
                    )
                )
