"""
subsync/models/plan.py

Subscription plan catalog entry.

A plan maps one provider price id to the internal role granted while the
subscription is active. Plans carry no pricing information.
"""

from pydantic import BaseModel, ConfigDict


class SubscriptionPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    stripe_price_id: str
    role_id: str
