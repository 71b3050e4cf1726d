"""
subsync/models/user.py

Account and profile models.

UserAccount carries the subscription columns synchronized from the billing
provider; UserProfile links an account to its billing customer.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from subsync.models.events import SubscriptionStatus


class UserAccount(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str
    subscription_status: SubscriptionStatus = SubscriptionStatus.NONE
    subscription_plan_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    stripe_customer_id: Optional[str] = None
