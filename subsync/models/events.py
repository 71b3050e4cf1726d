"""
subsync/models/events.py

Typed view of the billing provider's webhook events.

Stripe sends a loosely structured envelope ({"id", "type", "data": {"object",
"previous_attributes"}}). decode_event() validates the raw body once, at the
boundary, into one variant per handled event kind. Anything else becomes an
UnhandledEvent carrying only its type.
"""

from enum import Enum
from typing import Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SubscriptionStatus(str, Enum):
    """Subscription states mirrored from the provider, plus NONE for never-subscribed accounts."""
    NONE = "none"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"


TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELED, SubscriptionStatus.INCOMPLETE_EXPIRED})

SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class PriceRef(BaseModel):
    id: str


class SubscriptionItem(BaseModel):
    # Newer API versions send `price`; `plan` is the legacy alias with the same id
    price: Optional[PriceRef] = None
    plan: Optional[PriceRef] = None

    @model_validator(mode="after")
    def _require_price(self):
        if self.price is None and self.plan is None:
            raise ValueError("subscription item has neither price nor plan")
        return self

    @property
    def price_id(self) -> str:
        ref = self.price or self.plan
        return ref.id


class SubscriptionItems(BaseModel):
    data: List[SubscriptionItem] = Field(min_length=1)


class SubscriptionSnapshot(BaseModel):
    """Current state of the subscription (`data.object`)."""
    id: str
    customer: str
    status: SubscriptionStatus
    cancel_at_period_end: bool = False
    items: SubscriptionItems

    @property
    def price_id(self) -> str:
        return self.items.data[0].price_id

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE


class PreviousAttributes(BaseModel):
    """Fields that changed in an update; only `status` is interpreted."""
    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None


class SubscriptionEventData(BaseModel):
    object: SubscriptionSnapshot


class SubscriptionUpdateData(SubscriptionEventData):
    previous_attributes: Optional[PreviousAttributes] = None


class SubscriptionCreatedEvent(BaseModel):
    id: str
    type: Literal["customer.subscription.created"]
    data: SubscriptionEventData

    @property
    def subscription(self) -> SubscriptionSnapshot:
        return self.data.object


class SubscriptionUpdatedEvent(BaseModel):
    id: str
    type: Literal["customer.subscription.updated"]
    data: SubscriptionUpdateData

    @property
    def subscription(self) -> SubscriptionSnapshot:
        return self.data.object

    @property
    def previous(self) -> Optional[PreviousAttributes]:
        return self.data.previous_attributes


class SubscriptionDeletedEvent(BaseModel):
    id: str
    type: Literal["customer.subscription.deleted"]
    data: SubscriptionEventData

    @property
    def subscription(self) -> SubscriptionSnapshot:
        return self.data.object


class UnhandledEvent(BaseModel):
    id: Optional[str] = None
    type: str


class _Envelope(BaseModel):
    id: Optional[str] = None
    type: str


SubscriptionEvent = Union[SubscriptionCreatedEvent, SubscriptionUpdatedEvent, SubscriptionDeletedEvent]
IncomingEvent = Union[SubscriptionCreatedEvent, SubscriptionUpdatedEvent, SubscriptionDeletedEvent, UnhandledEvent]

EVENT_MODELS: Dict[str, Type[BaseModel]] = {
    SUBSCRIPTION_CREATED: SubscriptionCreatedEvent,
    SUBSCRIPTION_UPDATED: SubscriptionUpdatedEvent,
    SUBSCRIPTION_DELETED: SubscriptionDeletedEvent,
}


def decode_event(raw: Union[bytes, str]) -> IncomingEvent:
    """
    Decode a verified webhook body into its event variant.

    Raises:
        pydantic.ValidationError: If the envelope or a handled event's
            subscription snapshot is malformed.
    """
    envelope = _Envelope.model_validate_json(raw)
    model = EVENT_MODELS.get(envelope.type)
    if model is None:
        return UnhandledEvent(id=envelope.id, type=envelope.type)
    return model.model_validate_json(raw)
