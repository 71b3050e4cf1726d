"""
Subscription webhook route.

- POST /webhook: Stripe customer.subscription.{created,updated,deleted}

The provider is acknowledged (204) as soon as the event is verified and its
customer resolved; the state transition runs afterwards as a background task.
"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response

from subsync.core.config import settings
from subsync.core.errors import PayloadTooLargeError, error_response, extract_request_id
from subsync.core.logging import log_event
from subsync.core.metrics import subscription_webhook_events_total
from subsync.features.billing.stripe_provider import StripeWebhookVerifier
from subsync.features.billing.webhook_handler import SubscriptionWebhookHandler
from subsync.features.plans.service import SqlSubscriptionPlanRepository
from subsync.features.roles.service import RoleService
from subsync.features.users.service import SqlUserProfileRepository, SqlUserRepository
from subsync.models.events import UnhandledEvent
from subsync.realtime.hub import HubEventPublisher, hub


router = APIRouter(tags=["subscription"])


def get_webhook_handler() -> SubscriptionWebhookHandler:
    """Wire the handler with the SQL repositories, role service and main-stream hub."""
    return SubscriptionWebhookHandler(
        settings=settings,
        verifier=StripeWebhookVerifier(tolerance=settings.STRIPE_WEBHOOK_TOLERANCE),
        users=SqlUserRepository(),
        profiles=SqlUserProfileRepository(),
        plans=SqlSubscriptionPlanRepository(),
        roles=RoleService(),
        publisher=HubEventPublisher(hub),
        logger=logging.getLogger("subsync.subscription.webhook"),
    )


async def read_capped_body(request: Request, limit: int) -> bytes:
    """Read the raw body, failing with 413 as soon as it exceeds `limit` bytes."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise PayloadTooLargeError(f"Request body exceeds {limit} bytes")

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise PayloadTooLargeError(f"Request body exceeds {limit} bytes")
    return bytes(body)


@router.post("/webhook", status_code=204)
async def subscription_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    handler: SubscriptionWebhookHandler = Depends(get_webhook_handler),
):
    """
    Handle Stripe subscription webhooks.

    Returns:
        204: Event accepted (reconciliation continues in the background),
             or ignored because no profile matches the customer

    Errors:
        503: Stripe secret key / webhook secret not configured
        400: Empty body, missing signature, invalid signature or payload,
             unhandled event type
        413: Body larger than WEBHOOK_MAX_BODY_BYTES
    """
    rid = extract_request_id(request)
    body = await read_capped_body(request, handler.settings.WEBHOOK_MAX_BODY_BYTES)
    event = handler.verify(body, request.headers.get("stripe-signature"))

    if isinstance(event, UnhandledEvent):
        subscription_webhook_events_total.inc(labels={"event_type": event.type, "outcome": "unhandled"})
        message = f"Unhandled event type: {event.type}"
        log_event(
            "warning",
            message,
            request_id=rid,
            event_type=event.type,
            error_code="unhandled_event",
            logger=handler.logger,
        )
        return error_response("unhandled_event", message, 400, rid)

    lookup = handler.resolve_profile(event)
    if lookup.found:
        subscription_webhook_events_total.inc(labels={"event_type": event.type, "outcome": "accepted"})
        background_tasks.add_task(handler.reconcile, event, lookup.profile, rid)

    return Response(status_code=204)
