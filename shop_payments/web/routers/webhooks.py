from typing import Annotated, Optional

from fastapi import APIRouter, Header, Request

from shop_payments.loggers import logger
from shop_payments.web.dependencies import Facade


router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    facade: Facade,
    stripe_signature: Annotated[Optional[str], Header(alias="Stripe-Signature")] = None,
):
    """
    Receive a processor notification.

    Verification failures are returned to the sender. Once an event is
    verified it is always acknowledged, so handling errors are logged
    and not retried by the processor.
    """
    payload = await request.body()
    event = facade.verify_webhook(payload, stripe_signature)

    try:
        await facade.handle_webhook_event(event)
    except Exception as e:
        logger.error(f"Error handling webhook {event.type} ({event.id}): {e}")

    return {"received": True}
