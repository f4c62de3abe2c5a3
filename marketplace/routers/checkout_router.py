from typing import Dict

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from .. import schemas
from ..auth import get_current_user
from ..database import get_db
from ..orders import OrderLifecycle
from ..payments import StripeGateway, get_payment_gateway

router = APIRouter(tags=["Checkout"])


@router.post("/checkout", response_model=schemas.CheckoutOut)
def create_checkout_session(
    body: schemas.OrderCreate,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    """Create a PENDING order and a hosted payment page for it.

    Stock is not touched here; it is reserved when the payment webhook
    confirms the order.
    """
    result = OrderLifecycle(db, gateway).create_checkout(
        buyer_id=current_user["id"],
        items=[item.model_dump() for item in body.items],
        shipping_address=body.shipping_address,
    )
    return {"session_id": result.session_id, "url": result.url, "order_id": result.order_id}


@router.post("/payments/webhook", include_in_schema=False)
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    """Stripe webhook endpoint.

    Always answers 200 once the signature checks out, including for events
    that change nothing, so the gateway stops redelivering.
    """
    payload = await request.body()
    event = gateway.parse_webhook(payload, request.headers.get("stripe-signature"))
    await run_in_threadpool(OrderLifecycle(db, gateway).handle_payment_event, event)
    return {"received": True}
