import json
import logging
from typing import Optional
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from seo_billing.auth import verify_token
from seo_billing.database import SessionLocal
from seo_billing.errors import BillingError, GatewayError, MalformedPayloadError, SignatureError
from seo_billing.events import WebhookEventStore
from seo_billing.gateways import create_payment_url
from seo_billing.models import PaymentMethod
from seo_billing.notifier import Notifier
from seo_billing.orders import OrderStore
from seo_billing.paypal import PayPalClient
from seo_billing.signatures import SignatureVerifier
from seo_billing.subscriptions import SubscriptionStore
from seo_billing.webhook import WebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter()


class CheckoutRequest(BaseModel):
    payment_method: PaymentMethod
    package_id: str
    amount: int = Field(gt=0)
    package_name: str
    return_url: str
    cancel_url: str = ""


def get_paypal_client():
    return PayPalClient()


def get_order_store():
    return OrderStore(SessionLocal)


def get_subscription_store():
    return SubscriptionStore(SessionLocal)


def get_webhook_processor(paypal: PayPalClient = Depends(get_paypal_client)):
    return WebhookProcessor(
        orders=OrderStore(SessionLocal),
        subscriptions=SubscriptionStore(SessionLocal),
        verifier=SignatureVerifier(paypal_client=paypal),
        notifier=Notifier(),
        events=WebhookEventStore(SessionLocal),
    )


@router.post("/payments")
def create_checkout(
    payload: CheckoutRequest,
    request: Request,
    user=Depends(verify_token),
    orders: OrderStore = Depends(get_order_store),
    paypal: PayPalClient = Depends(get_paypal_client),
):
    order = orders.create(
        user_id=user.id,
        package_id=payload.package_id,
        amount=payload.amount,
        payment_method=payload.payment_method.value,
        user_email=user.email,
    )

    try:
        payment_url = create_payment_url(
            order,
            payload.package_name,
            payload.return_url,
            payload.cancel_url,
            paypal_client=paypal,
            ip_addr=request.client.host if request.client else "127.0.0.1",
        )
    except GatewayError as e:
        # The gateway may still have created the payment (timeouts); only the
        # webhook decides the order's terminal state, so it stays pending.
        logger.error("Checkout for order %s failed, order left pending: %s", order.id, e)
        raise HTTPException(status_code=502, detail=str(e))

    return {"payment_url": payment_url, "order_id": order.id}


def _isoformat(dt):
    return dt.isoformat() if dt else None


def order_view(order):
    return {
        "order_id": order.id,
        "package_id": order.package_id,
        "amount": order.amount,
        "payment_method": order.payment_method,
        "status": order.status,
        "transaction_id": order.transaction_id,
        "created_at": _isoformat(order.created_at),
        "completed_at": _isoformat(order.completed_at),
    }


@router.get("/payments")
def list_payments(user=Depends(verify_token), orders: OrderStore = Depends(get_order_store)):
    """Billing history of the caller, newest first."""
    return [order_view(order) for order in orders.list_for_user(user.id)]


@router.get("/payments/{order_id}")
def get_order_status(
    order_id: str,
    user=Depends(verify_token),
    orders: OrderStore = Depends(get_order_store),
):
    order = orders.get(order_id)
    if not order or order.user_id != user.id:
        raise HTTPException(status_code=404, detail="Order not found")

    return order_view(order)


@router.get("/subscription")
def get_subscription(
    user=Depends(verify_token),
    subscriptions: SubscriptionStore = Depends(get_subscription_store),
):
    sub = subscriptions.get(user.id)
    if sub is None:
        raise HTTPException(status_code=404, detail="No subscription")

    return {
        "package_id": sub.package_id,
        "status": sub.status,
        "start_date": _isoformat(sub.start_date),
        "end_date": _isoformat(sub.end_date),
    }


async def read_webhook_body(request: Request) -> dict:
    """JSON or form-encoded body; gateways that call back with GET-style
    query strings and an empty body get their query params instead."""
    raw = await request.body()
    content_type = request.headers.get("content-type", "")

    if raw and "application/json" in content_type:
        return json.loads(raw)
    if raw:
        return dict(parse_qsl(raw.decode("utf-8"), keep_blank_values=True))
    return {key: value for key, value in request.query_params.items() if key != "provider"}


@router.post("/payment-webhook")
async def payment_webhook(
    request: Request,
    provider: Optional[str] = None,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    try:
        data = await read_webhook_body(request)
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid payload")

    try:
        await run_in_threadpool(processor.process, provider, data)
    except SignatureError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except MalformedPayloadError as e:
        logger.warning("Rejected webhook: %s", e)
        raise HTTPException(status_code=400, detail=str(e))
    except BillingError as e:
        logger.error("Webhook processing error: %s", e)
        return JSONResponse(status_code=500, content={"error": str(e)})
    except Exception:
        logger.exception("Unexpected webhook failure")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return {"status": "ok"}
