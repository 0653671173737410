"""
Webhook payloads as a tagged union.

The provider is decided once, at the boundary, by `parse_payload`. Everything
downstream matches on the payload class instead of sniffing raw fields again.
"""
from dataclasses import dataclass, field
from typing import Optional, Union

from seo_billing.errors import MalformedPayloadError
from seo_billing.models import PaymentMethod


@dataclass
class MomoPayload:
    data: dict
    kind = PaymentMethod.MOMO


@dataclass
class VNPayPayload:
    data: dict
    kind = PaymentMethod.VNPAY


@dataclass
class PayPalPayload:
    data: dict
    # Payment resource fetched from PayPal during verification
    resource: Optional[dict] = field(default=None)
    kind = PaymentMethod.PAYPAL

    @property
    def payment_id(self):
        return _first_present(self.data, "paymentId", "payment_id")


WebhookPayload = Union[MomoPayload, VNPayPayload, PayPalPayload]

PAYLOAD_TYPES = {
    PaymentMethod.MOMO: MomoPayload,
    PaymentMethod.VNPAY: VNPayPayload,
    PaymentMethod.PAYPAL: PayPalPayload,
}


@dataclass(frozen=True)
class PaymentOutcome:
    order_id: str
    success: bool
    transaction_id: Optional[str]


def _first_present(data, *keys):
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return str(value)
    return None


def detect_provider(data: dict) -> PaymentMethod:
    if "partnerCode" in data or "resultCode" in data:
        return PaymentMethod.MOMO
    if "vnp_TmnCode" in data or "vnp_ResponseCode" in data:
        return PaymentMethod.VNPAY
    if any(key in data for key in ("payer_id", "payment_id", "PayerID", "paymentId")):
        return PaymentMethod.PAYPAL
    raise MalformedPayloadError("Cannot detect payment method")


def parse_payload(provider: Optional[str], data: dict) -> WebhookPayload:
    if not isinstance(data, dict):
        raise MalformedPayloadError("Webhook body must be an object")
    if provider:
        try:
            method = PaymentMethod(provider.lower())
        except ValueError:
            raise MalformedPayloadError(f"Unknown provider: {provider}")
    else:
        method = detect_provider(data)
    return PAYLOAD_TYPES[method](data=dict(data))


def normalize(payload: WebhookPayload) -> PaymentOutcome:
    """Map a verified provider payload onto (order_id, success, transaction_id)."""
    if isinstance(payload, MomoPayload):
        return _normalize_momo(payload.data)
    if isinstance(payload, VNPayPayload):
        return _normalize_vnpay(payload.data)
    if isinstance(payload, PayPalPayload):
        return _normalize_paypal(payload)
    raise MalformedPayloadError(f"Unsupported payload type: {type(payload).__name__}")


def _normalize_momo(data):
    order_id = _first_present(data, "orderId")
    if order_id is None:
        raise MalformedPayloadError("MoMo payload has no orderId")
    try:
        result_code = int(data.get("resultCode"))
    except (TypeError, ValueError):
        raise MalformedPayloadError("MoMo payload has an invalid resultCode")
    return PaymentOutcome(
        order_id=order_id,
        success=result_code == 0,
        transaction_id=_first_present(data, "transId", "requestId"),
    )


def _normalize_vnpay(data):
    order_id = _first_present(data, "vnp_TxnRef")
    if order_id is None:
        raise MalformedPayloadError("VNPay payload has no vnp_TxnRef")
    return PaymentOutcome(
        order_id=order_id,
        success=data.get("vnp_ResponseCode") == "00",
        transaction_id=_first_present(data, "vnp_TransactionNo", "vnp_TxnRef"),
    )


def _normalize_paypal(payload):
    if payload.resource is None:
        raise MalformedPayloadError("PayPal payload was not verified against the PayPal API")
    try:
        order_id = payload.resource["transactions"][0]["custom"]
    except (KeyError, IndexError, TypeError):
        order_id = None
    if not order_id:
        raise MalformedPayloadError("PayPal payment carries no order id in 'custom'")
    return PaymentOutcome(
        order_id=str(order_id),
        success=payload.resource.get("state") == "approved",
        transaction_id=payload.payment_id,
    )
